# matrix_comp/services/matrix_service.py
"""
Forced matrix placement service - 3-wide matrix with breadth-first spillover.
"""
from collections import deque
from datetime import timedelta
from typing import Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

import config
from models import Member, MatrixNode, PlacementLog
from matrix_comp.errors import NotFound, AlreadyPlaced
from matrix_comp.events.event_bus import eventBus, MLMEvents
from matrix_comp.utils.time_machine import timeMachine
from matrix_comp.utils.transactions import runInTransaction

logger = logging.getLogger(__name__)


class MatrixService:
    """Service for placing members into the forced matrix and walking its lines."""

    def __init__(
            self,
            session: Session,
            width: int = config.MATRIX_WIDTH,
            coolingOffDays: int = config.SLOT_COOLING_OFF_DAYS
    ):
        self.session = session
        self.width = width
        self.coolingOffDays = coolingOffDays

    # ------------------------------------------------------------------
    # Public entry points (own transaction)
    # ------------------------------------------------------------------

    async def place(self, memberId: int, sponsorId: Optional[int] = None) -> MatrixNode:
        """
        Place a new member into the matrix.
        Main entry point for standalone placement; commits.
        """
        node = await runInTransaction(
            self.session,
            lambda: self.placeMember(memberId, sponsorId),
            "place"
        )

        await eventBus.emit(MLMEvents.MEMBER_PLACED, {
            "memberId": memberId,
            "sponsorId": sponsorId,
            "parentNodeId": node.parentNodeID,
            "position": node.position,
            "depth": node.depth
        })
        return node

    async def removeConnection(self, memberId: int) -> MatrixNode:
        """
        Remove a member's connection. The node stays where it is, the member
        stops earning through it and its slot is locked for the cooling-off period.
        """
        node = await runInTransaction(
            self.session,
            lambda: self._markRemoved(memberId),
            "removeConnection"
        )

        await eventBus.emit(MLMEvents.CONNECTION_REMOVED, {
            "memberId": memberId,
            "slotLockedUntil": node.slotLockedUntil.isoformat() if node.slotLockedUntil else None
        })
        return node

    # ------------------------------------------------------------------
    # Unit-of-work building blocks (caller commits)
    # ------------------------------------------------------------------

    async def placeMember(self, memberId: int, sponsorId: Optional[int] = None) -> MatrixNode:
        """Place a member inside the caller's transaction."""
        member = self._getMember(memberId)

        if self.getNode(memberId):
            raise AlreadyPlaced(memberId)

        root = self._getRoot()

        if root is None:
            if sponsorId is None or sponsorId == memberId:
                return self._createRoot(member, sponsorId)

            # Empty tree: the sponsor becomes the root
            sponsor = self._getMember(sponsorId)
            searchFrom = self._createRoot(sponsor, None)
        elif sponsorId is None:
            searchFrom = root
        else:
            self._getMember(sponsorId)
            searchFrom = self.getNode(sponsorId)
            if not searchFrom:
                raise NotFound("MatrixNode", sponsorId)

        parent, position, generation = await self._findOpenSlot(searchFrom)

        node = MatrixNode(
            memberID=member.memberID,
            parentNodeID=parent.nodeID,
            position=position,
            slotGeneration=generation,
            depth=parent.depth + 1,
            placedAt=timeMachine.now
        )
        self.session.add(node)
        self.session.flush()

        placementSource = "direct_signup" if sponsorId in (None, parent.memberID) else "spillover"
        self._writePlacementLog(node, parent.memberID, sponsorId, placementSource)

        logger.info(
            f"Placed member {memberId} under member {parent.memberID} "
            f"(position {position}, depth {node.depth}, {placementSource})"
        )
        return node

    async def getAncestorChain(self, memberId: int, maxDepth: int) -> List[Tuple[Member, int]]:
        """
        Direct-line matrix ancestors, nearest first, as (member, depth) pairs.
        Follows parent links, not sponsor links.
        """
        node = self.getNode(memberId)
        if not node:
            raise NotFound("MatrixNode", memberId)

        chain = []
        visited = {node.nodeID}
        current = node
        depth = 1

        while current.parentNodeID is not None and depth <= maxDepth:
            parent = self.session.get(MatrixNode, current.parentNodeID)
            if not parent or parent.nodeID in visited:
                logger.error(f"Broken parent link above node {current.nodeID}")
                break

            visited.add(parent.nodeID)
            chain.append((parent.member, depth))

            current = parent
            depth += 1

        return chain

    def getNode(self, memberId: int) -> Optional[MatrixNode]:
        return self.session.query(MatrixNode).filter_by(memberID=memberId).first()

    def isConnectionActive(self, memberId: int) -> bool:
        """A member earns through the matrix only while its connection stands."""
        node = self.getNode(memberId)
        return node is not None and not node.isRemoved

    async def getChildren(self, memberId: int) -> List[MatrixNode]:
        """Current occupants of a member's slots, in position order."""
        node = self.getNode(memberId)
        if not node:
            raise NotFound("MatrixNode", memberId)

        return [occupant for occupant in self._slotOccupants(node) if occupant is not None]

    async def getDownline(self, memberId: int, maxDepth: int) -> List[Tuple[MatrixNode, int]]:
        """Breadth-first downline of a member, as (node, relative depth) pairs."""
        node = self.getNode(memberId)
        if not node:
            raise NotFound("MatrixNode", memberId)

        result = []
        queue = deque([(node, 0)])
        while queue:
            current, level = queue.popleft()
            if level >= maxDepth:
                continue
            for child in self._slotOccupants(current):
                if child is not None:
                    result.append((child, level + 1))
                    queue.append((child, level + 1))

        return result

    async def auditMatrix(self) -> Dict:
        """Integrity report over the whole matrix."""
        nodes = self.session.query(MatrixNode).all()
        byId = {n.nodeID: n for n in nodes}

        report = {
            "totalNodes": len(nodes),
            "nodesPerDepth": {},
            "overWidthParents": [],
            "orphanNodes": [],
            "depthMismatches": [],
            "duplicatePositionIndexes": [],
            "cycleDetected": False,
            "overallHealth": "healthy"
        }

        occupiedPositions: Dict[int, set] = {}
        for node in nodes:
            report["nodesPerDepth"][node.depth] = report["nodesPerDepth"].get(node.depth, 0) + 1

            if node.parentNodeID is None:
                continue

            parent = byId.get(node.parentNodeID)
            if not parent:
                report["orphanNodes"].append(node.memberID)
                continue

            if node.depth != parent.depth + 1:
                report["depthMismatches"].append(node.memberID)

            occupiedPositions.setdefault(parent.nodeID, set()).add(node.position)

        for parentId, positions in occupiedPositions.items():
            if len(positions) > self.width or any(p not in range(self.width) for p in positions):
                report["overWidthParents"].append(byId[parentId].memberID)

        for node in nodes:
            visited = set()
            current = node
            while current is not None and current.parentNodeID is not None:
                if current.nodeID in visited:
                    report["cycleDetected"] = True
                    break
                visited.add(current.nodeID)
                current = byId.get(current.parentNodeID)
            if report["cycleDetected"]:
                break

        duplicates = self.session.query(PlacementLog.positionIndex).group_by(
            PlacementLog.positionIndex
        ).having(func.count(PlacementLog.logID) > 1).all()
        report["duplicatePositionIndexes"] = [row[0] for row in duplicates]

        if report["cycleDetected"] or report["overWidthParents"] or report["orphanNodes"]:
            report["overallHealth"] = "critical"
        elif report["depthMismatches"] or report["duplicatePositionIndexes"]:
            report["overallHealth"] = "warning"

        logger.info(
            f"Matrix audit: nodes={report['totalNodes']}, health={report['overallHealth']}"
        )
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _getMember(self, memberId: int) -> Member:
        member = self.session.get(Member, memberId)
        if not member:
            raise NotFound("Member", memberId)
        return member

    def _getRoot(self) -> Optional[MatrixNode]:
        return self.session.query(MatrixNode).filter(
            MatrixNode.parentNodeID.is_(None)
        ).first()

    def _createRoot(self, member: Member, sponsorId: Optional[int]) -> MatrixNode:
        if self.getNode(member.memberID):
            raise AlreadyPlaced(member.memberID)

        root = MatrixNode(
            memberID=member.memberID,
            parentNodeID=None,
            position=None,
            slotGeneration=0,
            depth=1,
            placedAt=timeMachine.now
        )
        self.session.add(root)
        self.session.flush()

        self._writePlacementLog(root, None, sponsorId, "direct_signup")
        logger.info(f"Created matrix root for member {member.memberID}")
        return root

    def _slotOccupants(self, node: MatrixNode) -> List[Optional[MatrixNode]]:
        """Latest-generation node in each slot of `node`, None for never-used slots."""
        occupants: List[Optional[MatrixNode]] = [None] * self.width

        children = self.session.query(MatrixNode).filter(
            MatrixNode.parentNodeID == node.nodeID
        ).order_by(MatrixNode.position, MatrixNode.slotGeneration).all()

        for child in children:
            occupants[child.position] = child  # later generations overwrite earlier ones

        return occupants

    def _isSlotReleased(self, occupant: MatrixNode) -> bool:
        """A removed member's slot frees up once its cooling-off lock has passed."""
        if not occupant.isRemoved:
            return False
        lockedUntil = timeMachine.toUtc(occupant.slotLockedUntil)
        return lockedUntil is not None and lockedUntil <= timeMachine.now

    async def _findOpenSlot(self, start: MatrixNode) -> Tuple[MatrixNode, int, int]:
        """
        Shallowest, leftmost open slot in the subtree of `start`.
        Returns (parent node, position, slot generation).
        """
        queue = deque([start])
        visited = set()

        while queue:
            current = queue.popleft()
            if current.nodeID in visited:
                continue
            visited.add(current.nodeID)

            occupants = self._slotOccupants(current)

            for position, occupant in enumerate(occupants):
                if occupant is None:
                    return current, position, 0
                if self._isSlotReleased(occupant):
                    return current, position, occupant.slotGeneration + 1

            for occupant in occupants:
                queue.append(occupant)

        # Unreachable for a finite tree: the deepest level always has open slots
        raise NotFound("Open matrix slot under member", start.memberID)

    def _writePlacementLog(
            self,
            node: MatrixNode,
            placedUnderMemberId: Optional[int],
            sponsorId: Optional[int],
            placementSource: str
    ):
        lastIndex = self.session.query(func.max(PlacementLog.positionIndex)).scalar() or 0

        self.session.add(PlacementLog(
            nodeID=node.nodeID,
            memberID=node.memberID,
            placedUnderMemberID=placedUnderMemberId,
            sponsorID=sponsorId,
            depth=node.depth,
            position=node.position,
            positionIndex=lastIndex + 1,
            placementSource=placementSource
        ))
        self.session.flush()

    async def _markRemoved(self, memberId: int) -> MatrixNode:
        node = self.getNode(memberId)
        if not node:
            raise NotFound("MatrixNode", memberId)

        if node.isRemoved:
            logger.info(f"Connection of member {memberId} already removed")
            return node

        now = timeMachine.now
        node.removedAt = now
        node.slotLockedUntil = now + timedelta(days=self.coolingOffDays)
        self.session.flush()

        logger.info(f"Connection of member {memberId} removed, slot locked until {node.slotLockedUntil}")
        return node

# models/__init__.py
"""
Database models for the matrix compensation engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.member import Member
from models.matrix_node import MatrixNode
from models.placement_log import PlacementLog
from models.commission_event import CommissionEvent
from models.processed_event import ProcessedEvent
from models.payout_request import PayoutRequest
from models.app_setting import AppSetting

# MLM models
from models.mlm.member_rank import MemberRank
from models.mlm.rank_history import RankHistory

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'Member',
    'MatrixNode',
    'PlacementLog',
    'CommissionEvent',
    'ProcessedEvent',
    'PayoutRequest',
    'AppSetting',

    # MLM
    'MemberRank',
    'RankHistory',
]

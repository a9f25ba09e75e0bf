# matrix_comp/config/ranks.py
"""
Rank tiers configuration and ordering helpers.
"""
from enum import Enum
from typing import List, Optional

from matrix_comp.errors import InvalidConfiguration


class Rank(Enum):
    ROOKIE = "rookie"
    HUSTLA = "hustla"
    GRINDER = "grinder"
    INFLUENCER = "influencer"
    EXECUTIVE = "executive"
    PARTNER = "partner"


class Gate(Enum):
    """Qualitative rank gates evaluated outside the engine."""
    TEAM_ACTIVITY = "teamActivity"
    ORG_VOLUME = "orgVolume"
    LEADERSHIP_VOLUME = "leadershipVolume"
    ORG_STABILITY = "orgStability"
    ELITE_PERFORMANCE = "elitePerformance"
    ADMIN_APPROVAL = "adminApproval"


RANK_ORDER: List[Rank] = [
    Rank.ROOKIE,
    Rank.HUSTLA,
    Rank.GRINDER,
    Rank.INFLUENCER,
    Rank.EXECUTIVE,
    Rank.PARTNER,
]

RANK_CONFIG = {
    Rank.ROOKIE: {
        "personallyEnrolledRequired": 0,
        "gates": [],
        "maxPayableLevel": 3,
        "displayName": "Rookie"
    },
    Rank.HUSTLA: {
        "personallyEnrolledRequired": 3,
        "gates": [],
        "maxPayableLevel": 4,
        "displayName": "Hustla"
    },
    Rank.GRINDER: {
        "personallyEnrolledRequired": 5,
        "gates": [Gate.TEAM_ACTIVITY],
        "maxPayableLevel": 5,
        "displayName": "Grinder"
    },
    Rank.INFLUENCER: {
        "personallyEnrolledRequired": 10,
        "gates": [Gate.ORG_VOLUME],
        "maxPayableLevel": 6,
        "displayName": "Influencer"
    },
    Rank.EXECUTIVE: {
        "personallyEnrolledRequired": 10,
        "gates": [Gate.LEADERSHIP_VOLUME, Gate.ORG_STABILITY],
        "maxPayableLevel": 7,
        "displayName": "Executive"
    },
    Rank.PARTNER: {
        "personallyEnrolledRequired": 10,
        "gates": [Gate.ELITE_PERFORMANCE, Gate.ADMIN_APPROVAL],
        "maxPayableLevel": 8,
        "displayName": "Partner"
    }
}

DEFAULT_RANK = Rank.ROOKIE


def toRank(value) -> Rank:
    """Coerce a stored rank string to Rank; unknown values fall back to the default rank."""
    if isinstance(value, Rank):
        return value
    try:
        return Rank(value)
    except ValueError:
        return DEFAULT_RANK


def rankIndex(rank) -> int:
    return RANK_ORDER.index(toRank(rank))


def compareRanks(rank1, rank2) -> int:
    """
    Compare two ranks.
    Returns: -1 if rank1 < rank2, 0 if equal, 1 if rank1 > rank2
    """
    value1 = rankIndex(rank1)
    value2 = rankIndex(rank2)

    if value1 < value2:
        return -1
    elif value1 > value2:
        return 1
    else:
        return 0


def getNextRank(rank) -> Optional[Rank]:
    index = rankIndex(rank)
    if index >= len(RANK_ORDER) - 1:
        return None
    return RANK_ORDER[index + 1]


def getMaxPayableLevel(rank) -> int:
    """Deepest matrix level a member of this rank is paid for."""
    return RANK_CONFIG[toRank(rank)]["maxPayableLevel"]


def validateRankConfig(rankConfig: dict = None) -> None:
    """
    Thresholds must be non-decreasing along RANK_ORDER.
    Tiers sharing a threshold are told apart by their gates.
    """
    rankConfig = rankConfig or RANK_CONFIG
    previous = -1
    for rank in RANK_ORDER:
        if rank not in rankConfig:
            raise InvalidConfiguration(f"Rank {rank.value} is missing from rank configuration")
        required = rankConfig[rank]["personallyEnrolledRequired"]
        if required < previous:
            raise InvalidConfiguration(
                f"Rank {rank.value} requires {required} enrollees, fewer than the rank below it"
            )
        previous = required

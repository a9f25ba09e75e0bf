# models/mlm/__init__.py
"""
MLM-specific models for the rank system.
"""

from models.mlm.member_rank import MemberRank
from models.mlm.rank_history import RankHistory

__all__ = [
    'MemberRank',
    'RankHistory',
]

# matrix_comp/__init__.py
"""
Matrix compensation engine - forced-matrix placement, ranks, commissions and payouts.
"""

# Services
from matrix_comp.services.matrix_service import MatrixService
from matrix_comp.services.rank_service import RankService, RankFacts
from matrix_comp.services.commission_service import CommissionService
from matrix_comp.services.ledger_service import LedgerService
from matrix_comp.services.payout_service import PayoutService
from matrix_comp.services.qualification_gates import QualificationGateProvider, StaticGateProvider

# Models and configuration
from matrix_comp.config.ranks import Rank, Gate, RANK_CONFIG, RANK_ORDER
from matrix_comp.config.settings import CompensationSettings, loadSettings, saveSettings

# Qualifying events
from matrix_comp.events.qualifying import EnrollmentActivated, BillingCycleCompleted

# Utilities
from matrix_comp.utils.time_machine import timeMachine

# Events
from matrix_comp.events.event_bus import eventBus, MLMEvents

# Errors
from matrix_comp.errors import (
    MatrixCompError,
    NotFound,
    AlreadyPlaced,
    Conflict,
    InsufficientBalance,
    BelowMinimumPayout,
    PendingRequestExists,
    InvalidConfiguration,
    InvalidPayoutMethod,
    InvalidStatusTransition,
    SettlementMismatch,
    DuplicateEvent,
)

__all__ = [
    # Services
    'MatrixService',
    'RankService',
    'RankFacts',
    'CommissionService',
    'LedgerService',
    'PayoutService',
    'QualificationGateProvider',
    'StaticGateProvider',

    # Config
    'Rank',
    'Gate',
    'RANK_CONFIG',
    'RANK_ORDER',
    'CompensationSettings',
    'loadSettings',
    'saveSettings',

    # Qualifying events
    'EnrollmentActivated',
    'BillingCycleCompleted',

    # Utils
    'timeMachine',

    # Events
    'eventBus',
    'MLMEvents',

    # Errors
    'MatrixCompError',
    'NotFound',
    'AlreadyPlaced',
    'Conflict',
    'InsufficientBalance',
    'BelowMinimumPayout',
    'PendingRequestExists',
    'InvalidConfiguration',
    'InvalidPayoutMethod',
    'InvalidStatusTransition',
    'SettlementMismatch',
    'DuplicateEvent',
]

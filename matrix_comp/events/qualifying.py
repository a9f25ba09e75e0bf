# matrix_comp/events/qualifying.py
"""
Qualifying events delivered by the billing collaborator.
Delivery is at-least-once; eventId is stable across redeliveries.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union


@dataclass(frozen=True)
class EnrollmentActivated:
    eventId: str
    newMemberId: int
    sponsorId: Optional[int] = None

    eventType = "enrollment_activated"

    @property
    def memberId(self) -> int:
        return self.newMemberId


@dataclass(frozen=True)
class BillingCycleCompleted:
    eventId: str
    memberId: int
    amountBilled: Optional[Decimal] = None  # None: the membership base price applies

    eventType = "billing_cycle_completed"


QualifyingEvent = Union[EnrollmentActivated, BillingCycleCompleted]

# matrix_comp/services/qualification_gates.py
"""
Qualitative rank gates (team activity, org volume, ...).
The engine does not compute these; a provider supplies one verdict per gate.
"""
from typing import Dict, Iterable, Optional
from sqlalchemy.orm import Session

from matrix_comp.config.ranks import Gate


class QualificationGateProvider:
    """
    Extension point for gate verdicts.
    The base provider passes no gate, so gated tiers stay closed until a
    real evaluator is plugged in.
    """

    async def verdicts(self, session: Session, memberId: int) -> Dict[Gate, bool]:
        return {gate: False for gate in Gate}


class StaticGateProvider(QualificationGateProvider):
    """Fixed verdicts, optionally per member. Used for admin overrides and tests."""

    def __init__(
            self,
            passed: Iterable[Gate] = (),
            perMember: Optional[Dict[int, Iterable[Gate]]] = None
    ):
        self.passed = set(passed)
        self.perMember = {memberId: set(gates) for memberId, gates in (perMember or {}).items()}

    async def verdicts(self, session: Session, memberId: int) -> Dict[Gate, bool]:
        passed = self.perMember.get(memberId, self.passed)
        return {gate: gate in passed for gate in Gate}

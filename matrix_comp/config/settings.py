# matrix_comp/config/settings.py
"""
Compensation settings snapshot - parsed and validated from the app_settings table.
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
import copy
import logging

import config
from models import AppSetting
from matrix_comp.errors import InvalidConfiguration

logger = logging.getLogger(__name__)


def _toDecimal(value, path: str, allowNone: bool = False) -> Optional[Decimal]:
    if value is None:
        if allowNone:
            return None
        raise InvalidConfiguration(f"Missing compensation setting '{path}'")
    if isinstance(value, bool):
        raise InvalidConfiguration(f"Setting '{path}' must be numeric, got {value!r}")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidConfiguration(f"Setting '{path}' must be numeric, got {value!r}")
    if not amount.is_finite() or amount < 0:
        raise InvalidConfiguration(f"Setting '{path}' must be a non-negative number, got {value!r}")
    return amount


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name)
    if not isinstance(section, dict):
        raise InvalidConfiguration(f"Compensation settings section '{name}' is missing or malformed")
    return section


def _tieredAmounts(section: dict, name: str) -> List[Decimal]:
    return [_toDecimal(section.get(f"level_{i}"), f"{name}.level_{i}") for i in (1, 2, 3)]


@dataclass(frozen=True)
class MatchingRates:
    level1: Decimal
    level2: Decimal
    level3: Optional[Decimal] = None

    def tiers(self) -> List[Decimal]:
        """Configured tier percentages, level 1 first."""
        rates = [self.level1, self.level2]
        if self.level3 is not None:
            rates.append(self.level3)
        return rates


@dataclass(frozen=True)
class CompensationSettings:
    """Immutable snapshot of the compensation table for one unit of work."""
    fastStartAmounts: List[Decimal]
    levelBonusAmounts: List[Decimal]
    perPlacement: Decimal
    matrixMaxDepth: int
    matrixLevelPercents: List[Decimal]
    categoryMultipliers: Dict[str, Decimal]
    matching: MatchingRates
    matchingOverrides: Dict[str, MatchingRates] = field(default_factory=dict)
    minimumPayout: Decimal = Decimal("50")
    version: int = 0

    @classmethod
    def fromDict(cls, raw: dict, version: int = 0) -> "CompensationSettings":
        if not isinstance(raw, dict):
            raise InvalidConfiguration("Compensation settings must be a mapping")

        fastStart = _section(raw, "fast_start")
        fastStartAmounts = _tieredAmounts(fastStart, "fast_start")

        # Level bonus pays the fast-start table unless configured separately
        levelBonus = raw.get("level_bonus") or fastStart
        if not isinstance(levelBonus, dict):
            raise InvalidConfiguration("Compensation settings section 'level_bonus' is malformed")
        levelBonusAmounts = _tieredAmounts(levelBonus, "level_bonus")

        matrix = _section(raw, "matrix")
        perPlacement = _toDecimal(matrix.get("per_placement"), "matrix.per_placement")
        maxDepth = matrix.get("max_depth")
        if not isinstance(maxDepth, int) or isinstance(maxDepth, bool) or maxDepth < 1:
            raise InvalidConfiguration(f"Setting 'matrix.max_depth' must be a positive integer, got {maxDepth!r}")

        levelPercents = matrix.get("level_percents")
        if not isinstance(levelPercents, list) or not levelPercents:
            raise InvalidConfiguration("Setting 'matrix.level_percents' must be a non-empty list")
        levelPercents = [
            _toDecimal(p, f"matrix.level_percents[{i}]") for i, p in enumerate(levelPercents)
        ]

        multipliers = {}
        for category, multiplier in (matrix.get("category_multipliers") or {}).items():
            if category not in config.ACCOUNT_CATEGORIES:
                raise InvalidConfiguration(f"Unknown account category '{category}' in matrix.category_multipliers")
            multipliers[category] = _toDecimal(multiplier, f"matrix.category_multipliers.{category}")

        matchingSection = _section(raw, "matching")
        matching = cls._parseMatching(matchingSection, "matching")

        overrides = {}
        for category, override in (matchingSection.get("category_overrides") or {}).items():
            if category not in config.ACCOUNT_CATEGORIES:
                raise InvalidConfiguration(f"Unknown account category '{category}' in matching.category_overrides")
            if not isinstance(override, dict):
                raise InvalidConfiguration(f"Setting 'matching.category_overrides.{category}' must be a mapping")
            merged = {
                "level_1_percent": override.get("level_1_percent", matchingSection.get("level_1_percent")),
                "level_2_percent": override.get("level_2_percent", matchingSection.get("level_2_percent")),
                "level_3_percent": override.get("level_3_percent", matchingSection.get("level_3_percent")),
            }
            overrides[category] = cls._parseMatching(merged, f"matching.category_overrides.{category}")

        minimumPayout = _toDecimal(raw.get("minimum_payout"), "minimum_payout")

        return cls(
            fastStartAmounts=fastStartAmounts,
            levelBonusAmounts=levelBonusAmounts,
            perPlacement=perPlacement,
            matrixMaxDepth=maxDepth,
            matrixLevelPercents=levelPercents,
            categoryMultipliers=multipliers,
            matching=matching,
            matchingOverrides=overrides,
            minimumPayout=minimumPayout,
            version=version,
        )

    @staticmethod
    def _parseMatching(section: dict, path: str) -> MatchingRates:
        return MatchingRates(
            level1=_toDecimal(section.get("level_1_percent"), f"{path}.level_1_percent"),
            level2=_toDecimal(section.get("level_2_percent"), f"{path}.level_2_percent"),
            level3=_toDecimal(section.get("level_3_percent"), f"{path}.level_3_percent", allowNone=True),
        )

    @property
    def matrixPayableDepth(self) -> int:
        """Deepest level the matrix commission table covers."""
        return min(self.matrixMaxDepth, len(self.matrixLevelPercents))

    def matrixPercent(self, depth: int, category: str) -> Decimal:
        """Matrix percentage for a paying ancestor of the given category at the given depth."""
        base = self.matrixLevelPercents[depth - 1]
        multiplier = self.categoryMultipliers.get(category, Decimal("1"))
        return base * multiplier

    def matchingRatesFor(self, category: str) -> MatchingRates:
        return self.matchingOverrides.get(category, self.matching)


def defaultSettings() -> CompensationSettings:
    return CompensationSettings.fromDict(copy.deepcopy(config.DEFAULT_COMPENSATION_SETTINGS))


def loadSettings(session: Session) -> CompensationSettings:
    """Read the latest compensation settings snapshot; defaults apply when none is stored."""
    row = session.query(AppSetting).filter_by(
        key=config.COMPENSATION_SETTINGS_KEY
    ).order_by(AppSetting.version.desc()).first()

    if not row:
        return defaultSettings()

    return CompensationSettings.fromDict(row.value, version=row.version)


def saveSettings(session: Session, raw: dict, adminId: Optional[int] = None) -> CompensationSettings:
    """Validate and store a new settings version. Caller commits."""
    latest = session.query(AppSetting).filter_by(
        key=config.COMPENSATION_SETTINGS_KEY
    ).order_by(AppSetting.version.desc()).first()
    version = (latest.version if latest else 0) + 1

    settings = CompensationSettings.fromDict(raw, version=version)

    session.add(AppSetting(
        key=config.COMPENSATION_SETTINGS_KEY,
        version=version,
        value=raw,
        createdBy=adminId
    ))

    logger.info(f"Compensation settings version {version} saved by admin {adminId}")
    return settings

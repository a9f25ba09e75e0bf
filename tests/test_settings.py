"""
Tests for compensation settings parsing and versioned storage.
"""

import copy
from decimal import Decimal

import pytest

import config
from matrix_comp.config.settings import CompensationSettings, defaultSettings, loadSettings, saveSettings
from matrix_comp.errors import InvalidConfiguration


def _raw():
    return copy.deepcopy(config.DEFAULT_COMPENSATION_SETTINGS)


class TestDefaults:

    def test_default_amounts(self):
        settings = defaultSettings()

        assert settings.fastStartAmounts == [Decimal("25"), Decimal("10"), Decimal("5")]
        assert settings.levelBonusAmounts == [Decimal("25"), Decimal("10"), Decimal("5")]
        assert settings.perPlacement == Decimal("50")
        assert settings.minimumPayout == Decimal("50")
        assert settings.version == 0

    def test_matrix_percent_applies_category_multiplier(self):
        settings = defaultSettings()

        assert settings.matrixPayableDepth == 5
        assert settings.matrixPercent(1, "client") == Decimal("10")
        assert settings.matrixPercent(1, "barber") == Decimal("20")
        assert settings.matrixPercent(5, "barber") == Decimal("4")

    def test_matching_rates_per_category(self):
        settings = defaultSettings()

        assert settings.matchingRatesFor("client").tiers() == [Decimal("10"), Decimal("5")]
        assert settings.matchingRatesFor("barber").tiers() == [Decimal("20"), Decimal("10")]


class TestParsing:

    def test_level_bonus_falls_back_to_fast_start(self):
        raw = _raw()
        del raw["level_bonus"]
        raw["fast_start"]["level_1"] = 30

        settings = CompensationSettings.fromDict(raw)

        assert settings.levelBonusAmounts[0] == Decimal("30")

    def test_optional_third_matching_tier_is_inherited_by_overrides(self):
        raw = _raw()
        raw["matching"]["level_3_percent"] = 2

        settings = CompensationSettings.fromDict(raw)

        assert settings.matchingRatesFor("client").tiers() == [Decimal("10"), Decimal("5"), Decimal("2")]
        assert settings.matchingRatesFor("barber").tiers() == [Decimal("20"), Decimal("10"), Decimal("2")]

    def test_payable_depth_is_bounded_by_table(self):
        raw = _raw()
        raw["matrix"]["max_depth"] = 8

        assert CompensationSettings.fromDict(raw).matrixPayableDepth == 5

        raw["matrix"]["max_depth"] = 2
        assert CompensationSettings.fromDict(raw).matrixPayableDepth == 2

    @pytest.mark.parametrize("mutate", [
        lambda raw: raw.pop("fast_start"),
        lambda raw: raw["fast_start"].update(level_2=-5),
        lambda raw: raw["fast_start"].update(level_3="five"),
        lambda raw: raw["fast_start"].update(level_1=True),
        lambda raw: raw.update(level_bonus=[25, 10, 5]),
        lambda raw: raw["matrix"].update(max_depth=0),
        lambda raw: raw["matrix"].update(max_depth="5"),
        lambda raw: raw["matrix"].update(level_percents=[]),
        lambda raw: raw["matrix"]["category_multipliers"].update(stylist=3),
        lambda raw: raw["matching"]["category_overrides"].update(stylist={"level_1_percent": 5}),
        lambda raw: raw["matching"].update(level_1_percent=None),
        lambda raw: raw.pop("minimum_payout"),
    ])
    def test_malformed_settings_are_rejected(self, mutate):
        raw = _raw()
        mutate(raw)

        with pytest.raises(InvalidConfiguration):
            CompensationSettings.fromDict(raw)

    def test_non_mapping_is_rejected(self):
        with pytest.raises(InvalidConfiguration):
            CompensationSettings.fromDict(["fast_start"])


class TestStorage:

    def test_load_without_rows_returns_defaults(self, session):
        assert loadSettings(session) == defaultSettings()

    def test_latest_version_wins(self, session):
        first = _raw()
        first["minimum_payout"] = 40
        second = _raw()
        second["minimum_payout"] = 30

        saveSettings(session, first, adminId=1)
        session.commit()
        saved = saveSettings(session, second, adminId=1)
        session.commit()

        loaded = loadSettings(session)
        assert saved.version == 2
        assert loaded.version == 2
        assert loaded.minimumPayout == Decimal("30")

    def test_invalid_settings_are_not_stored(self, session):
        raw = _raw()
        raw["matrix"]["max_depth"] = -1

        with pytest.raises(InvalidConfiguration):
            saveSettings(session, raw)

        assert loadSettings(session).version == 0

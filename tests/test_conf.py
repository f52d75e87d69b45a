"""Tests for settings access."""
from decimal import Decimal

import pytest
from django.test import override_settings

from django_careledger.conf import (
    get_configured_rates,
    get_excluded_categories,
    get_identifier_pad_width,
    get_introducer_voucher_prefixes,
    get_thresholds,
    get_voucher_rates,
)
from django_careledger.exceptions import ConfigurationError
from django_careledger.records import Thresholds


class TestExcludedCategories:
    """Test suite for get_excluded_categories."""

    def test_reads_setting(self):
        assert get_excluded_categories() == frozenset({"MC街客", "Steven140"})

    @override_settings(CARELEDGER_EXCLUDED_CATEGORIES=[])
    def test_empty_list_is_valid(self):
        assert get_excluded_categories() == frozenset()

    def test_missing_setting_raises(self, settings):
        del settings.CARELEDGER_EXCLUDED_CATEGORIES
        with pytest.raises(ConfigurationError) as excinfo:
            get_excluded_categories()
        assert "CARELEDGER_EXCLUDED_CATEGORIES" in str(excinfo.value)

    @override_settings(CARELEDGER_EXCLUDED_CATEGORIES="MC街客")
    def test_plain_string_rejected(self):
        with pytest.raises(ConfigurationError):
            get_excluded_categories()


class TestThresholds:
    """Test suite for get_thresholds."""

    def test_reads_setting(self):
        assert get_thresholds() == Thresholds(hours=25, fee=6200)

    def test_defaults_when_unset(self, settings):
        del settings.CARELEDGER_COMMISSION_THRESHOLDS
        assert get_thresholds() == Thresholds(hours=25, fee=6200)

    @override_settings(CARELEDGER_COMMISSION_THRESHOLDS={"hours": 20})
    def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            get_thresholds()

    @override_settings(CARELEDGER_COMMISSION_THRESHOLDS={"hours": -1, "fee": 6200})
    def test_negative_value(self):
        with pytest.raises(ConfigurationError):
            get_thresholds()

    @override_settings(CARELEDGER_COMMISSION_THRESHOLDS={"hours": "many", "fee": 6200})
    def test_non_numeric_value(self):
        with pytest.raises(ConfigurationError):
            get_thresholds()


class TestOtherSettings:
    """Rates, prefixes and identifier padding."""

    def test_voucher_rates_are_decimals(self):
        assert get_voucher_rates() == {"NC護理": Decimal("945"), "PC看顧": Decimal("248")}

    @override_settings(CARELEDGER_VOUCHER_RATES={"NC護理": "abc"})
    def test_invalid_voucher_rate(self):
        with pytest.raises(ConfigurationError):
            get_voucher_rates()

    def test_configured_rates(self):
        assert [row["introducer"] for row in get_configured_rates()] == ["Annie", "Steven Kwok"]

    def test_configured_rates_default_empty(self, settings):
        del settings.CARELEDGER_COMMISSION_RATES
        assert get_configured_rates() == []

    def test_introducer_prefixes(self):
        assert get_introducer_voucher_prefixes() == {"Steven Kwok": "S-CCSV"}

    def test_pad_width_default(self):
        assert get_identifier_pad_width() == 4

    @pytest.mark.parametrize("width", [0, -2, "4"])
    def test_pad_width_invalid(self, width):
        with override_settings(CARELEDGER_IDENTIFIER_PAD_WIDTH=width):
            with pytest.raises(ConfigurationError):
                get_identifier_pad_width()

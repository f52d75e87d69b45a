"""Configuration for django-careledger.

All settings are read lazily from Django settings so tests can use
override_settings.
"""

from decimal import Decimal, InvalidOperation

from django.conf import settings

from django_careledger.exceptions import ConfigurationError


DEFAULT_THRESHOLDS = {"hours": 25, "fee": 6200}
DEFAULT_IDENTIFIER_PAD_WIDTH = 4


def _to_decimal(value, setting_name: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ConfigurationError(f"{setting_name} value {value!r} is not a number")
    if result < 0:
        raise ConfigurationError(f"{setting_name} value {value!r} must not be negative")
    return result


def get_excluded_categories() -> frozenset[str]:
    """Get the booking categories that never count toward commission.

    Reads CARELEDGER_EXCLUDED_CATEGORIES from Django settings. An empty
    list is valid; a missing setting is not.

    Raises:
        ConfigurationError: If the setting is missing or not a collection
    """
    categories = getattr(settings, "CARELEDGER_EXCLUDED_CATEGORIES", None)
    if categories is None:
        raise ConfigurationError(
            "CARELEDGER_EXCLUDED_CATEGORIES setting is required. "
            "Set it to the walk-in categories, e.g. ['MC街客']"
        )
    if isinstance(categories, str) or not hasattr(categories, "__iter__"):
        raise ConfigurationError(
            "CARELEDGER_EXCLUDED_CATEGORIES must be a list of category names"
        )
    return frozenset(categories)


def get_thresholds():
    """Get the commission qualification thresholds.

    Returns:
        Thresholds built from CARELEDGER_COMMISSION_THRESHOLDS
        (defaults: 25 hours or 6200 fee)
    """
    from django_careledger.records import Thresholds

    raw = getattr(settings, "CARELEDGER_COMMISSION_THRESHOLDS", None) or DEFAULT_THRESHOLDS
    try:
        hours, fee = raw["hours"], raw["fee"]
    except (KeyError, TypeError):
        raise ConfigurationError(
            "CARELEDGER_COMMISSION_THRESHOLDS must define both 'hours' and 'fee'"
        )
    return Thresholds(
        hours=_to_decimal(hours, "CARELEDGER_COMMISSION_THRESHOLDS['hours']"),
        fee=_to_decimal(fee, "CARELEDGER_COMMISSION_THRESHOLDS['fee']"),
    )


def get_configured_rates() -> list[dict]:
    """Get fallback commission rates from CARELEDGER_COMMISSION_RATES."""
    return list(getattr(settings, "CARELEDGER_COMMISSION_RATES", None) or [])


def get_voucher_rates() -> dict[str, Decimal]:
    """Get voucher hourly rates keyed by service type."""
    raw = getattr(settings, "CARELEDGER_VOUCHER_RATES", None) or {}
    return {
        service_type: _to_decimal(rate, f"CARELEDGER_VOUCHER_RATES[{service_type!r}]")
        for service_type, rate in raw.items()
    }


def get_identifier_pad_width() -> int:
    """Get the zero-padding width for generated customer identifiers."""
    width = getattr(settings, "CARELEDGER_IDENTIFIER_PAD_WIDTH", DEFAULT_IDENTIFIER_PAD_WIDTH)
    if not isinstance(width, int) or width < 1:
        raise ConfigurationError("CARELEDGER_IDENTIFIER_PAD_WIDTH must be a positive integer")
    return width


def get_introducer_voucher_prefixes() -> dict[str, str]:
    """Get per-introducer voucher identifier prefixes.

    Introducers not listed use the standard voucher prefix.
    """
    return dict(getattr(settings, "CARELEDGER_INTRODUCER_VOUCHER_PREFIXES", None) or {})

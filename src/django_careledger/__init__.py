"""Django Care Ledger - Booking conflicts, monthly aggregation and introducer commissions."""

__version__ = "0.1.0"

__all__ = [
    # Value objects
    "BookingRecord",
    "CustomerSnapshot",
    "CommissionRateRow",
    "RateTable",
    "Thresholds",
    "MonthlyAggregate",
    "CommissionDecision",
    # Conflict detection
    "ActorKind",
    "ConflictResult",
    "check_batch",
    # Ledger
    "BookingLedger",
    "InMemoryBookingLedger",
    "OrmBookingLedger",
    "KeyedLocks",
    "NullLocks",
    # Models
    "BookingEntry",
    "BookingRetirement",
    "CommissionRate",
    "IdentifierSequence",
    # Services
    "check_conflict",
    "append_booking",
    "book_dates",
    "expand_dates",
    "correct_booking",
    "aggregate_month",
    "evaluate_commissions",
    "propose_identifier",
    "should_prompt_replacement",
    # Exceptions
    "CareLedgerError",
    "ValidationError",
    "ConflictError",
    "ConfigurationError",
    "ConcurrencyViolation",
]

_RECORDS = (
    "BookingRecord", "CustomerSnapshot", "CommissionRateRow", "RateTable",
    "Thresholds", "MonthlyAggregate", "CommissionDecision",
)
_SERVICES = (
    "check_conflict", "append_booking", "book_dates", "expand_dates", "correct_booking",
    "aggregate_month", "evaluate_commissions", "propose_identifier", "should_prompt_replacement",
)


def __getattr__(name):
    """Lazy import to avoid AppRegistryNotReady errors."""
    if name in _RECORDS:
        from django_careledger import records
        return getattr(records, name)
    if name in ("ActorKind", "ConflictResult", "check_batch"):
        from django_careledger import intervals
        return getattr(intervals, name)
    if name in ("BookingLedger", "InMemoryBookingLedger", "OrmBookingLedger"):
        from django_careledger import ledger
        return getattr(ledger, name)
    if name in ("KeyedLocks", "NullLocks"):
        from django_careledger import locks
        return getattr(locks, name)
    if name in ("BookingEntry", "BookingRetirement", "CommissionRate", "IdentifierSequence"):
        from django_careledger import models
        return getattr(models, name)
    if name in _SERVICES:
        from django_careledger import services
        return getattr(services, name)
    if name in ("CareLedgerError", "ValidationError", "ConflictError",
                "ConfigurationError", "ConcurrencyViolation"):
        from django_careledger import exceptions
        return getattr(exceptions, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

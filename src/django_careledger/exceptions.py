"""Exceptions for django-careledger."""


class CareLedgerError(Exception):
    """Base exception for care ledger errors."""
    pass


class ValidationError(CareLedgerError, ValueError):
    """Raised for malformed input: unparseable time, negative amounts, bad dates."""
    pass


class ConflictError(CareLedgerError):
    """A proposed booking overlaps committed bookings of the same actor."""

    def __init__(self, conflicts, message=None):
        self.conflicts = tuple(conflicts)
        ids = ", ".join(c.entry_id for c in self.conflicts)
        super().__init__(message or f"Booking overlaps existing entries: {ids}")


class ConfigurationError(CareLedgerError):
    """Raised when rate tables, thresholds or category settings are missing or invalid."""

    def __init__(self, message: str, introducer: str | None = None):
        self.introducer = introducer
        super().__init__(message)


class ConcurrencyViolation(CareLedgerError):
    """Raised when an append happens outside the per-key serialization scope."""

    def __init__(self, key):
        self.key = key
        super().__init__(
            f"Append for {key} attempted without holding its lock. "
            "Wrap check-then-append in ledger.serialize()."
        )


class LedgerIntegrityError(CareLedgerError):
    """Base exception for append-only ledger violations."""
    pass


class ImmutableEntryError(LedgerIntegrityError):
    """Raised when attempting to modify a committed booking entry."""
    pass


class EntryNotFoundError(LedgerIntegrityError):
    """Raised when an entry id is not in the ledger."""

    def __init__(self, entry_id):
        self.entry_id = entry_id
        super().__init__(f"Booking entry '{entry_id}' does not exist")


class EntryAlreadyRetiredError(LedgerIntegrityError):
    """Raised when retiring or superseding an entry that is already retired."""

    def __init__(self, entry_id):
        self.entry_id = entry_id
        super().__init__(f"Booking entry '{entry_id}' is already retired")

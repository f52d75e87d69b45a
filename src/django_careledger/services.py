"""Host-facing booking, aggregation, commission and identifier operations."""

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Iterable

from django_careledger.aggregation import AggregateCache, aggregate, aggregate_history
from django_careledger.commissions import (
    CommissionReport,
    VoucherCommissionLine,
    evaluate,
    evaluate_many,
    voucher_commissions,
)
from django_careledger.conf import (
    get_configured_rates,
    get_excluded_categories,
    get_thresholds,
    get_voucher_rates,
)
from django_careledger.exceptions import (
    ConflictError,
    LedgerIntegrityError,
    ValidationError,
)
from django_careledger import identifiers
from django_careledger.identifiers import identifier_pattern, next_identifier
from django_careledger.intervals import (
    ActorKind,
    ConflictResult,
    ConflictSummary,
    check_conflict as detect_conflicts,
    occupied_dates,
    parse_date,
)
from django_careledger.ledger import BookingLedger
from django_careledger.locks import KeyedLocks, booking_keys
from django_careledger.models import CommissionRate
from django_careledger.records import (
    BookingRecord,
    CommissionDecision,
    CustomerSnapshot,
    MonthlyAggregate,
    RateTable,
    Thresholds,
)

logger = logging.getLogger(__name__)


def check_conflict(
    ledger: BookingLedger,
    actor_kind,
    actor_id: str,
    service_date,
    start,
    end,
    exclude_entry_id: str | None = None,
) -> ConflictResult:
    """
    Check a proposed booking against the ledger.

    Reads the actor's live entries from the day before to the day after every
    day the proposal occupies, so overnight entries on either side are seen.

    Raises:
        ValidationError: If a time or date is malformed
    """
    days = occupied_dates(service_date, start, end)
    existing = ledger.query_around(actor_kind, actor_id, days)
    return detect_conflicts(
        actor_kind, actor_id, service_date, start, end, existing,
        exclude_entry_id=exclude_entry_id,
    )


@dataclass(frozen=True)
class BookingOutcome:
    """
    Result of a booking attempt.

    A conflict is a normal outcome, not an exception. ``error`` carries the
    ConflictError for callers that prefer to raise it.
    """

    committed: bool
    record: BookingRecord
    entry_id: str | None = None
    conflicts: tuple[ConflictSummary, ...] = ()
    error: ConflictError | None = None

    @property
    def forced(self) -> bool:
        """Committed even though conflicts were found."""
        return self.committed and bool(self.conflicts)

    def raise_for_conflict(self) -> "BookingOutcome":
        if self.error is not None:
            raise self.error
        return self


def _actor_id(kind: ActorKind, record: BookingRecord) -> str:
    return record.staff_id if kind is ActorKind.STAFF else record.customer_id


def _checked_commit(ledger, record, write, *, allow_override, actor_kinds, exclude_entry_id=None):
    kinds = [ActorKind(kind) for kind in actor_kinds]
    keys = booking_keys(ActorKind.STAFF, record.staff_id, record.occupied_dates)
    for kind in kinds:
        keys.extend(booking_keys(kind, _actor_id(kind, record), record.occupied_dates))

    with ledger.serialize(keys):
        found = {}
        for kind in kinds:
            result = check_conflict(
                ledger, kind, _actor_id(kind, record),
                record.service_date, record.start_time, record.end_time,
                exclude_entry_id=exclude_entry_id,
            )
            for conflict in result.conflicts:
                found.setdefault(conflict.entry_id, conflict)
        conflicts = tuple(found.values())

        if conflicts and not allow_override:
            error = ConflictError(conflicts)
            logger.info(
                "Booking for staff %s on %s rejected: %s",
                record.staff_id, record.service_date, error,
            )
            return BookingOutcome(committed=False, record=record, conflicts=conflicts, error=error)

        if conflicts:
            logger.warning(
                "Booking for staff %s on %s forced over %d conflicting entries",
                record.staff_id, record.service_date, len(conflicts),
            )
        entry_id = write(record)

    return BookingOutcome(committed=True, record=record, entry_id=entry_id, conflicts=conflicts)


def append_booking(
    ledger: BookingLedger,
    record: BookingRecord,
    *,
    allow_override: bool = False,
    actor_kinds=(ActorKind.STAFF,),
) -> BookingOutcome:
    """
    Conflict-check and append a booking as one critical section.

    Args:
        ledger: The booking ledger
        record: The proposed booking
        allow_override: Commit even when conflicts are found (force submit);
            the conflicts are still reported on the outcome
        actor_kinds: Whose bookings to check against; staff by default

    Returns:
        BookingOutcome, committed or carrying a ConflictError

    Usage:
        outcome = append_booking(ledger, record)
        if not outcome.committed:
            show(outcome.conflicts)
    """
    return _checked_commit(
        ledger, record, ledger.append,
        allow_override=allow_override, actor_kinds=actor_kinds,
    )


def correct_booking(
    ledger: BookingLedger,
    old_id: str,
    record: BookingRecord,
    *,
    reason: str = "",
    allow_override: bool = False,
    actor_kinds=(ActorKind.STAFF,),
) -> BookingOutcome:
    """
    Replace a committed booking with a corrected one.

    The old entry is excluded from the conflict check and is retired in the
    same atomic step that appends the replacement.

    Raises:
        EntryNotFoundError: If ``old_id`` does not exist
        EntryAlreadyRetiredError: If ``old_id`` was already retired
    """
    ledger.get(old_id)

    def write(new_record):
        return ledger.supersede(old_id, new_record, reason=reason)

    return _checked_commit(
        ledger, record, write,
        allow_override=allow_override, actor_kinds=actor_kinds,
        exclude_entry_id=old_id,
    )


def expand_dates(start, end, pattern: str = "daily", weekdays=None, exclude=()) -> list[date]:
    """
    Dates from ``start`` to ``end`` inclusive for a repeating booking.

    Args:
        start: First date
        end: Last date
        pattern: "daily" or "weekly"
        weekdays: For "weekly", the weekdays to keep (Monday=0 ... Sunday=6)
        exclude: Dates to leave out

    Raises:
        ValidationError: On an unknown pattern or a malformed date
    """
    if pattern not in ("daily", "weekly"):
        raise ValidationError(f"Unknown repeat pattern {pattern!r}, expected 'daily' or 'weekly'")
    start, end = parse_date(start), parse_date(end)
    excluded = {parse_date(day) for day in exclude}
    keep = set(weekdays or ())

    dates = []
    current = start
    while current <= end:
        if current not in excluded and (pattern == "daily" or current.weekday() in keep):
            dates.append(current)
        current += timedelta(days=1)
    return dates


@dataclass(frozen=True)
class BatchItem:
    """Outcome of one date in a batch booking."""

    service_date: date
    outcome: BookingOutcome | None = None
    error: Exception | None = None

    @property
    def status(self) -> str:
        if self.outcome is None:
            return "failed"
        return "committed" if self.outcome.committed else "conflict"


@dataclass(frozen=True)
class BatchOutcome:
    """Per-date results of a batch booking."""

    items: tuple[BatchItem, ...] = ()

    def _count(self, status) -> int:
        return sum(1 for item in self.items if item.status == status)

    @property
    def succeeded(self) -> int:
        return self._count("committed")

    @property
    def conflicted(self) -> int:
        return self._count("conflict")

    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def entry_ids(self) -> list[str]:
        return [item.outcome.entry_id for item in self.items if item.status == "committed"]


def book_dates(
    ledger: BookingLedger,
    template: BookingRecord,
    dates: Iterable,
    *,
    allow_override: bool = False,
    actor_kinds=(ActorKind.STAFF,),
) -> BatchOutcome:
    """
    Book the same service on several dates.

    Each date is checked and committed on its own: a conflict or failure on
    one date does not stop the others, and nothing is retried.

    Raises:
        ValidationError: If a date is malformed or appears twice
    """
    days = [parse_date(day) for day in dates]
    if len(set(days)) != len(days):
        raise ValidationError("Batch booking dates must be distinct")

    items = []
    for day in days:
        record = replace(template, service_date=day, id="", supersedes=None)
        try:
            outcome = append_booking(
                ledger, record, allow_override=allow_override, actor_kinds=actor_kinds,
            )
        except (ValidationError, LedgerIntegrityError) as exc:
            logger.warning("Batch booking for %s failed: %s", day, exc)
            items.append(BatchItem(service_date=day, error=exc))
            continue
        items.append(BatchItem(service_date=day, outcome=outcome))

    result = BatchOutcome(items=tuple(items))
    logger.info(
        "Batch booking for staff %s: %d committed, %d conflicted, %d failed",
        template.staff_id, result.succeeded, result.conflicted, result.failed,
    )
    return result


def aggregate_month(
    ledger: BookingLedger,
    customer_id: str,
    year_month: str,
    *,
    excluded_categories=None,
    cache: AggregateCache | None = None,
) -> MonthlyAggregate:
    """
    Monthly totals of a customer, from the cache when one is given.

    A cache applies its own excluded categories; passing a different set
    alongside it is an error.

    Raises:
        ValidationError: If ``excluded_categories`` disagrees with the cache
        ConfigurationError: If no exclusion set is given or configured
    """
    if cache is not None:
        if (
            excluded_categories is not None
            and frozenset(excluded_categories) != cache.excluded_categories
        ):
            raise ValidationError(
                "excluded_categories differs from the categories the cache excludes"
            )
        return cache.get(customer_id, year_month)
    if excluded_categories is None:
        excluded_categories = get_excluded_categories()
    return aggregate(
        customer_id, year_month, ledger.entries_for_customer(customer_id), excluded_categories,
    )


def get_rate_table() -> RateTable:
    """
    Commission rates from the CommissionRate table.

    Falls back to CARELEDGER_COMMISSION_RATES when the table is empty.
    """
    table = CommissionRate.objects.as_rate_table()
    if len(table):
        return table
    return RateTable.from_dicts(get_configured_rates())


def _history(ledger, customer_id, excluded_categories):
    return aggregate_history(
        customer_id, ledger.entries_for_customer(customer_id), excluded_categories,
    )


def evaluate_commissions(
    ledger: BookingLedger,
    customer: CustomerSnapshot,
    rate_table: RateTable | None = None,
    thresholds: Thresholds | None = None,
    *,
    excluded_categories=None,
    settled_first_month: str | None = None,
) -> list[CommissionDecision]:
    """
    Commission decisions for every month of a customer's history.

    Raises:
        ConfigurationError: If a month qualifies and the introducer has no
            rate row, or a required setting is missing
        ValidationError: If the snapshot has no customer_id
    """
    if not customer.customer_id:
        raise ValidationError("Customer snapshot has no customer_id")
    if excluded_categories is None:
        excluded_categories = get_excluded_categories()
    return evaluate(
        customer.customer_id,
        customer.introducer,
        _history(ledger, customer.customer_id, excluded_categories),
        rate_table if rate_table is not None else get_rate_table(),
        thresholds if thresholds is not None else get_thresholds(),
        settled_first_month=settled_first_month,
    )


def commission_report(
    ledger: BookingLedger,
    customers: Iterable[CustomerSnapshot],
    rate_table: RateTable | None = None,
    thresholds: Thresholds | None = None,
    *,
    excluded_categories=None,
    settled_first_months=None,
) -> CommissionReport:
    """Evaluate several customers; misconfigured ones are reported, not raised."""
    customers = list(customers)
    if excluded_categories is None:
        excluded_categories = get_excluded_categories()
    histories = {
        customer.customer_id: _history(ledger, customer.customer_id, excluded_categories)
        for customer in customers
    }
    return evaluate_many(
        customers,
        histories,
        rate_table if rate_table is not None else get_rate_table(),
        thresholds if thresholds is not None else get_thresholds(),
        settled_first_months=settled_first_months,
    )


def voucher_commission_report(
    ledger: BookingLedger,
    customers: Iterable[CustomerSnapshot],
    start,
    end,
    rate_table: RateTable | None = None,
    *,
    voucher_rates=None,
    excluded_categories=None,
) -> list[VoucherCommissionLine]:
    """Voucher commission lines for the customers' entries dated within ``[start, end]``."""
    start, end = parse_date(start), parse_date(end)
    customers = list(customers)
    entries = [
        entry
        for customer in customers
        for entry in ledger.entries_for_customer(customer.customer_id)
        if start <= entry.service_date <= end
    ]
    return voucher_commissions(
        entries,
        {customer.customer_id: customer.introducer for customer in customers},
        rate_table if rate_table is not None else get_rate_table(),
        voucher_rates if voucher_rates is not None else get_voucher_rates(),
        excluded_categories if excluded_categories is not None else get_excluded_categories(),
    )


def propose_identifier(customer: CustomerSnapshot, *, locks: KeyedLocks | None = None) -> str | None:
    """
    Generate a new identifier for a customer, or None if none is due yet.

    Each call consumes a number from the pattern's sequence.
    """
    prefix = identifier_pattern(customer)
    if prefix is None:
        return None
    return next_identifier(prefix, locks=locks)


def should_prompt_replacement(existing_id: str | None, candidate_id: str | None) -> bool:
    """True iff both identifiers are of a known type and the types differ."""
    return identifiers.should_prompt_replacement(existing_id, candidate_id)

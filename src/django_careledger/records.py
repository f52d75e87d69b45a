"""Immutable value objects shared by the ledger, aggregator and commission engine."""

import logging
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum

from django_careledger.exceptions import ConfigurationError, ValidationError
from django_careledger.intervals import (
    duration_minutes,
    occupied_dates,
    parse_date,
    parse_time,
)

logger = logging.getLogger(__name__)

MINUTES_PER_HOUR = Decimal(60)
ZERO = Decimal("0")


def to_amount(value, name: str = "amount") -> Decimal:
    """Normalize a monetary value to a non-negative Decimal.

    Floats go through ``str`` to avoid binary precision artifacts.

    Raises:
        ValidationError: If the value is not a number or is negative
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"{name} {value!r} is not a number")
    if not amount.is_finite():
        raise ValidationError(f"{name} {value!r} is not a finite number")
    if amount < 0:
        raise ValidationError(f"{name} must not be negative, got {amount}")
    return amount


def minutes_to_hours(minutes: int) -> Decimal:
    return Decimal(minutes) / MINUTES_PER_HOUR


def display_hours(value) -> Decimal:
    """Round hours to one decimal place for display only."""
    return Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def year_month_of(value) -> str:
    """Calendar month key ``YYYY-MM`` of a date."""
    value = parse_date(value)
    return f"{value.year:04d}-{value.month:02d}"


def month_bounds(year_month: str) -> tuple[date, date]:
    """First and last day of a ``YYYY-MM`` month.

    Raises:
        ValidationError: If the key is not a valid month
    """
    try:
        year_str, month_str = year_month.split("-")
        first = date(int(year_str), int(month_str), 1)
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid month {year_month!r}, expected YYYY-MM")
    next_month = date(first.year + first.month // 12, first.month % 12 + 1, 1)
    return first, next_month - timedelta(days=1)


@dataclass(frozen=True)
class BookingRecord:
    """
    Immutable snapshot of a booking entry.

    Times and amounts are normalized on construction; ``hours`` is derived
    from the time range and never stored independently.

    Usage:
        record = BookingRecord(
            customer_id="CCSV-MC0001",
            staff_id="S001",
            service_date=date(2024, 1, 5),
            start_time="22:00",
            end_time="06:00",
            fee=Decimal("1200"),
            staff_salary=Decimal("800"),
            category="社區券",
        )
        record.hours  # Decimal("8")
    """

    customer_id: str
    staff_id: str
    service_date: date
    start_time: time
    end_time: time
    fee: Decimal
    staff_salary: Decimal
    category: str = ""
    service_type: str = ""
    id: str = ""
    supersedes: str | None = None

    def __post_init__(self):
        # Use object.__setattr__ because dataclass is frozen
        object.__setattr__(self, "service_date", parse_date(self.service_date))
        object.__setattr__(self, "start_time", parse_time(self.start_time))
        object.__setattr__(self, "end_time", parse_time(self.end_time))
        object.__setattr__(self, "fee", to_amount(self.fee, "fee"))
        object.__setattr__(self, "staff_salary", to_amount(self.staff_salary, "staff_salary"))
        if not self.customer_id:
            raise ValidationError("customer_id is required")
        if not self.staff_id:
            raise ValidationError("staff_id is required")

    @classmethod
    def create(cls, *, hours=None, **fields) -> "BookingRecord":
        """Build a record from intake data.

        If ``hours`` is supplied it must agree with the time range.

        Raises:
            ValidationError: If any field is malformed or hours disagree
        """
        record = cls(**fields)
        if hours is not None:
            supplied = to_amount(hours, "hours")
            if supplied != record.hours:
                raise ValidationError(
                    f"hours {supplied} does not match {record.start_time:%H:%M}-"
                    f"{record.end_time:%H:%M} ({display_hours(record.hours)}h)"
                )
        if record.salary_exceeds_fee:
            logger.warning(
                "Staff salary %s exceeds fee %s for customer %s on %s",
                record.staff_salary, record.fee, record.customer_id, record.service_date,
            )
        return record

    @property
    def minutes(self) -> int:
        return duration_minutes(self.start_time, self.end_time)

    @property
    def hours(self) -> Decimal:
        return minutes_to_hours(self.minutes)

    @property
    def profit(self) -> Decimal:
        return self.fee - self.staff_salary

    @property
    def salary_exceeds_fee(self) -> bool:
        return self.staff_salary > self.fee

    @property
    def year_month(self) -> str:
        return year_month_of(self.service_date)

    @property
    def occupied_dates(self) -> list[date]:
        return occupied_dates(self.service_date, self.start_time, self.end_time)


class CustomerType(str, Enum):
    VOUCHER = "voucher"
    DIRECT = "direct"


class VoucherStatus(str, Enum):
    PENDING = "pending"
    HELD = "held"
    NONE = "none"


@dataclass(frozen=True)
class CustomerSnapshot:
    """Read-only view of the customer attributes the core needs."""

    customer_type: CustomerType
    voucher_status: VoucherStatus = VoucherStatus.NONE
    introducer: str | None = None
    customer_id: str | None = None

    def __post_init__(self):
        try:
            object.__setattr__(self, "customer_type", CustomerType(self.customer_type))
            object.__setattr__(
                self, "voucher_status", VoucherStatus(self.voucher_status or VoucherStatus.NONE)
            )
        except ValueError as exc:
            raise ValidationError(str(exc))
        object.__setattr__(self, "introducer", self.introducer or None)


@dataclass(frozen=True)
class Thresholds:
    """Commission qualification thresholds; either one is sufficient."""

    hours: Decimal
    fee: Decimal

    def __post_init__(self):
        object.__setattr__(self, "hours", Decimal(str(self.hours)))
        object.__setattr__(self, "fee", Decimal(str(self.fee)))


@dataclass(frozen=True)
class CommissionRateRow:
    """Commission rates for one introducer."""

    introducer: str
    first_month_rate: Decimal
    subsequent_month_rate: Decimal
    voucher_commission_percentage: Decimal | None = None

    def __post_init__(self):
        object.__setattr__(self, "first_month_rate", Decimal(str(self.first_month_rate)))
        object.__setattr__(self, "subsequent_month_rate", Decimal(str(self.subsequent_month_rate)))
        if self.voucher_commission_percentage is not None:
            object.__setattr__(
                self, "voucher_commission_percentage",
                Decimal(str(self.voucher_commission_percentage)),
            )


class RateTable:
    """
    Introducer-keyed commission rate table.

    Usage:
        table = RateTable([CommissionRateRow("Annie", 500, 300)])
        table.rate_for("Annie").first_month_rate  # Decimal("500")
    """

    def __init__(self, rows=()):
        self._rows: dict[str, CommissionRateRow] = {}
        for row in rows:
            if row.introducer in self._rows:
                raise ConfigurationError(
                    f"Duplicate commission rate for introducer '{row.introducer}'",
                    introducer=row.introducer,
                )
            self._rows[row.introducer] = row

    @classmethod
    def from_dicts(cls, rows) -> "RateTable":
        try:
            return cls(CommissionRateRow(**row) for row in rows)
        except (TypeError, InvalidOperation) as exc:
            raise ConfigurationError(f"Invalid commission rate configuration: {exc}")

    def rate_for(self, introducer: str) -> CommissionRateRow:
        """Get the rate row for an introducer.

        Raises:
            ConfigurationError: If the introducer has no rate row
        """
        try:
            return self._rows[introducer]
        except KeyError:
            raise ConfigurationError(
                f"No commission rate configured for introducer '{introducer}'",
                introducer=introducer,
            )

    def __contains__(self, introducer) -> bool:
        return introducer in self._rows

    def __iter__(self):
        return iter(self._rows.values())

    def __len__(self) -> int:
        return len(self._rows)


@dataclass(frozen=True)
class MonthlyAggregate:
    """Totals for one customer in one calendar month."""

    customer_id: str
    year_month: str
    minutes_total: int = 0
    fee_total: Decimal = ZERO
    staff_salary_total: Decimal = ZERO
    entry_count: int = 0

    @property
    def hours_total(self) -> Decimal:
        return minutes_to_hours(self.minutes_total)

    @property
    def profit_total(self) -> Decimal:
        return self.fee_total - self.staff_salary_total

    @property
    def display_hours(self) -> Decimal:
        return display_hours(self.hours_total)


@dataclass(frozen=True)
class CommissionDecision:
    """Commission outcome for one customer-month."""

    customer_id: str
    year_month: str
    introducer: str | None
    qualifies: bool
    is_first_qualifying_month: bool
    payable_amount: Decimal
    month_sequence: int = 0
    aggregate: MonthlyAggregate | None = field(default=None, compare=False)

"""Monthly aggregation of booking entries.

Aggregates are pure functions of the entries passed in. Hours are summed as
whole minutes and converted once, so totals are exact; rounding to one decimal
place happens only for display.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from django_careledger.intervals import parse_date
from django_careledger.records import (
    ZERO,
    BookingRecord,
    MonthlyAggregate,
    minutes_to_hours,
    month_bounds,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def _counted(entries: Iterable[BookingRecord], customer_id, excluded_categories, retired_ids):
    excluded = frozenset(excluded_categories)
    retired = frozenset(retired_ids)
    for entry in entries:
        if entry.customer_id != customer_id:
            continue
        if entry.id in retired or entry.category in excluded:
            continue
        yield entry


def _total(customer_id: str, year_month: str, entries) -> MonthlyAggregate:
    minutes, fee, salary, count = 0, ZERO, ZERO, 0
    for entry in entries:
        minutes += entry.minutes
        fee += entry.fee
        salary += entry.staff_salary
        count += 1
    return MonthlyAggregate(
        customer_id=customer_id,
        year_month=year_month,
        minutes_total=minutes,
        fee_total=fee,
        staff_salary_total=salary,
        entry_count=count,
    )


def aggregate(
    customer_id: str,
    year_month: str,
    entries: Iterable[BookingRecord],
    excluded_categories=frozenset(),
    retired_ids=frozenset(),
) -> MonthlyAggregate:
    """
    Total one customer's counted entries for one calendar month.

    An entry counts when it belongs to the customer, its service date falls
    in ``year_month``, it is not retired and its category is not excluded.
    An overnight entry counts entirely in the month of its service date.

    Args:
        customer_id: Customer to aggregate
        year_month: Month key ``YYYY-MM``
        entries: Candidate entries; others are filtered out
        excluded_categories: Categories that never count
        retired_ids: Ids of retired entries to skip when ``entries`` is not
            already restricted to live entries

    Returns:
        MonthlyAggregate; all totals are zero when nothing counts

    Raises:
        ValidationError: If ``year_month`` is not a valid month key
    """
    month_bounds(year_month)
    counted = [
        entry for entry in _counted(entries, customer_id, excluded_categories, retired_ids)
        if entry.year_month == year_month
    ]
    return _total(customer_id, year_month, counted)


def aggregate_history(
    customer_id: str,
    entries: Iterable[BookingRecord],
    excluded_categories=frozenset(),
    retired_ids=frozenset(),
) -> list[MonthlyAggregate]:
    """Aggregates for every month with at least one counted entry, oldest first."""
    by_month = defaultdict(list)
    for entry in _counted(entries, customer_id, excluded_categories, retired_ids):
        by_month[entry.year_month].append(entry)
    return [_total(customer_id, month, by_month[month]) for month in sorted(by_month)]


class AggregateCache:
    """
    Memo of monthly aggregates keyed by (customer_id, year_month).

    Registers itself as a ledger listener and drops a key whenever an entry
    of that customer-month is appended or retired. With the ORM ledger the
    invalidation runs on commit, and reads inside an open transaction bypass
    the memo entirely. The ledger stays the source of truth;
    a miss always recomputes from it.

    Usage:
        cache = AggregateCache(ledger, excluded_categories={"MC街客"})
        cache.get("MC0001", "2024-01")
    """

    def __init__(self, ledger, excluded_categories=None):
        self.ledger = ledger
        self._excluded_categories = (
            frozenset(excluded_categories) if excluded_categories is not None else None
        )
        self._lock = threading.Lock()
        self._cache: dict[tuple[str, str], MonthlyAggregate] = {}
        self._generations: dict[tuple[str, str], int] = defaultdict(int)
        ledger.add_listener(self.invalidate)

    @property
    def excluded_categories(self) -> frozenset:
        if self._excluded_categories is None:
            from django_careledger.conf import get_excluded_categories

            self._excluded_categories = get_excluded_categories()
        return self._excluded_categories

    def get(self, customer_id: str, year_month: str) -> MonthlyAggregate:
        if not self.ledger.reads_are_committed:
            # Inside an open transaction: see its own writes, store nothing.
            return self._compute(customer_id, year_month)

        key = (customer_id, year_month)
        with self._lock:
            cached = self._cache.get(key)
            generation = self._generations[key]
        if cached is not None:
            return cached

        result = self._compute(customer_id, year_month)
        with self._lock:
            # An invalidation while computing means the result may be stale.
            if self._generations[key] == generation:
                self._cache[key] = result
        return result

    def _compute(self, customer_id, year_month):
        return aggregate(
            customer_id,
            year_month,
            self.ledger.entries_for_customer(customer_id),
            self.excluded_categories,
        )

    def invalidate(self, customer_id: str, year_month: str) -> None:
        key = (customer_id, year_month)
        with self._lock:
            self._cache.pop(key, None)
            self._generations[key] += 1
        logger.debug("Invalidated aggregate for %s %s", customer_id, year_month)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            for key in self._generations:
                self._generations[key] += 1

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._cache


@dataclass(frozen=True)
class PeriodSummary:
    """Business totals over a date range."""

    start: date
    end: date
    total_revenue: Decimal
    total_staff_salary: Decimal
    total_minutes: int
    entry_count: int

    @property
    def total_profit(self) -> Decimal:
        return self.total_revenue - self.total_staff_salary

    @property
    def total_hours(self) -> Decimal:
        return minutes_to_hours(self.total_minutes)

    @property
    def avg_profit_per_hour(self) -> Decimal:
        if not self.total_minutes:
            return ZERO
        return (self.total_profit / self.total_hours).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CategorySummary:
    """Totals for one project category over a date range."""

    category: str
    total_fee: Decimal
    total_profit: Decimal
    total_minutes: int
    entry_count: int
    unique_customers: int

    @property
    def total_hours(self) -> Decimal:
        return minutes_to_hours(self.total_minutes)


def _in_period(entries, start, end):
    start, end = parse_date(start), parse_date(end)
    return [entry for entry in entries if start <= entry.service_date <= end]


def summarize_period(entries: Iterable[BookingRecord], start, end) -> PeriodSummary:
    """Revenue, salary, profit and hours of all entries dated within ``[start, end]``."""
    selected = _in_period(entries, start, end)
    return PeriodSummary(
        start=parse_date(start),
        end=parse_date(end),
        total_revenue=sum((entry.fee for entry in selected), ZERO),
        total_staff_salary=sum((entry.staff_salary for entry in selected), ZERO),
        total_minutes=sum(entry.minutes for entry in selected),
        entry_count=len(selected),
    )


def summarize_by_category(entries: Iterable[BookingRecord], start, end) -> list[CategorySummary]:
    """
    Per-category totals for entries dated within ``[start, end]``.

    Entries without a category are skipped. Results are sorted by revenue,
    highest first, then by category name.
    """
    grouped = defaultdict(list)
    for entry in _in_period(entries, start, end):
        if entry.category:
            grouped[entry.category].append(entry)

    summaries = [
        CategorySummary(
            category=category,
            total_fee=sum((e.fee for e in group), ZERO),
            total_profit=sum((e.profit for e in group), ZERO),
            total_minutes=sum(e.minutes for e in group),
            entry_count=len(group),
            unique_customers=len({e.customer_id for e in group}),
        )
        for category, group in grouped.items()
    ]
    summaries.sort(key=lambda s: (-s.total_fee, s.category))
    return summaries


def revenue_growth_rate(current: Decimal, previous: Decimal) -> Decimal:
    """
    Month-over-month revenue change as a percentage.

    With no previous revenue the rate is 100 if there is current revenue,
    otherwise 0.
    """
    current, previous = Decimal(current), Decimal(previous)
    if previous > 0:
        rate = (current - previous) / previous * 100
    elif current > 0:
        rate = Decimal(100)
    else:
        rate = ZERO
    return rate.quantize(CENTS, rounding=ROUND_HALF_UP)

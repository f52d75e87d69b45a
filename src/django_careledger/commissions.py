"""Commission eligibility and payout for introducer-referred customers.

A customer-month qualifies when its hours OR its fee reach the thresholds.
Qualifying months are walked chronologically: the earliest is the customer's
first qualifying month and pays the introducer's first-month rate, every later
qualifying month pays the subsequent-month rate, gaps included.

Evaluation is pure: the same aggregates, rate table and thresholds always
give the same decisions.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping

from django_careledger.exceptions import ConfigurationError, ValidationError
from django_careledger.records import (
    ZERO,
    BookingRecord,
    CommissionDecision,
    MonthlyAggregate,
    RateTable,
    Thresholds,
    month_bounds,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def qualifies(aggregate: MonthlyAggregate, thresholds: Thresholds) -> bool:
    """True if the month reaches the hours threshold or the fee threshold."""
    return aggregate.hours_total >= thresholds.hours or aggregate.fee_total >= thresholds.fee


def evaluate(
    customer_id: str,
    introducer: str | None,
    monthly_aggregates: Iterable[MonthlyAggregate],
    rate_table: RateTable,
    thresholds: Thresholds,
    settled_first_month: str | None = None,
) -> list[CommissionDecision]:
    """
    Decide commission for every month of one customer's history.

    Args:
        customer_id: The customer being evaluated
        introducer: The customer's introducer; None earns nothing
        monthly_aggregates: The customer's monthly aggregates, any order
        rate_table: Introducer-keyed rates
        thresholds: Qualification thresholds
        settled_first_month: ``YYYY-MM`` of a first month already paid out.
            When given it is the first month; no other month is ever
            reported as first.

    Returns:
        One CommissionDecision per month, in chronological order

    Raises:
        ConfigurationError: If a month qualifies and the introducer has no rate row
        ValidationError: If an aggregate belongs to another customer or a
            month appears twice

    Usage:
        decisions = evaluate("MC0001", "Annie", history, table, Thresholds(25, 6200))
        [d.payable_amount for d in decisions if d.qualifies]
    """
    aggregates = sorted(monthly_aggregates, key=lambda a: a.year_month)
    seen = set()
    for aggregate in aggregates:
        if aggregate.customer_id != customer_id:
            raise ValidationError(
                f"Aggregate for customer {aggregate.customer_id} passed to evaluation of {customer_id}"
            )
        if aggregate.year_month in seen:
            raise ValidationError(f"Month {aggregate.year_month} appears twice for {customer_id}")
        seen.add(aggregate.year_month)

    if settled_first_month is not None:
        month_bounds(settled_first_month)
        first_month = settled_first_month
    else:
        first_month = next(
            (a.year_month for a in aggregates if qualifies(a, thresholds)),
            None,
        )

    decisions = []
    sequence = 0
    for aggregate in aggregates:
        month_qualifies = qualifies(aggregate, thresholds)
        is_first = month_qualifies and aggregate.year_month == first_month
        payable = ZERO
        month_sequence = 0

        if month_qualifies:
            sequence += 1
            month_sequence = sequence
            if introducer is not None:
                row = rate_table.rate_for(introducer)
                rate = row.first_month_rate if is_first else row.subsequent_month_rate
                payable = _cents(rate)

        decisions.append(
            CommissionDecision(
                customer_id=customer_id,
                year_month=aggregate.year_month,
                introducer=introducer,
                qualifies=month_qualifies,
                is_first_qualifying_month=is_first,
                payable_amount=payable,
                month_sequence=month_sequence,
                aggregate=aggregate,
            )
        )
    return decisions


@dataclass(frozen=True)
class CommissionReport:
    """Decisions for several customers plus the customers that failed."""

    decisions: tuple[CommissionDecision, ...] = ()
    errors: Mapping[str, ConfigurationError] = field(default_factory=dict)

    @property
    def total_payable(self) -> Decimal:
        return sum((d.payable_amount for d in self.decisions), ZERO)

    @property
    def ok(self) -> bool:
        return not self.errors


def evaluate_many(
    customers: Iterable,
    histories: Mapping[str, Iterable[MonthlyAggregate]],
    rate_table: RateTable,
    thresholds: Thresholds,
    settled_first_months: Mapping[str, str] | None = None,
) -> CommissionReport:
    """
    Evaluate several customers, skipping the ones whose configuration is broken.

    A ConfigurationError for one customer is logged and recorded in the
    report; the remaining customers are still evaluated.

    Args:
        customers: CustomerSnapshot objects with ``customer_id`` set
        histories: customer_id -> monthly aggregates
        rate_table: Introducer-keyed rates
        thresholds: Qualification thresholds
        settled_first_months: Optional customer_id -> settled first month
    """
    settled_first_months = settled_first_months or {}
    decisions = []
    errors = {}
    for customer in customers:
        try:
            decisions.extend(
                evaluate(
                    customer.customer_id,
                    customer.introducer,
                    histories.get(customer.customer_id, ()),
                    rate_table,
                    thresholds,
                    settled_first_month=settled_first_months.get(customer.customer_id),
                )
            )
        except ConfigurationError as exc:
            logger.warning("Skipping commission for customer %s: %s", customer.customer_id, exc)
            errors[customer.customer_id] = exc
    return CommissionReport(decisions=tuple(decisions), errors=errors)


@dataclass(frozen=True)
class IntroducerSummary:
    """Commission totals for one introducer."""

    introducer: str
    total_commission: Decimal
    first_month_count: int
    subsequent_month_count: int
    decisions: tuple[CommissionDecision, ...] = ()

    @property
    def customer_count(self) -> int:
        return len({d.customer_id for d in self.decisions})


def summarize_by_introducer(decisions: Iterable[CommissionDecision]) -> list[IntroducerSummary]:
    """Group qualifying decisions by introducer, sorted by introducer name."""
    grouped = defaultdict(list)
    for decision in decisions:
        if decision.qualifies and decision.introducer is not None:
            grouped[decision.introducer].append(decision)

    return [
        IntroducerSummary(
            introducer=introducer,
            total_commission=sum((d.payable_amount for d in group), ZERO),
            first_month_count=sum(1 for d in group if d.is_first_qualifying_month),
            subsequent_month_count=sum(1 for d in group if not d.is_first_qualifying_month),
            decisions=tuple(sorted(group, key=lambda d: (d.customer_id, d.year_month))),
        )
        for introducer, group in sorted(grouped.items())
    ]


@dataclass(frozen=True)
class VoucherCommissionLine:
    """Voucher commission earned by an introducer on one service entry."""

    entry_id: str
    customer_id: str
    introducer: str
    service_date: date
    service_type: str
    hours: Decimal
    voucher_rate: Decimal
    voucher_total: Decimal
    commission_percentage: Decimal
    commission_amount: Decimal


def voucher_commissions(
    entries: Iterable[BookingRecord],
    introducers: Mapping[str, str | None],
    rate_table: RateTable,
    voucher_rates: Mapping[str, Decimal],
    excluded_categories=frozenset(),
) -> list[VoucherCommissionLine]:
    """
    Per-entry voucher commission for introducers paid a voucher percentage.

    Only entries whose customer's introducer has a positive
    ``voucher_commission_percentage`` produce a line. The voucher value is
    hours times the hourly rate of the entry's service type; without a rate
    for the service type the entry's own fee per hour is used.

    Args:
        entries: Live booking entries
        introducers: customer_id -> introducer
        rate_table: Introducer-keyed rates
        voucher_rates: service_type -> voucher hourly rate
        excluded_categories: Categories that never earn commission

    Returns:
        Lines sorted by introducer, customer, service date
    """
    excluded = frozenset(excluded_categories)
    lines = []
    for entry in entries:
        if entry.category in excluded:
            continue
        introducer = introducers.get(entry.customer_id)
        if introducer is None or introducer not in rate_table:
            continue
        percentage = rate_table.rate_for(introducer).voucher_commission_percentage
        if not percentage or percentage <= 0:
            continue

        hours = entry.hours
        rate = voucher_rates.get(entry.service_type) or ZERO
        if rate <= 0:
            rate = _cents(entry.fee / hours) if hours else ZERO
        voucher_total = _cents(hours * rate)

        lines.append(
            VoucherCommissionLine(
                entry_id=entry.id,
                customer_id=entry.customer_id,
                introducer=introducer,
                service_date=entry.service_date,
                service_type=entry.service_type,
                hours=hours,
                voucher_rate=rate,
                voucher_total=voucher_total,
                commission_percentage=percentage,
                commission_amount=_cents(voucher_total * percentage / 100),
            )
        )
    lines.sort(key=lambda line: (line.introducer, line.customer_id, line.service_date, line.entry_id))
    return lines

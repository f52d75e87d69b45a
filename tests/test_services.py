"""Tests for host-facing services."""
import logging
from datetime import date
from decimal import Decimal

import pytest
from django.test import override_settings

from django_careledger.aggregation import AggregateCache
from django_careledger.exceptions import (
    ConfigurationError,
    ConflictError,
    EntryAlreadyRetiredError,
    EntryNotFoundError,
    ValidationError,
)
from django_careledger.intervals import ActorKind
from django_careledger.models import CommissionRate
from django_careledger.records import CustomerSnapshot, RateTable, Thresholds
from django_careledger.services import (
    aggregate_month,
    append_booking,
    book_dates,
    check_conflict,
    commission_report,
    correct_booking,
    evaluate_commissions,
    expand_dates,
    get_rate_table,
    propose_identifier,
    should_prompt_replacement,
    voucher_commission_report,
)
from tests.conftest import make_record


class TestCheckConflict:
    """Test suite for the ledger-backed conflict check."""

    def test_sees_previous_day_overnight_entry(self, memory_ledger):
        night = append_booking(
            memory_ledger, make_record(service_date=date(2024, 1, 4), start_time="22:00", end_time="06:00"),
        )
        result = check_conflict(memory_ledger, ActorKind.STAFF, "S001", date(2024, 1, 5), "05:00", "07:00")
        assert result.conflicting_ids == [night.entry_id]

    def test_other_staff_not_reported(self, memory_ledger):
        append_booking(memory_ledger, make_record(staff_id="S002"))
        result = check_conflict(memory_ledger, "staff", "S001", "2024-01-05", "09:00", "12:00")
        assert not result.has_conflict


class TestAppendBooking:
    """Test suite for append_booking."""

    def test_commits_free_slot(self, memory_ledger):
        outcome = append_booking(memory_ledger, make_record())
        assert outcome.committed
        assert outcome.error is None
        assert not outcome.forced
        assert memory_ledger.get(outcome.entry_id).staff_id == "S001"
        assert outcome.raise_for_conflict() is outcome

    def test_conflict_is_an_outcome(self, memory_ledger):
        first = append_booking(memory_ledger, make_record())
        second = append_booking(memory_ledger, make_record(customer_id="MC0002", start_time="11:00", end_time="13:00"))

        assert not second.committed
        assert second.entry_id is None
        assert [c.entry_id for c in second.conflicts] == [first.entry_id]
        assert isinstance(second.error, ConflictError)
        with pytest.raises(ConflictError):
            second.raise_for_conflict()
        assert len(memory_ledger) == 1

    def test_touching_booking_commits(self, memory_ledger):
        append_booking(memory_ledger, make_record())
        assert append_booking(memory_ledger, make_record(start_time="12:00", end_time="14:00")).committed

    def test_override_commits_and_reports(self, memory_ledger, caplog):
        append_booking(memory_ledger, make_record())
        with caplog.at_level(logging.WARNING, logger="django_careledger.services"):
            outcome = append_booking(memory_ledger, make_record(customer_id="MC0002"), allow_override=True)
        assert outcome.committed
        assert outcome.forced
        assert len(outcome.conflicts) == 1
        assert "forced" in caplog.text

    def test_customer_check_is_opt_in(self, memory_ledger):
        append_booking(memory_ledger, make_record(staff_id="S001"))
        other_staff = make_record(staff_id="S002")

        rejected = append_booking(
            memory_ledger, other_staff, actor_kinds=(ActorKind.STAFF, ActorKind.CUSTOMER),
        )
        assert not rejected.committed
        assert append_booking(memory_ledger, other_staff).committed

    def test_works_with_orm_ledger(self, orm_ledger):
        first = append_booking(orm_ledger, make_record())
        second = append_booking(orm_ledger, make_record(start_time="10:00", end_time="11:00"))
        assert first.committed
        assert second.conflicts[0].entry_id == first.entry_id


class TestCorrectBooking:
    """Test suite for correct_booking."""

    def test_correction_ignores_its_own_entry(self, memory_ledger):
        original = append_booking(memory_ledger, make_record())
        outcome = correct_booking(
            memory_ledger, original.entry_id, make_record(start_time="10:00", end_time="13:00"),
            reason="time changed",
        )
        assert outcome.committed
        assert memory_ledger.is_retired(original.entry_id)
        assert memory_ledger.get(outcome.entry_id).supersedes == original.entry_id

    def test_correction_into_conflict_keeps_original(self, memory_ledger):
        original = append_booking(memory_ledger, make_record())
        append_booking(memory_ledger, make_record(start_time="14:00", end_time="16:00"))

        outcome = correct_booking(
            memory_ledger, original.entry_id, make_record(start_time="13:00", end_time="15:00"),
        )
        assert not outcome.committed
        assert not memory_ledger.is_retired(original.entry_id)

    def test_unknown_entry(self, memory_ledger):
        with pytest.raises(EntryNotFoundError):
            correct_booking(memory_ledger, "missing", make_record())

    def test_retired_entry(self, memory_ledger):
        original = append_booking(memory_ledger, make_record())
        memory_ledger.retire(original.entry_id)
        with pytest.raises(EntryAlreadyRetiredError):
            correct_booking(memory_ledger, original.entry_id, make_record())


class TestExpandDates:
    """Test suite for expand_dates."""

    def test_daily_with_exclusions(self):
        dates = expand_dates("2024-01-01", "2024-01-05", "daily", exclude=["2024-01-03"])
        assert dates == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 4), date(2024, 1, 5)]

    def test_weekly_keeps_weekdays(self):
        # 2024-01-01 is a Monday
        dates = expand_dates("2024-01-01", "2024-01-14", "weekly", weekdays=[0, 2])
        assert dates == [date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 8), date(2024, 1, 10)]

    def test_weekly_without_weekdays_is_empty(self):
        assert expand_dates("2024-01-01", "2024-01-14", "weekly") == []

    def test_reversed_range_is_empty(self):
        assert expand_dates("2024-01-05", "2024-01-01") == []

    def test_unknown_pattern(self):
        with pytest.raises(ValidationError):
            expand_dates("2024-01-01", "2024-01-05", "monthly")


class TestBookDates:
    """Test suite for book_dates."""

    def test_partial_failure_counts(self, memory_ledger):
        append_booking(memory_ledger, make_record(service_date=date(2024, 1, 2)))
        template = make_record(customer_id="MC0002")

        result = book_dates(memory_ledger, template, expand_dates("2024-01-01", "2024-01-03"))

        assert (result.succeeded, result.conflicted, result.failed) == (2, 1, 0)
        assert [item.status for item in result.items] == ["committed", "conflict", "committed"]
        assert len(result.entry_ids) == 2
        assert len(memory_ledger) == 3

    def test_overnight_batch_blocks_itself_on_next_day(self, memory_ledger):
        template = make_record(start_time="22:00", end_time="06:00")
        result = book_dates(memory_ledger, template, ["2024-01-01", "2024-01-02"])
        assert result.succeeded == 2

        template = make_record(start_time="05:00", end_time="07:00", customer_id="MC0002")
        result = book_dates(memory_ledger, template, ["2024-01-03"])
        assert result.conflicted == 1

    def test_duplicate_dates_rejected(self, memory_ledger):
        with pytest.raises(ValidationError):
            book_dates(memory_ledger, make_record(), ["2024-01-01", "2024-01-01"])


class TestAggregateMonth:
    """Test suite for aggregate_month."""

    def test_uses_configured_exclusions(self, memory_ledger):
        append_booking(memory_ledger, make_record())
        append_booking(memory_ledger, make_record(start_time="13:00", end_time="14:00", category="MC街客"))
        result = aggregate_month(memory_ledger, "MC0001", "2024-01")
        assert result.entry_count == 1

    def test_missing_exclusion_setting_raises(self, memory_ledger, settings):
        del settings.CARELEDGER_EXCLUDED_CATEGORIES
        with pytest.raises(ConfigurationError):
            aggregate_month(memory_ledger, "MC0001", "2024-01")

    def test_through_cache(self, memory_ledger):
        cache = AggregateCache(memory_ledger, excluded_categories=())
        append_booking(memory_ledger, make_record())
        assert aggregate_month(memory_ledger, "MC0001", "2024-01", cache=cache).entry_count == 1
        assert ("MC0001", "2024-01") in cache

    def test_cache_with_matching_exclusions(self, memory_ledger):
        cache = AggregateCache(memory_ledger, excluded_categories={"MC街客"})
        append_booking(memory_ledger, make_record(category="MC街客"))
        result = aggregate_month(memory_ledger, "MC0001", "2024-01", excluded_categories=["MC街客"], cache=cache)
        assert result.entry_count == 0

    def test_cache_with_conflicting_exclusions(self, memory_ledger):
        cache = AggregateCache(memory_ledger, excluded_categories=())
        with pytest.raises(ValidationError):
            aggregate_month(memory_ledger, "MC0001", "2024-01", excluded_categories={"MC街客"}, cache=cache)


def _book_hours(ledger, customer_id, days, fee="300"):
    for day in days:
        append_booking(
            ledger,
            make_record(customer_id=customer_id, staff_id=f"S-{day.isoformat()}", service_date=day,
                        start_time="08:00", end_time="18:00", fee=Decimal(fee)),
        )


@pytest.mark.django_db
class TestEvaluateCommissions:
    """Test suite for evaluate_commissions and commission_report."""

    def test_uses_settings_rates_when_table_empty(self, memory_ledger):
        _book_hours(memory_ledger, "MC0001", [date(2024, 1, d) for d in (2, 3, 4)])
        customer = CustomerSnapshot("direct", introducer="Annie", customer_id="MC0001")

        decisions = evaluate_commissions(memory_ledger, customer)

        assert len(decisions) == 1
        assert decisions[0].qualifies
        assert decisions[0].payable_amount == Decimal("500")

    def test_database_rates_take_precedence(self, memory_ledger):
        CommissionRate.objects.create(introducer="Annie", first_month_rate=Decimal("800"),
                                      subsequent_month_rate=Decimal("350"))
        _book_hours(memory_ledger, "MC0001", [date(2024, 1, d) for d in (2, 3, 4)])
        _book_hours(memory_ledger, "MC0001", [date(2024, 3, d) for d in (2, 3, 4)])
        customer = CustomerSnapshot("direct", introducer="Annie", customer_id="MC0001")

        decisions = evaluate_commissions(memory_ledger, customer)

        assert [d.payable_amount for d in decisions] == [Decimal("800"), Decimal("350")]
        assert [d.month_sequence for d in decisions] == [1, 2]

    def test_excluded_categories_do_not_qualify(self, memory_ledger):
        for d in (2, 3, 4):
            append_booking(memory_ledger, make_record(
                service_date=date(2024, 1, d), start_time="08:00", end_time="18:00", category="Steven140",
            ))
        customer = CustomerSnapshot("direct", introducer="Annie", customer_id="MC0001")
        assert evaluate_commissions(memory_ledger, customer) == []

    def test_explicit_rate_table_and_thresholds(self, memory_ledger):
        _book_hours(memory_ledger, "MC0001", [date(2024, 1, 2)])
        customer = CustomerSnapshot("direct", introducer="Zed", customer_id="MC0001")
        with pytest.raises(ConfigurationError):
            evaluate_commissions(memory_ledger, customer, RateTable(), Thresholds(hours=5, fee=99999))

    def test_snapshot_without_customer_id(self, memory_ledger):
        with pytest.raises(ValidationError):
            evaluate_commissions(memory_ledger, CustomerSnapshot("direct", introducer="Annie"))

    @override_settings(CARELEDGER_COMMISSION_THRESHOLDS={"hours": 10, "fee": 100000})
    def test_thresholds_from_settings(self, memory_ledger):
        _book_hours(memory_ledger, "MC0001", [date(2024, 1, 2)])
        customer = CustomerSnapshot("direct", introducer="Annie", customer_id="MC0001")
        assert evaluate_commissions(memory_ledger, customer)[0].qualifies

    def test_commission_report_collects_errors(self, memory_ledger):
        _book_hours(memory_ledger, "MC0001", [date(2024, 1, d) for d in (2, 3, 4)])
        _book_hours(memory_ledger, "MC0002", [date(2024, 2, d) for d in (2, 3, 4)])
        customers = [
            CustomerSnapshot("direct", introducer="Ghost", customer_id="MC0001"),
            CustomerSnapshot("voucher", "held", "Annie", customer_id="MC0002"),
        ]
        report = commission_report(memory_ledger, customers)
        assert list(report.errors) == ["MC0001"]
        assert report.total_payable == Decimal("500")

    def test_get_rate_table_fallback(self):
        table = get_rate_table()
        assert "Annie" in table
        assert table.rate_for("Annie").voucher_commission_percentage == Decimal("10")

    def test_voucher_commission_report(self, memory_ledger):
        append_booking(memory_ledger, make_record(service_type="NC護理", start_time="09:00", end_time="11:00"))
        append_booking(memory_ledger, make_record(service_date=date(2024, 2, 1)))
        customers = [CustomerSnapshot("voucher", "held", "Annie", customer_id="MC0001")]

        lines = voucher_commission_report(memory_ledger, customers, "2024-01-01", "2024-01-31")

        assert len(lines) == 1
        assert lines[0].voucher_total == Decimal("1890.00")
        assert lines[0].commission_amount == Decimal("189.00")


@pytest.mark.django_db
class TestIdentifierServices:
    """Test suite for propose_identifier and should_prompt_replacement."""

    def test_direct_customer_gets_mc_identifier(self):
        assert propose_identifier(CustomerSnapshot("direct", introducer="Annie")) == "MC0001"

    def test_pending_voucher_gets_nothing(self):
        assert propose_identifier(CustomerSnapshot("voucher", "pending", "Annie")) is None

    def test_unaccepted_proposal_leaves_gap(self):
        customer = CustomerSnapshot("voucher", "held", "Annie")
        assert propose_identifier(customer) == "CCSV-MC0001"
        assert propose_identifier(customer) == "CCSV-MC0002"

    def test_prompt_when_type_changes(self):
        existing = "CCSV-MC0004"
        candidate = propose_identifier(CustomerSnapshot("direct", introducer="Annie"))
        assert should_prompt_replacement(existing, candidate)
        assert not should_prompt_replacement("MC0003", candidate)

"""Shared fixtures for django-careledger tests."""
from datetime import date
from decimal import Decimal

import pytest

from django_careledger.intervals import ActorKind
from django_careledger.locks import booking_keys
from django_careledger.records import BookingRecord


def make_record(**overrides):
    """Build a BookingRecord with sensible defaults."""
    fields = {
        'customer_id': 'MC0001',
        'staff_id': 'S001',
        'service_date': date(2024, 1, 5),
        'start_time': '09:00',
        'end_time': '12:00',
        'fee': Decimal('600'),
        'staff_salary': Decimal('400'),
        'category': 'MC社區券(醫點）',
        'service_type': 'PC看顧',
    }
    fields.update(overrides)
    return BookingRecord(**fields)


def commit(ledger, record):
    """Append a record inside the serialization scope it needs."""
    keys = booking_keys(ActorKind.STAFF, record.staff_id, record.occupied_dates)
    with ledger.serialize(keys):
        return ledger.append(record)


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def memory_ledger():
    from django_careledger.ledger import InMemoryBookingLedger
    return InMemoryBookingLedger()


@pytest.fixture
def orm_ledger(db):
    from django_careledger.ledger import OrmBookingLedger
    return OrmBookingLedger()

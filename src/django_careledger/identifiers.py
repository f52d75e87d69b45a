"""Customer identifier allocation.

Identifiers are generated from the customer's type, voucher status and
introducer:

    direct customer with introducer           -> MC0001
    voucher customer, voucher held, introducer -> CCSV-MC0001
                                                  (or an introducer-specific
                                                  prefix such as S-CCSV0001)

Anything else produces no candidate. When a customer already has an
identifier and a freshly generated candidate is of a different known type,
the host should ask before replacing it.
"""

import logging
import re
from enum import Enum

from django.db import transaction

from django_careledger.conf import get_identifier_pad_width, get_introducer_voucher_prefixes
from django_careledger.locks import KeyedLocks
from django_careledger.models import IdentifierSequence
from django_careledger.records import CustomerSnapshot, CustomerType, VoucherStatus

logger = logging.getLogger(__name__)

DIRECT_PREFIX = "MC"
VOUCHER_PREFIX = "CCSV-MC"
# Introducer-specific voucher prefixes in use before prefixes became configurable.
KNOWN_VOUCHER_PREFIXES = ("S-CCSV", VOUCHER_PREFIX)

_DIRECT_PATTERN = re.compile(r"^MC\d+$")

_identifier_locks = KeyedLocks()


class IdentifierState(str, Enum):
    NO_IDENTIFIER = "no_identifier"
    DIRECT = "direct"
    VOUCHER_PENDING = "voucher_pending"
    VOUCHER_HELD = "voucher_held"


class IdentifierType(str, Enum):
    DIRECT = "direct"
    VOUCHER = "voucher"
    UNKNOWN = "unknown"


def identifier_state(customer: CustomerSnapshot) -> IdentifierState:
    """Where the customer sits in the identifier state machine."""
    if customer.customer_type is CustomerType.VOUCHER:
        if customer.voucher_status is VoucherStatus.PENDING:
            return IdentifierState.VOUCHER_PENDING
        if customer.voucher_status is VoucherStatus.HELD and customer.introducer:
            return IdentifierState.VOUCHER_HELD
        return IdentifierState.NO_IDENTIFIER
    if customer.introducer:
        return IdentifierState.DIRECT
    return IdentifierState.NO_IDENTIFIER


def identifier_pattern(customer: CustomerSnapshot, voucher_prefixes=None) -> str | None:
    """
    Prefix of the identifier to generate for a customer, or None.

    Only direct customers with an introducer, and voucher customers with an
    introducer whose voucher is held, get an identifier.

    Args:
        customer: Customer attributes
        voucher_prefixes: introducer -> voucher prefix overrides
            (defaults to CARELEDGER_INTRODUCER_VOUCHER_PREFIXES)
    """
    state = identifier_state(customer)
    if state is IdentifierState.DIRECT:
        return DIRECT_PREFIX
    if state is IdentifierState.VOUCHER_HELD:
        if voucher_prefixes is None:
            voucher_prefixes = get_introducer_voucher_prefixes()
        return voucher_prefixes.get(customer.introducer, VOUCHER_PREFIX)
    return None


def classify_identifier(identifier: str | None, voucher_prefixes=None) -> IdentifierType:
    """
    Classify an identifier by its shape alone.

    Voucher identifiers start with a voucher prefix; direct identifiers are
    ``MC`` followed only by digits. Everything else, including legacy
    hand-typed ids, is unknown.
    """
    if not identifier:
        return IdentifierType.UNKNOWN
    if voucher_prefixes is None:
        voucher_prefixes = get_introducer_voucher_prefixes()

    prefixes = set(KNOWN_VOUCHER_PREFIXES) | set(voucher_prefixes.values())
    if any(identifier.startswith(prefix) for prefix in prefixes):
        return IdentifierType.VOUCHER
    if _DIRECT_PATTERN.match(identifier):
        return IdentifierType.DIRECT
    return IdentifierType.UNKNOWN


def should_prompt_replacement(existing: str | None, candidate: str | None, voucher_prefixes=None) -> bool:
    """True iff both identifiers are of a known type and the types differ."""
    existing_type = classify_identifier(existing, voucher_prefixes)
    candidate_type = classify_identifier(candidate, voucher_prefixes)
    if IdentifierType.UNKNOWN in (existing_type, candidate_type):
        return False
    return existing_type is not candidate_type


def next_identifier(prefix: str, pad_width: int | None = None, locks: KeyedLocks | None = None) -> str:
    """
    Allocate the next identifier for a prefix.

    The counter row is incremented under select_for_update() while this
    process also holds the per-prefix lock. Numbers are never reused, so a
    candidate that is not accepted leaves a gap.

    Args:
        prefix: Identifier prefix, e.g. 'MC'
        pad_width: Digits when the counter is first created
            (defaults to CARELEDGER_IDENTIFIER_PAD_WIDTH)
        locks: Lock registry; a module-wide registry by default

    Returns:
        The formatted identifier, e.g. "MC0042"

    Usage:
        next_identifier("CCSV-MC")  # "CCSV-MC0001", then "CCSV-MC0002", ...
    """
    locks = locks if locks is not None else _identifier_locks

    with locks.hold(("identifier", prefix)), transaction.atomic():
        seq, created = IdentifierSequence.objects.select_for_update().get_or_create(
            prefix=prefix,
            defaults={"pad_width": pad_width or get_identifier_pad_width()},
        )
        seq.current_value += 1
        seq.save(update_fields=["current_value", "updated_at"])

    logger.info("Allocated customer identifier %s", seq.formatted_value)
    return seq.formatted_value

"""Booking entry, retirement, lock, commission rate and identifier sequence models."""

import uuid

from django.db import models
from django.utils import timezone

from django_careledger.exceptions import ImmutableEntryError
from django_careledger.intervals import ActorKind, duration_minutes
from django_careledger.records import BookingRecord, CommissionRateRow, RateTable, month_bounds


class CareLedgerBaseModel(models.Model):
    """Base model with created/updated timestamps."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class BookingEntryQuerySet(models.QuerySet):
    """Custom queryset for BookingEntry model."""

    def live(self):
        """Return entries that have not been retired."""
        return self.filter(retirement__isnull=True)

    def retired(self):
        """Return entries that have been retired."""
        return self.filter(retirement__isnull=False)

    def for_actor(self, actor_kind, actor_id):
        """Return entries of a staff member or a customer."""
        if ActorKind(actor_kind) is ActorKind.STAFF:
            return self.filter(staff_id=actor_id)
        return self.filter(customer_id=actor_id)

    def for_customer(self, customer_id):
        return self.filter(customer_id=customer_id)

    def in_month(self, year_month):
        """Return entries whose service date falls in a YYYY-MM month."""
        first, last = month_bounds(year_month)
        return self.filter(service_date__gte=first, service_date__lte=last)


class BookingEntry(models.Model):
    """
    Immutable committed booking.

    Rows are only ever inserted. A correction inserts a new entry pointing at
    the replaced one through ``supersedes`` and retires the old entry with a
    BookingRetirement row.

    Usage:
        entry = BookingEntry.from_record(record)
        entry.save()
        entry.save()  # raises ImmutableEntryError
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    customer_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Customer identifier (referenced, not owned)",
    )
    staff_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Care staff identifier (referenced, not owned)",
    )

    service_date = models.DateField(help_text="Date the service starts")
    start_time = models.TimeField()
    end_time = models.TimeField(
        help_text="End time; at or before start_time means the service crosses midnight",
    )
    service_minutes = models.PositiveIntegerField(
        help_text="Derived duration in minutes",
    )

    fee = models.DecimalField(max_digits=12, decimal_places=2)
    staff_salary = models.DecimalField(max_digits=12, decimal_places=2)

    category = models.CharField(
        max_length=100,
        blank=True,
        default='',
        db_index=True,
        help_text="Project category; some categories never count for commission",
    )
    service_type = models.CharField(max_length=100, blank=True, default='')

    # Correction tracking - ONE direction only
    supersedes = models.ForeignKey(
        'self',
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name='corrections',
        help_text="The entry this one replaces (if this is a correction)",
    )

    recorded_at = models.DateTimeField(auto_now_add=True)

    objects = BookingEntryQuerySet.as_manager()

    class Meta:
        app_label = 'django_careledger'
        ordering = ['service_date', 'start_time']
        indexes = [
            models.Index(fields=['staff_id', 'service_date'], name='careledger_staff_date_idx'),
            models.Index(fields=['customer_id', 'service_date'], name='careledger_customer_date_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(fee__gte=0),
                name="careledger_entry_fee_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(staff_salary__gte=0),
                name="careledger_entry_salary_non_negative",
            ),
        ]

    def save(self, *args, **kwargs):
        """Insert only; committed entries are never updated."""
        if not self._state.adding:
            raise ImmutableEntryError(
                f"Cannot modify booking entry {self.pk}. Supersede it instead."
            )
        self.service_minutes = duration_minutes(self.start_time, self.end_time)
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableEntryError(
            f"Cannot delete booking entry {self.pk}. Retire it instead."
        )

    def __str__(self):
        return f"{self.service_date} {self.start_time:%H:%M}-{self.end_time:%H:%M} {self.staff_id}->{self.customer_id}"

    @property
    def is_retired(self) -> bool:
        return hasattr(self, 'retirement')

    @classmethod
    def from_record(cls, record: BookingRecord) -> "BookingEntry":
        """Build an unsaved entry from a validated record."""
        return cls(
            customer_id=record.customer_id,
            staff_id=record.staff_id,
            service_date=record.service_date,
            start_time=record.start_time,
            end_time=record.end_time,
            service_minutes=record.minutes,
            fee=record.fee,
            staff_salary=record.staff_salary,
            category=record.category,
            service_type=record.service_type,
            supersedes_id=record.supersedes,
        )

    def to_record(self) -> BookingRecord:
        return BookingRecord(
            id=str(self.pk),
            customer_id=self.customer_id,
            staff_id=self.staff_id,
            service_date=self.service_date,
            start_time=self.start_time,
            end_time=self.end_time,
            fee=self.fee,
            staff_salary=self.staff_salary,
            category=self.category,
            service_type=self.service_type,
            supersedes=str(self.supersedes_id) if self.supersedes_id else None,
        )


class BookingRetirement(models.Model):
    """
    Marks a booking entry as logically removed.

    The entry row is untouched; aggregation and conflict checks skip any
    entry that has a retirement.
    """

    entry = models.OneToOneField(
        BookingEntry,
        on_delete=models.PROTECT,
        related_name='retirement',
    )
    reason = models.TextField(blank=True, default='')
    retired_at = models.DateTimeField(default=timezone.now)

    class Meta:
        app_label = 'django_careledger'

    def __str__(self):
        return f"Retirement of {self.entry_id} at {self.retired_at:%Y-%m-%d %H:%M}"


class LedgerLock(models.Model):
    """
    Lock row for one (actor_kind, actor_id, service_date) key.

    Selecting these rows FOR UPDATE serializes check-then-append across
    processes; in-process callers are serialized by KeyedLocks first.
    """

    actor_kind = models.CharField(
        max_length=20,
        choices=[(kind.value, kind.name.title()) for kind in ActorKind],
    )
    actor_id = models.CharField(max_length=64)
    service_date = models.DateField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        app_label = 'django_careledger'
        unique_together = ['actor_kind', 'actor_id', 'service_date']

    def __str__(self):
        return f"{self.actor_kind}:{self.actor_id}@{self.service_date}"

    @classmethod
    def acquire(cls, keys):
        """Lock the rows for ``keys``; call inside transaction.atomic()."""
        for key in sorted(keys):
            cls.objects.select_for_update().get_or_create(
                actor_kind=key.actor_kind.value,
                actor_id=key.actor_id,
                service_date=key.service_date,
            )


class CommissionRateQuerySet(models.QuerySet):
    """Custom queryset for CommissionRate model."""

    def as_rate_table(self) -> RateTable:
        return RateTable(rate.to_row() for rate in self)


class CommissionRate(CareLedgerBaseModel):
    """
    Introducer-specific commission rates.

    Usage:
        CommissionRate.objects.create(
            introducer='Annie',
            first_month_rate=Decimal('500'),
            subsequent_month_rate=Decimal('300'),
        )
        table = CommissionRate.objects.as_rate_table()
    """

    introducer = models.CharField(max_length=100, unique=True)
    first_month_rate = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Paid for the customer's first qualifying month",
    )
    subsequent_month_rate = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Paid for every later qualifying month",
    )
    voucher_commission_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Percentage of the voucher value paid on voucher services",
    )

    objects = CommissionRateQuerySet.as_manager()

    class Meta:
        app_label = 'django_careledger'
        ordering = ['introducer']

    def __str__(self):
        return f"{self.introducer}: {self.first_month_rate}/{self.subsequent_month_rate}"

    def to_row(self) -> CommissionRateRow:
        return CommissionRateRow(
            introducer=self.introducer,
            first_month_rate=self.first_month_rate,
            subsequent_month_rate=self.subsequent_month_rate,
            voucher_commission_percentage=self.voucher_commission_percentage,
        )


class IdentifierSequence(CareLedgerBaseModel):
    """
    Counter behind one customer identifier pattern.

    Generates identifiers like "MC0042" or "CCSV-MC0007"; the prefix is the
    pattern key.
    """

    prefix = models.CharField(
        max_length=20,
        unique=True,
        help_text="Identifier prefix, e.g. 'MC', 'CCSV-MC'",
    )
    current_value = models.PositiveBigIntegerField(
        default=0,
        help_text="Last number handed out",
    )
    pad_width = models.PositiveSmallIntegerField(
        default=4,
        help_text="Zero-padding width for the number portion",
    )

    class Meta:
        app_label = 'django_careledger'

    def __str__(self):
        return f"{self.prefix}: {self.current_value}"

    @property
    def formatted_value(self) -> str:
        return f"{self.prefix}{str(self.current_value).zfill(self.pad_width)}"

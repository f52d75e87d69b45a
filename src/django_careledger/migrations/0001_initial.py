# Generated manually for standalone django-careledger package

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="BookingEntry",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "customer_id",
                    models.CharField(
                        db_index=True,
                        help_text="Customer identifier (referenced, not owned)",
                        max_length=64,
                    ),
                ),
                (
                    "staff_id",
                    models.CharField(
                        db_index=True,
                        help_text="Care staff identifier (referenced, not owned)",
                        max_length=64,
                    ),
                ),
                (
                    "service_date",
                    models.DateField(help_text="Date the service starts"),
                ),
                ("start_time", models.TimeField()),
                (
                    "end_time",
                    models.TimeField(
                        help_text="End time; at or before start_time means the service crosses midnight",
                    ),
                ),
                (
                    "service_minutes",
                    models.PositiveIntegerField(help_text="Derived duration in minutes"),
                ),
                ("fee", models.DecimalField(decimal_places=2, max_digits=12)),
                ("staff_salary", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "category",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Project category; some categories never count for commission",
                        max_length=100,
                    ),
                ),
                (
                    "service_type",
                    models.CharField(blank=True, default="", max_length=100),
                ),
                ("recorded_at", models.DateTimeField(auto_now_add=True)),
                (
                    "supersedes",
                    models.ForeignKey(
                        blank=True,
                        help_text="The entry this one replaces (if this is a correction)",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="corrections",
                        to="django_careledger.bookingentry",
                    ),
                ),
            ],
            options={
                "ordering": ["service_date", "start_time"],
                "indexes": [
                    models.Index(
                        fields=["staff_id", "service_date"],
                        name="careledger_staff_date_idx",
                    ),
                    models.Index(
                        fields=["customer_id", "service_date"],
                        name="careledger_customer_date_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("fee__gte", 0)),
                        name="careledger_entry_fee_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("staff_salary__gte", 0)),
                        name="careledger_entry_salary_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BookingRetirement",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("reason", models.TextField(blank=True, default="")),
                (
                    "retired_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                (
                    "entry",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="retirement",
                        to="django_careledger.bookingentry",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="LedgerLock",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "actor_kind",
                    models.CharField(
                        choices=[("staff", "Staff"), ("customer", "Customer")],
                        max_length=20,
                    ),
                ),
                ("actor_id", models.CharField(max_length=64)),
                ("service_date", models.DateField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "unique_together": {("actor_kind", "actor_id", "service_date")},
            },
        ),
        migrations.CreateModel(
            name="CommissionRate",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("introducer", models.CharField(max_length=100, unique=True)),
                (
                    "first_month_rate",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Paid for the customer's first qualifying month",
                        max_digits=12,
                    ),
                ),
                (
                    "subsequent_month_rate",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Paid for every later qualifying month",
                        max_digits=12,
                    ),
                ),
                (
                    "voucher_commission_percentage",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Percentage of the voucher value paid on voucher services",
                        max_digits=5,
                        null=True,
                    ),
                ),
            ],
            options={
                "ordering": ["introducer"],
            },
        ),
        migrations.CreateModel(
            name="IdentifierSequence",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "prefix",
                    models.CharField(
                        help_text="Identifier prefix, e.g. 'MC', 'CCSV-MC'",
                        max_length=20,
                        unique=True,
                    ),
                ),
                (
                    "current_value",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Last number handed out",
                    ),
                ),
                (
                    "pad_width",
                    models.PositiveSmallIntegerField(
                        default=4,
                        help_text="Zero-padding width for the number portion",
                    ),
                ),
            ],
        ),
    ]

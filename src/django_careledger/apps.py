"""Django app configuration for django-careledger."""

from django.apps import AppConfig


class DjangoCareLedgerConfig(AppConfig):
    """App configuration for django-careledger."""

    name = 'django_careledger'
    verbose_name = 'Care Ledger'
    default_auto_field = 'django.db.models.BigAutoField'

"""Django settings for django-careledger tests."""

SECRET_KEY = 'test-secret-key-not-for-production'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': 'careledger.sqlite3',
        # Threaded tests open one connection per thread; a file lets them share it.
        'TEST': {'NAME': 'careledger_tests.sqlite3'},
        'OPTIONS': {'transaction_mode': 'IMMEDIATE', 'timeout': 20},
    }
}

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'django_careledger',
]

USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

CARELEDGER_EXCLUDED_CATEGORIES = ['MC街客', 'Steven140']

CARELEDGER_COMMISSION_THRESHOLDS = {'hours': 25, 'fee': 6200}

CARELEDGER_COMMISSION_RATES = [
    {
        'introducer': 'Annie',
        'first_month_rate': 500,
        'subsequent_month_rate': 300,
        'voucher_commission_percentage': 10,
    },
    {
        'introducer': 'Steven Kwok',
        'first_month_rate': 500,
        'subsequent_month_rate': 300,
    },
]

CARELEDGER_VOUCHER_RATES = {
    'NC護理': '945',
    'PC看顧': '248',
}

CARELEDGER_INTRODUCER_VOUCHER_PREFIXES = {
    'Steven Kwok': 'S-CCSV',
}

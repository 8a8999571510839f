"""Settings used by the test suite."""
from .settings import *  # noqa: F401,F403

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

STRIPE_SECRET_KEY = 'sk_test_placeholder'
AUCTION_CARD_TRANSFER_MODE = 'automatic'
AUCTION_SELF_CALL_BASE_URL = ''
AUCTION_CRON_TOKEN = ''

TRANSFER_QUEUE_RUN_INLINE = True
TRANSFER_QUEUE_RETRY_DELAY_MS = 0
TRANSFER_QUEUE_MAX_RETRIES = 3

BIDCOIN_LEDGER_BACKEND = 'orm'
BIDCOIN_AUCTION_SELLER_RATE = '0'
BIDCOIN_AUCTION_WINNER_RATE = '0'

LOG_LEVEL = 'WARNING'
LOGGING['root']['level'] = LOG_LEVEL  # noqa: F405
LOGGING['loggers']['billing']['level'] = LOG_LEVEL  # noqa: F405

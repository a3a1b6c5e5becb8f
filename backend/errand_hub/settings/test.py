"""Settings used by the test suite."""

from .settings import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
        'OPTIONS': {
            'transaction_mode': 'IMMEDIATE',
            'timeout': 20,
        },
        # File-backed so threaded tests share one database
        'TEST': {
            'NAME': BASE_DIR / 'test_db.sqlite3',
        },
    }
}

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

# Timers are queued on the in-memory broker and never run by themselves;
# tests fire expire_offer() directly
CELERY_TASK_ALWAYS_EAGER = False
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

BOT_WEBHOOK_SECRET = ""

OFFER_WINDOW_SECONDS = 60
MATCHING_MAX_CANDIDATES = 5
MATCHING_ROUNDS = 3
MATCHING_RADIUS_MULTIPLIER = 2.0
MATCHING_INITIAL_RADIUS_METERS = {"rider": 3000.0, "errander": 2000.0}
MATCHING_OFFER_FANOUT = 1
MATCHING_EXCLUSIVE_ROLES = ["rider"]
SESSION_TTL_MINUTES = 10
SESSION_COLLISION_POLICY = "replace"
SESSION_SWEEP_BATCH_SIZE = 500

LOGGING['root']['level'] = 'CRITICAL'  # noqa: F405
for _logger in LOGGING['loggers'].values():  # noqa: F405
    _logger['level'] = 'CRITICAL'

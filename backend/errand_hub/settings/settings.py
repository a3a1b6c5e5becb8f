"""
Base Django settings for the errand hub backend.

Environment-specific overrides live in prod.py and test.py.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(os.path.join(BASE_DIR, '..', '.env'))

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-errand-hub-dev-key")
DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() == "true"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(',')

INSTALLED_APPS = [
    'daphne',
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'channels',
    'workers',
    'customers',
    'deliveries',
    'conversations',
    'realtime',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'errand_hub.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

ASGI_APPLICATION = 'errand_hub.asgi.application'

# Database: PostgreSQL when configured, SQLite otherwise
if os.getenv("POSTGRES_DB"):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.getenv("POSTGRES_DB"),
            'USER': os.getenv("POSTGRES_USER", "postgres"),
            'PASSWORD': os.getenv("POSTGRES_PASSWORD", ""),
            'HOST': os.getenv("POSTGRES_HOST", "localhost"),
            'PORT': os.getenv("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
            # Writers take the lock up front so conditional updates serialize
            'OPTIONS': {
                'transaction_mode': 'IMMEDIATE',
                'timeout': 20,
            },
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'UNAUTHENTICATED_USER': None,
}

# Redis / Channels / Celery
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", REDIS_URL)
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE

# ---------------------- Matching ----------------------

OFFER_WINDOW_SECONDS = int(os.getenv("OFFER_WINDOW_SECONDS", 60))
MATCHING_MAX_CANDIDATES = int(os.getenv("MATCHING_MAX_CANDIDATES", 5))
MATCHING_ROUNDS = int(os.getenv("MATCHING_ROUNDS", 3))
MATCHING_RADIUS_MULTIPLIER = float(os.getenv("MATCHING_RADIUS_MULTIPLIER", 2.0))
MATCHING_INITIAL_RADIUS_METERS = {
    "rider": float(os.getenv("RIDER_INITIAL_RADIUS_METERS", 3000)),
    "errander": float(os.getenv("ERRANDER_INITIAL_RADIUS_METERS", 2000)),
}
MATCHING_OFFER_FANOUT = int(os.getenv("MATCHING_OFFER_FANOUT", 1))
MATCHING_EXCLUSIVE_ROLES = [
    role.strip()
    for role in os.getenv("MATCHING_EXCLUSIVE_ROLES", "rider").split(',')
    if role.strip()
]
OFFER_RECONCILE_INTERVAL_SECONDS = 120

# ---------------------- Conversation sessions ----------------------

SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", 10))
SESSION_COLLISION_POLICY = os.getenv("SESSION_COLLISION_POLICY", "replace")
SESSION_SWEEP_BATCH_SIZE = int(os.getenv("SESSION_SWEEP_BATCH_SIZE", 500))
SESSION_SWEEP_INTERVAL_SECONDS = 60

# Shared secret the chat transport sends in X-Bot-Secret (empty = open)
BOT_WEBHOOK_SECRET = os.getenv("BOT_WEBHOOK_SECRET", "")

CELERY_BEAT_SCHEDULE = {
    "sweep-expired-sessions": {
        "task": "conversations.tasks.sweep_expired_sessions_task",
        "schedule": SESSION_SWEEP_INTERVAL_SECONDS,
        "options": {"priority": 9},
    },
    "reconcile-stale-offering": {
        "task": "deliveries.tasks.reconcile_offers_task",
        "schedule": OFFER_RECONCILE_INTERVAL_SECONDS,
    },
}

# ---------------------- Logging ----------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'services': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'workers': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'deliveries': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'conversations': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'realtime': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}

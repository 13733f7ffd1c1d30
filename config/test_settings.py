from decimal import Decimal

from config.settings import *  # noqa: F401,F403
from config.settings import BASE_DIR

# File-backed test database so worker threads in the concurrency tests
# share it through their own connections.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "test.sqlite3",
        "OPTIONS": {"transaction_mode": "IMMEDIATE", "timeout": 30},
        "TEST": {"NAME": str(BASE_DIR / "test_voicelink.sqlite3")},
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "voicelink-tests",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = False
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

CALL_DEFAULT_RATE_PER_MINUTE = Decimal("0.35")
TELEPHONY_ACCOUNT_SID = "AC00000000000000000000000000000000"
TELEPHONY_AUTH_TOKEN = "test-auth-token"
TELEPHONY_CALLER_ID = "+15550001111"
TELEPHONY_VALIDATE_WEBHOOKS = False

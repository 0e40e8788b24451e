import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _load_dotenv(path: Path) -> None:
    if not path.exists():
        return
    for raw_line in path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        os.environ.setdefault(key, value)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


def _env_list(name: str) -> list:
    return [item.strip() for item in os.environ.get(name, "").split(",") if item.strip()]


_load_dotenv(BASE_DIR / ".env")

DEBUG = _env_bool("DEBUG", "False")

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY") or os.environ.get("SECRET_KEY", "change-me")

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get("ALLOWED_HOSTS", "*").split(",")
    if host.strip()
]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "connections",
    "portfolio",
    "ingestion",
    "alerts",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",  # Must be after SecurityMiddleware
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "pmpulse_hub.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ]
        },
    }
]

WSGI_APPLICATION = "pmpulse_hub.wsgi.application"

# Database configuration using individual DB_* environment variables;
# falls back to a local SQLite file for development and tests.
if all(
    os.environ.get(key)
    for key in ["DB_HOST", "DB_NAME", "DB_USER", "DB_PASSWORD"]
):
    db_config = {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ.get("DB_NAME"),
        "USER": os.environ.get("DB_USER"),
        "PASSWORD": os.environ.get("DB_PASSWORD"),
        "HOST": os.environ.get("DB_HOST"),
        "PORT": os.environ.get("DB_PORT", "5432"),
    }
    sslmode = os.environ.get("DB_SSLMODE")
    if sslmode:
        db_config["OPTIONS"] = {"sslmode": sslmode.lower()}
    DATABASES = {"default": db_config}
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

# Sync locks live in the cache; use Redis in any multi-worker deployment.
if os.environ.get("CACHE_URL"):
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.redis.RedisCache",
            "LOCATION": os.environ["CACHE_URL"],
        }
    }
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        }
    }

AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"
    },
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"

TIME_ZONE = os.environ.get("TIME_ZONE", "UTC")

USE_I18N = True

USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# WhiteNoise configuration for serving admin static files in production
STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"]
}

CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get(
    "CELERY_RESULT_BACKEND", "redis://localhost:6379/0"
)

EMAIL_BACKEND = os.environ.get(
    "EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend"
)
DEFAULT_FROM_EMAIL = os.environ.get("DEFAULT_FROM_EMAIL", "pmpulse@localhost")

# Fernet key for connection secrets. When empty, a key is derived from SECRET_KEY.
FIELD_ENCRYPTION_KEY = os.environ.get("FIELD_ENCRYPTION_KEY", "")

# Remote sync defaults. Rows in connections.Setting override these by
# "<category>.<key>" (e.g. alerts.failure_threshold) when a run loads its config.
REMOTE_SYNC = {
    "business_hours": {
        "enabled": _env_bool("BUSINESS_HOURS_ENABLED", "true"),
        "timezone": os.environ.get("BUSINESS_HOURS_TIMEZONE", "America/Los_Angeles"),
        "start_hour": int(os.environ.get("BUSINESS_HOURS_START", "9")),
        "end_hour": int(os.environ.get("BUSINESS_HOURS_END", "17")),
        "weekdays_only": _env_bool("BUSINESS_HOURS_WEEKDAYS_ONLY", "true"),
        "business_hours_interval": int(os.environ.get("BUSINESS_HOURS_SYNC_INTERVAL", "15")),
        "off_hours_interval": int(os.environ.get("OFF_HOURS_SYNC_INTERVAL", "60")),
    },
    "sync": {
        "resources": _env_list("SYNC_RESOURCES")
        or ["properties", "units", "vendors", "leases", "work_orders", "expenses"],
        "per_page": int(os.environ.get("SYNC_PER_PAGE", "100")),
        "max_pages": int(os.environ.get("SYNC_MAX_PAGES", "500")),
        "max_retries": int(os.environ.get("SYNC_MAX_RETRIES", "1")),
        "initial_backoff_seconds": float(os.environ.get("SYNC_INITIAL_BACKOFF", "1")),
        "backoff_multiplier": float(os.environ.get("SYNC_BACKOFF_MULTIPLIER", "2")),
        "max_backoff_seconds": float(os.environ.get("SYNC_MAX_BACKOFF", "60")),
        "request_timeout_seconds": float(os.environ.get("SYNC_REQUEST_TIMEOUT", "30")),
        "incremental_days": int(os.environ.get("SYNC_INCREMENTAL_DAYS", "7")),
        "full_sync_time": os.environ.get("SYNC_FULL_SYNC_TIME", "02:00"),
    },
    "alerts": {
        "failure_threshold": int(os.environ.get("SYNC_FAILURE_ALERT_THRESHOLD", "3")),
        "cooldown_minutes": int(os.environ.get("SYNC_FAILURE_ALERT_COOLDOWN", "60")),
        "recipients": _env_list("SYNC_FAILURE_ALERT_RECIPIENTS"),
        "webhook_url": os.environ.get("SYNC_FAILURE_ALERT_WEBHOOK", ""),
    },
    "features": {
        "notifications": _env_bool("SYNC_NOTIFICATIONS_ENABLED", "true"),
    },
}

# Sync audit: log each per-record decision (raw event stored, skip reason). Set to false in production to keep logs quiet.
SYNC_AUDIT_LOGGING = _env_bool("SYNC_AUDIT_LOGGING", "false")

# Logging Configuration
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "simple": {
            "format": "{levelname} {asctime} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
            "stream": "ext://sys.stdout",
        },
        "error_console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
            "stream": "ext://sys.stderr",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": os.environ.get("DJANGO_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
        "django.request": {
            "handlers": ["error_console"],
            "level": "ERROR",
            "propagate": False,
        },
        "django.db.backends": {
            "handlers": ["console"],
            "level": os.environ.get("DB_LOG_LEVEL", "WARNING"),  # Set to DEBUG to see SQL queries
            "propagate": False,
        },
        # Application loggers
        "connections": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "portfolio": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "ingestion": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "ingestion.sync_audit": {
            "handlers": ["console"],
            "level": "INFO" if SYNC_AUDIT_LOGGING else "WARNING",
            "propagate": False,
        },
        "alerts": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "pmpulse_hub": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        # Third-party loggers
        "celery": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
    },
}

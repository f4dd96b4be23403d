"""
Django settings for the Page Inspector site.

Secrets and deployment switches come from environment variables; inspector
tunables can be overridden here and are read at call time by the app.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "insecure-dev-key-change-me")

DEBUG = os.environ.get("DJANGO_DEBUG", "False").lower() in ("1", "true", "yes")

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",")
    if host.strip()
]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.staticfiles",
    "inspector",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "inspector_site.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
            ],
        },
    },
]

WSGI_APPLICATION = "inspector_site.wsgi.application"

# No models; an in-memory database keeps the test runner happy.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# The host page frames the proxy response from the same origin.
X_FRAME_OPTIONS = "SAMEORIGIN"

# ─── Page Inspector ───────────────────────────────────────────────────────────
INSPECTOR_MAX_REDIRECTS = int(os.environ.get("INSPECTOR_MAX_REDIRECTS", "4"))
INSPECTOR_FETCH_TIMEOUT = float(os.environ.get("INSPECTOR_FETCH_TIMEOUT", "15"))
INSPECTOR_MAX_BODY_BYTES = int(os.environ.get("INSPECTOR_MAX_BODY_BYTES", "5000000"))
INSPECTOR_USER_AGENT = os.environ.get(
    "INSPECTOR_USER_AGENT", "Mozilla/5.0 (compatible; PageInspector/1.0)"
)

# ─── Logging ──────────────────────────────────────────────────────────────────
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "inspector": {
            "handlers": ["console"],
            "level": os.environ.get("INSPECTOR_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}

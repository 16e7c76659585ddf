from pathlib import Path

from picqer_api.config import settings as app_settings

BASE_DIR = Path(__file__).resolve().parent

django_config = app_settings.django

SECRET_KEY = django_config.secret_key or "picqer-sync-insecure-key"
DEBUG = bool(django_config.debug)
ALLOWED_HOSTS: list[str] = []

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "picqer_data.apps.PicqerDataConfig",
]

MIDDLEWARE: list[str] = []

if django_config.db_engine == "django.db.backends.sqlite3":
    database_name = Path(django_config.db_name).expanduser()
    if not database_name.is_absolute():
        database_name = BASE_DIR / database_name
    DATABASES = {
        "default": {
            "ENGINE": django_config.db_engine,
            "NAME": str(database_name),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": django_config.db_engine,
            "NAME": django_config.db_name,
            "HOST": django_config.db_host,
            "PORT": django_config.db_port,
            "USER": django_config.db_user,
            "PASSWORD": django_config.db_password,
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "loggers": {
        "picqer_api": {
            "handlers": ["console"],
            "level": "DEBUG" if DEBUG else "INFO",
            "propagate": False,
        },
        "picqer_data": {
            "handlers": ["console"],
            "level": "DEBUG" if DEBUG else "INFO",
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
}

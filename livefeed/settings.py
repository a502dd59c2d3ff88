from pathlib import Path
import os
from dotenv import load_dotenv
from django.core.exceptions import ImproperlyConfigured

# -----------------------------------------------------
# Helpers
# -----------------------------------------------------
def env(name: str, default=None, *, required: bool = False):
    val = os.getenv(name, default)
    if required and (val is None or (isinstance(val, str) and val.strip() == "")):
        raise ImproperlyConfigured(f"Missing required environment variable: {name}")
    return val

def env_bool(name: str, default: bool = False) -> bool:
    return str(os.getenv(name, str(default))).lower() in {"1", "true", "yes", "on"}

def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ImproperlyConfigured(f"{name} must be a number, got {raw!r}") from e

def env_choice(name: str, default: str, choices) -> str:
    val = env(name, default).strip().lower()
    if val not in choices:
        raise ImproperlyConfigured(f"{name} must be one of {sorted(choices)}, got {val!r}")
    return val

def env_list(name: str, default: str = "") -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]

# -----------------------------------------------------
# Paths & basics
# -----------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

DEBUG = env_bool("DEBUG", False)

# Production (DEBUG=False) needs a real secret in .env
SECRET_KEY = env("DJANGO_SECRET_KEY", "dev-only-secret-key-change-me", required=not DEBUG)

ALLOWED_HOSTS = env_list("ALLOWED_HOSTS", "127.0.0.1,localhost")

# JSON API only: no admin, sessions, templates or static files
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "rest_framework",
    "streams",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "livefeed.urls"

# Encoder processes and the stream registry live in one ASGI worker's event loop
ASGI_APPLICATION = "livefeed.asgi.application"

# -----------------------------------------------------
# Database (Postgres if DB_HOST is set, else SQLite)
# -----------------------------------------------------
if os.getenv("DB_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": env("DB_NAME", "livefeed"),
            "USER": env("DB_USER", "livefeed"),
            "PASSWORD": env("DB_PASSWORD", ""),
            "HOST": env("DB_HOST"),
            "PORT": env("DB_PORT", "5432"),
            "CONN_MAX_AGE": int(env("DB_CONN_MAX_AGE", "0")),
            "OPTIONS": {"sslmode": env("DB_SSLMODE")} if os.getenv("DB_SSLMODE") else {},
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": Path(env("SQLITE_PATH", str(BASE_DIR / "livefeed.sqlite3"))),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

TIME_ZONE = "UTC"
USE_TZ = True

# -----------------------------------------------------
# Uploads
# -----------------------------------------------------
MEDIA_ROOT = Path(env("MEDIA_ROOT", str(BASE_DIR / "media")))

# Larger uploads spool to a temp file instead of memory
FILE_UPLOAD_MAX_MEMORY_SIZE = 10 * 1024 * 1024
DATA_UPLOAD_MAX_MEMORY_SIZE = None

# -----------------------------------------------------
# Logging
# -----------------------------------------------------
LOG_LEVEL = env("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "streams": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "livefeed": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

# -----------------------------------------------------
# Streaming (encoder, timers, recovery)
# -----------------------------------------------------
FFMPEG_BINARY = env("FFMPEG_BINARY", "ffmpeg")
STREAM_DEFAULT_URL = env("STREAM_DEFAULT_URL", "rtmp://a.rtmp.youtube.com/live2")
STREAM_MONITOR_INTERVAL = env_float("STREAM_MONITOR_INTERVAL", 5.0)   # seconds between liveness probes
STREAM_SPAWN_GRACE = env_float("STREAM_SPAWN_GRACE", 5.0)             # early-exit window after spawn
STREAM_STOP_TIMEOUT = env_float("STREAM_STOP_TIMEOUT", 10.0)          # SIGTERM -> SIGKILL

# Schedules whose start time passed while the service was down
STREAM_ELAPSED_SCHEDULE_POLICY = env_choice("STREAM_ELAPSED_SCHEDULE_POLICY", "fail", {"fail", "start"})

# -----------------------------------------------------
# Source media storage: local MEDIA_ROOT or S3 / MinIO
# -----------------------------------------------------
STREAM_FILE_BACKEND = env_choice("STREAM_FILE_BACKEND", "local", {"local", "s3"})

S3_ENDPOINT_URL = env("S3_ENDPOINT_URL") or "http://127.0.0.1:9000"   # MinIO for local runs
S3_REGION = env("S3_REGION", "us-east-1")
S3_BUCKET = env("S3_BUCKET", "livefeed-media", required=STREAM_FILE_BACKEND == "s3")
S3_ACCESS_KEY = env("S3_ACCESS_KEY", required=STREAM_FILE_BACKEND == "s3")
S3_SECRET_KEY = env("S3_SECRET_KEY", required=STREAM_FILE_BACKEND == "s3")
# The presigned GET handed to ffmpeg has to outlive the longest stream
S3_PRESIGN_EXPIRE_SECONDS = int(env("S3_PRESIGN_EXPIRE_SECONDS", str(7 * 24 * 3600)))

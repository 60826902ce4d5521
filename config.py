from __future__ import annotations
import os
from pathlib import Path

# Absolute project dir
BASE_DIR = Path(__file__).resolve().parent
# Absolute instance dir (defaults to <project>/instance)
INSTANCE_DIR = Path(os.getenv("INSTANCE_DIR", BASE_DIR / "instance")).resolve()

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


class BaseConfig:
    # Flask basics
    SECRET_KEY = os.getenv("SECRET_KEY", "dev")  # override in prod!
    JSON_SORT_KEYS = False

    # Database (absolute sqlite path; forward slashes are fine on Windows)
    DEFAULT_SQLITE = f"sqlite:///{(INSTANCE_DIR / 'database.db').as_posix()}"
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", DEFAULT_SQLITE)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Request bodies carry whole decks (cards + inline image references)
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", 16 * 1024 * 1024))

    # Cookie security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = _flag("SESSION_COOKIE_SECURE")

    # Cache configuration (defaults to in-process SimpleCache)
    CACHE_DEFAULT_TIMEOUT = int(os.getenv("CACHE_DEFAULT_TIMEOUT", 600))
    CACHE_TYPE = os.getenv("CACHE_TYPE", "SimpleCache")
    CACHE_REDIS_URL = os.getenv("CACHE_REDIS_URL")
    RATELIMIT_STORAGE_URI = os.getenv(
        "RATELIMIT_STORAGE_URI",
        os.getenv("REDIS_URL") or "memory://",
    )
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "200 per minute")
    RATELIMIT_AI = os.getenv("RATELIMIT_AI", "20 per minute")
    RATELIMIT_ENABLED = _flag("RATELIMIT_ENABLED", "1")
    ENABLE_TALISMAN = _flag("ENABLE_TALISMAN", "1")
    TALISMAN_FORCE_HTTPS = _flag("TALISMAN_FORCE_HTTPS", "1")
    CONTENT_SECURITY_POLICY = {
        "default-src": "'self'",
        "img-src": "'self' data: https:",
        "connect-src": "'self'",
    }

    # Public site address used when building share links
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5000")
    EXPORT_SOURCE = os.getenv("EXPORT_SOURCE", "cardsmith")
    DEV_TOOLS_ENABLED = _flag("DEV_TOOLS_ENABLED")

    # Generative AI (Gemini)
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_TEXT_MODEL = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.0-flash-001")
    GEMINI_IMAGE_MODEL = os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image-preview")
    GEMINI_EMBEDDING_MODEL = os.getenv("GEMINI_EMBEDDING_MODEL", "gemini-embedding-001")
    EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", 3072))
    IMAGE_BATCH_STAGGER_SECONDS = float(os.getenv("IMAGE_BATCH_STAGGER_SECONDS", 2))
    IMAGE_BATCH_MAX_WORKERS = int(os.getenv("IMAGE_BATCH_MAX_WORKERS", 4))

    # Object storage (Cloudflare R2, S3 compatible)
    R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
    R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID")
    R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY")
    R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME")
    R2_PATH_PREFIX = os.getenv("R2_PATH_PREFIX", "dev")
    R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")

    # Payments (Lemon Squeezy)
    LEMON_SQUEEZY_API_KEY = os.getenv("LEMON_SQUEEZY_API_KEY")
    LEMON_SQUEEZY_STORE_ID = os.getenv("LEMON_SQUEEZY_STORE_ID")
    LEMON_SQUEEZY_WEBHOOK_SECRET = os.getenv("LEMON_SQUEEZY_WEBHOOK_SECRET", "")
    LEMON_SQUEEZY_TEST_MODE = _flag("LEMON_SQUEEZY_TEST_MODE")
    LEMON_SQUEEZY_VARIANT_STARTER = os.getenv("LEMON_SQUEEZY_VARIANT_STARTER", "1144926")
    LEMON_SQUEEZY_VARIANT_POPULAR = os.getenv("LEMON_SQUEEZY_VARIANT_POPULAR", "1144938")
    LEMON_SQUEEZY_VARIANT_POWER = os.getenv("LEMON_SQUEEZY_VARIANT_POWER", "1144972")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    DEV_TOOLS_ENABLED = _flag("DEV_TOOLS_ENABLED", "1")


class ProductionConfig(BaseConfig):
    DEBUG = False
    SESSION_COOKIE_SECURE = True


def _select_config():
    env = os.getenv("FLASK_ENV")
    if env == "development":
        return DevelopmentConfig
    secret = os.getenv("SECRET_KEY", "dev")
    if not secret or secret == "dev":
        raise RuntimeError("SECRET_KEY must be set to a non-default value in production.")
    return ProductionConfig


# Choose config
Config = _select_config()

from __future__ import annotations
import os
from pathlib import Path

# Absolute project dir
BASE_DIR = Path(__file__).resolve().parent
# Absolute instance dir (defaults to <project>/instance)
INSTANCE_DIR = Path(os.getenv("INSTANCE_DIR", BASE_DIR / "instance")).resolve()

_TRUTHY = {"1", "true", "yes", "on"}


class BaseConfig:
    # Database (absolute sqlite path; forward slashes are fine on Windows)
    DEFAULT_SQLITE = f"sqlite:///{(INSTANCE_DIR / 'database.db').as_posix()}"
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", DEFAULT_SQLITE)
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Background queue
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Stats engine
    STATS_CHANGE_FEED_ENABLED = os.getenv("STATS_CHANGE_FEED_ENABLED", "1").lower() in _TRUTHY
    STATS_RUN_INLINE = os.getenv("STATS_RUN_INLINE", "1").lower() in _TRUTHY
    STATS_QUEUE_NAME = os.getenv("STATS_QUEUE_NAME", "stats")
    STATS_JOB_TIMEOUT = int(os.getenv("STATS_JOB_TIMEOUT", 60))
    STATS_JOB_RETRIES = int(os.getenv("STATS_JOB_RETRIES", 3))
    STATS_DEFAULT_LIBRARY_KEY = os.getenv("STATS_DEFAULT_LIBRARY_KEY", "my")


class DevelopmentConfig(BaseConfig):
    DEBUG = True


class TestingConfig(BaseConfig):
    TESTING = True
    STATS_RUN_INLINE = True


class ProductionConfig(BaseConfig):
    DEBUG = False
    STATS_RUN_INLINE = os.getenv("STATS_RUN_INLINE", "0").lower() in _TRUTHY


def _select_config():
    env = os.getenv("FLASK_ENV")
    if env == "development":
        return DevelopmentConfig
    if env == "testing":
        return TestingConfig
    if not os.getenv("DATABASE_URL"):
        raise RuntimeError("DATABASE_URL must be set in production.")
    return ProductionConfig


# Choose config
Config = _select_config()

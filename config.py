"""Application configuration.

Values come from the environment (a local .env file is loaded first), with
defaults suitable for running the clinic backend on a developer machine.
"""
import os
import pathlib

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = pathlib.Path(__file__).parent.resolve()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Keep the SQLite file next to this module, not in an instance folder
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'dentacare.db'}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    JSON_SORT_KEYS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON = _env_bool("LOG_JSON", True)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    SEED_SAMPLE_DATA = _env_bool("SEED_SAMPLE_DATA", False)

    # Scheduling
    SLOT_INTERVAL_MINUTES = int(os.getenv("SLOT_INTERVAL_MINUTES", "30"))
    DEFAULT_APPOINTMENT_DURATION = int(os.getenv("DEFAULT_APPOINTMENT_DURATION", "30"))
    MAX_APPOINTMENT_DURATION = int(os.getenv("MAX_APPOINTMENT_DURATION", "480"))
    DEFAULT_OPENING_TIME = os.getenv("DEFAULT_OPENING_TIME", "11:00")
    DEFAULT_CLOSING_TIME = os.getenv("DEFAULT_CLOSING_TIME", "23:00")
    PEAK_HOUR_START = int(os.getenv("PEAK_HOUR_START", "10"))
    PEAK_HOUR_END = int(os.getenv("PEAK_HOUR_END", "14"))

    # Listing
    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 100
    EXPIRY_WARNING_DAYS = 30


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_JSON = _env_bool("LOG_JSON", False)
    SEED_SAMPLE_DATA = _env_bool("SEED_SAMPLE_DATA", True)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    LOG_LEVEL = "WARNING"
    SEED_SAMPLE_DATA = False


class ProductionConfig(Config):
    DEBUG = False


CONFIGS = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config(name=None):
    """Resolve a config class by name, falling back to APP_ENV."""
    name = name or os.getenv("APP_ENV", "development")
    try:
        return CONFIGS[name]
    except KeyError:
        raise ValueError(f"Unknown config '{name}'. Use one of: {', '.join(CONFIGS)}")

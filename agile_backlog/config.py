"""
Agile Backlog Engine
Configuration classes for the backlog factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    settings = get_config(config_name)
"""

import os

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite file for local dev; the engine owns exactly one storage file
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'agile_backlog_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _env_flag(name, default):
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


class Config:
    """Base configuration shared across all environments."""

    DEBUG = False
    TESTING = False

    DATABASE_URL = None
    SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))
    AUTO_MIGRATE = _env_flag("AUTO_MIGRATE", "true")
    ECHO_SQL = _env_flag("ECHO_SQL", "false")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_FORMAT = os.getenv("LOG_FORMAT")

    # Analytics / reads
    VELOCITY_SPRINT_COUNT = int(os.getenv("VELOCITY_SPRINT_COUNT", "3"))
    SECURITY_LOG_LIMIT = int(os.getenv("SECURITY_LOG_LIMIT", "100"))

    DEFAULT_AGENT_IDENTIFIER = os.getenv("DEFAULT_AGENT_IDENTIFIER", "system")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    DATABASE_URL = os.getenv("DATABASE_URL") or _SQLITE_DEV


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    DATABASE_URL = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    AUTO_MIGRATE = True


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    DATABASE_URL = os.getenv("DATABASE_URL")

    def __init__(self):
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL environment variable is required in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


def get_config(config_name=None):
    """Instantiate the configuration class registered under *config_name*.

    Falls back to the APP_ENV env var, then to "development".
    Unknown names raise KeyError rather than silently using defaults.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")
    return config[config_name]()

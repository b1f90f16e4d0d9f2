"""
Configuration management for the Cooperative Lot Traceability service.

This module handles:
- Environment selection (production, development, testing)
- Database URL resolution (DATABASE_URL or a per-environment SQLite file)
- Service tunables (sale margin, log level, cooperative name)

Values are read from the process environment after loading an optional
``.env`` file with python-dotenv.
"""

import os
from decimal import Decimal
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DATABASE_VERSION,
    DEFAULT_COOPERATIVE_NAME,
    DEFAULT_SALE_MARGIN,
)

load_dotenv()

ENVIRONMENTS = ("production", "development", "testing")


class Config:
    """
    Application configuration manager.

    Handles database location, environment settings and the tunables the
    services read at call time.
    """

    def __init__(self, environment: str = "production"):
        """
        Initialize configuration.

        Args:
            environment: One of 'production', 'development' or 'testing'

        Raises:
            ValueError: If environment is not recognised
        """
        if environment not in ENVIRONMENTS:
            raise ValueError(
                f"Unknown environment '{environment}'. Expected one of: {ENVIRONMENTS}"
            )
        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION
        self._database_version = DATABASE_VERSION

        if environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_instance_dir()

        self._database_path = self._base_dir / DATABASE_FILENAME
        self._database_url_override = self._normalize_url(os.environ.get("DATABASE_URL"))

    @staticmethod
    def _normalize_url(url: Optional[str]) -> Optional[str]:
        """Rewrite Heroku/Railway style postgres:// URLs for SQLAlchemy."""
        if url and url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql://", 1)
        return url or None

    def _get_project_data_dir(self) -> Path:
        """Project data/ directory used in development."""
        project_root = Path(__file__).parent.parent.parent
        return project_root / "data"

    def _get_instance_dir(self) -> Path:
        """Instance directory used in production (COOP_TRACE_HOME or ~/.coop_trace)."""
        home = os.environ.get("COOP_TRACE_HOME")
        if home:
            return Path(home)
        return Path.home() / ".coop_trace"

    def ensure_directories(self):
        """Create the SQLite directory if the database is file-based."""
        if self._database_url_override is None and not self.is_testing:
            self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def app_name(self) -> str:
        """Application name."""
        return self._app_name

    @property
    def app_version(self) -> str:
        """Application version."""
        return self._app_version

    @property
    def database_version(self) -> str:
        """Database schema version."""
        return self._database_version

    @property
    def database_path(self) -> Path:
        """Full path to the SQLite database file (unused with DATABASE_URL)."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Returns:
            DATABASE_URL when set, an in-memory SQLite URL when testing,
            otherwise the environment's SQLite file.
        """
        if self._database_url_override:
            return self._database_url_override
        if self.is_testing:
            return "sqlite:///:memory:"
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def sale_margin(self) -> Decimal:
        """Markup used when suggesting a lot's sale price."""
        raw = os.environ.get("COOP_TRACE_SALE_MARGIN")
        if raw is None or raw.strip() == "":
            return DEFAULT_SALE_MARGIN
        return Decimal(raw.strip())

    @property
    def log_level(self) -> str:
        """Console log level name."""
        return os.environ.get("COOP_TRACE_LOG_LEVEL", "INFO").upper()

    @property
    def cooperative_name(self) -> str:
        """Name shown on the public verification page."""
        return os.environ.get("COOP_TRACE_COOPERATIVE_NAME", DEFAULT_COOPERATIVE_NAME)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == "testing"

    def __repr__(self) -> str:
        """String representation of config."""
        return f"Config(environment='{self.environment}', database_url='{self.database_url}')"


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument; this prevents switching databases
    mid-process.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    COOP_TRACE_ENV or defaults to production. Ignored if
                    singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get("COOP_TRACE_ENV", "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        import logging

        logger = logging.getLogger(__name__)
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton."
        )

    return _config_instance


def reset_config():
    """
    Reset the global configuration instance.

    Useful for testing.
    """
    global _config_instance
    _config_instance = None


def get_database_url() -> str:
    """Get the database URL."""
    return get_config().database_url

# binary-roi-engine/config.py
"""
Configuration management for the binary matching and ROI engine.
Loads from .env, validates critical keys.
"""
import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Configuration error exception."""
    pass


class Config:
    """
    Configuration manager with static and dynamic values.

    Usage:
        # Load from .env
        Config.initialize_from_env()

        # Get value
        url = Config.get(Config.DATABASE_URL)

        # Override at runtime (tests, admin tools)
        Config.set(Config.BONUS_TERMS_POLICY, "default")
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"

    # Bonus terms (fallbacks when no package context is available)
    DEFAULT_BINARY_PCT = "DEFAULT_BINARY_PCT"
    DEFAULT_POWER_CAPACITY = "DEFAULT_POWER_CAPACITY"
    BONUS_TERMS_POLICY = "BONUS_TERMS_POLICY"

    # ROI
    DEFAULT_RENEWABLE_PCT = "DEFAULT_RENEWABLE_PCT"
    DEFAULT_DURATION_DAYS = "DEFAULT_DURATION_DAYS"
    DEFAULT_TOTAL_OUTPUT_PCT = "DEFAULT_TOTAL_OUTPUT_PCT"

    # Run control
    MAX_ENTITY_ATTEMPTS = "MAX_ENTITY_ATTEMPTS"
    RUN_LEASE_SECONDS = "RUN_LEASE_SECONDS"

    # Scheduler
    DAILY_RUN_HOUR = "DAILY_RUN_HOUR"
    DAILY_RUN_MINUTE = "DAILY_RUN_MINUTE"
    SCHEDULER_TIMEZONE = "SCHEDULER_TIMEZONE"

    # Logging
    LOG_FILE = "LOG_FILE"

    # ═══════════════════════════════════════════════════════════════════════
    # CRITICAL KEYS (must be present)
    # ═══════════════════════════════════════════════════════════════════════

    CRITICAL_KEYS = [
        DATABASE_URL,
    ]

    # ═══════════════════════════════════════════════════════════════════════
    # STORAGE
    # ═══════════════════════════════════════════════════════════════════════

    _config: Dict[str, Any] = {}
    _initialized: bool = False

    # ═══════════════════════════════════════════════════════════════════════
    # METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Load configuration from .env file.

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        load_dotenv()

        logger.info("Loading configuration from environment...")

        try:
            # Database
            cls._config[cls.DATABASE_URL] = os.getenv(
                "DATABASE_URL",
                "sqlite:///binary_engine.db"
            )

            # Bonus terms
            cls._config[cls.DEFAULT_BINARY_PCT] = _decimal_env("DEFAULT_BINARY_PCT", "10")
            cls._config[cls.DEFAULT_POWER_CAPACITY] = _decimal_env("DEFAULT_POWER_CAPACITY", "1000")
            cls._config[cls.BONUS_TERMS_POLICY] = os.getenv(
                "BONUS_TERMS_POLICY",
                "latest_contribution"
            ).strip().lower()

            # ROI
            cls._config[cls.DEFAULT_RENEWABLE_PCT] = _decimal_env("DEFAULT_RENEWABLE_PCT", "50")
            cls._config[cls.DEFAULT_DURATION_DAYS] = int(os.getenv("DEFAULT_DURATION_DAYS", "150"))
            cls._config[cls.DEFAULT_TOTAL_OUTPUT_PCT] = _decimal_env("DEFAULT_TOTAL_OUTPUT_PCT", "225")

            # Run control
            cls._config[cls.MAX_ENTITY_ATTEMPTS] = int(os.getenv("MAX_ENTITY_ATTEMPTS", "3"))
            cls._config[cls.RUN_LEASE_SECONDS] = int(os.getenv("RUN_LEASE_SECONDS", "3600"))

            # Scheduler
            cls._config[cls.DAILY_RUN_HOUR] = int(os.getenv("DAILY_RUN_HOUR", "0"))
            cls._config[cls.DAILY_RUN_MINUTE] = int(os.getenv("DAILY_RUN_MINUTE", "0"))
            cls._config[cls.SCHEDULER_TIMEZONE] = os.getenv("SCHEDULER_TIMEZONE", "UTC")

            # Logging
            cls._config[cls.LOG_FILE] = os.getenv("LOG_FILE", "binary_engine.log")

            cls._initialized = True
            logger.info("Configuration loaded from environment successfully")

        except (ValueError, InvalidOperation) as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

    @classmethod
    async def validate_critical_keys(cls) -> None:
        """
        Validate that all critical configuration keys are present.

        Raises:
            ConfigurationError: If any critical key is missing
        """
        missing = []
        for key in cls.CRITICAL_KEYS:
            if not cls.get(key):
                missing.append(key)

        if missing:
            error_msg = f"Missing critical configuration keys: {', '.join(missing)}"
            logger.critical(error_msg)
            raise ConfigurationError(error_msg)

        logger.info("All critical configuration keys validated ✓")

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return cls._config.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, source: str = "runtime") -> None:
        """
        Set configuration value (for dynamic updates).

        Args:
            key: Configuration key
            value: New value
            source: Source of the update (for logging)
        """
        cls._config[key] = value
        logger.debug(f"Config updated: {key} = {value} (source: {source})")

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        """
        Get all configuration values.

        Returns:
            Copy of configuration dictionary
        """
        return cls._config.copy()

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized


def _decimal_env(name: str, default: str) -> Decimal:
    """Read a decimal value from the environment (never via float)."""
    return Decimal(os.getenv(name, default).strip())

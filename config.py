"""
Configuration module for the M-Pesa Callback service.

Loads settings from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class DatabaseConfig:
    """Order store connection configuration."""
    url: str
    query_timeout: float = 10.0
    init_schema: bool = True


@dataclass
class APIConfig:
    """Callback server configuration."""
    host: str
    port: int
    callback_path: str = '/api/callback'


@dataclass
class ReconciliationConfig:
    """Matching policy for incoming payment notifications."""
    phone_suffix_length: int = 9


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str
    file: Optional[str]


@dataclass
class ServiceConfig:
    """Service-level configuration."""
    name: str
    shutdown_timeout: int


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """
    Main configuration class that aggregates all config sections.

    Usage:
        from config import config

        print(config.database.url)
        print(config.api.callback_path)
    """

    def __init__(self):
        self._load_config()

    def _load_config(self):
        """Load all configuration from environment variables."""

        # Database configuration
        self.database = DatabaseConfig(
            url=os.getenv('DATABASE_URL', 'sqlite:///./orders.db'),
            query_timeout=float(os.getenv('DB_QUERY_TIMEOUT', '10')),
            init_schema=_env_flag('DB_INIT_SCHEMA', 'true')
        )

        # API configuration
        self.api = APIConfig(
            host=os.getenv('API_HOST', '0.0.0.0'),
            port=int(os.getenv('API_PORT', '3000')),
            callback_path=os.getenv('CALLBACK_PATH', '/api/callback')
        )

        # Reconciliation configuration
        self.reconciliation = ReconciliationConfig(
            phone_suffix_length=int(os.getenv('PHONE_SUFFIX_LENGTH', '9'))
        )

        # Logging configuration
        self.logging = LoggingConfig(
            level=os.getenv('LOG_LEVEL', 'INFO'),
            file=os.getenv('LOG_FILE')
        )

        # Service configuration
        self.service = ServiceConfig(
            name=os.getenv('SERVICE_NAME', 'MpesaCallbackService'),
            shutdown_timeout=int(os.getenv('SHUTDOWN_TIMEOUT', '30'))
        )

    def validate(self) -> List[str]:
        """
        Validate required configuration values.

        Returns:
            List of validation error messages (empty if all valid)
        """
        errors = []

        if not self.database.url:
            errors.append("DATABASE_URL is required")

        if self.database.query_timeout <= 0:
            errors.append("DB_QUERY_TIMEOUT must be greater than zero")

        if self.reconciliation.phone_suffix_length < 1:
            errors.append("PHONE_SUFFIX_LENGTH must be at least 1")

        if not self.api.callback_path.startswith('/'):
            errors.append("CALLBACK_PATH must start with '/'")

        return errors

    def is_valid(self) -> bool:
        """Check if configuration is valid."""
        return len(self.validate()) == 0


# Global configuration instance
config = Config()

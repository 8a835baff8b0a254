"""
Configuration Management Module

This module handles all application configuration including environment
variables, defaults, and validation.
"""

import os
import logging
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


def get_env_bool(key: str, default: bool = False) -> bool:
    """
    Get boolean value from environment variable.

    'true', '1', 'yes' and 'on' (case-insensitive) are True, anything else
    is False.

    Example:
        >>> os.environ['DEBUG'] = 'true'
        >>> get_env_bool('DEBUG', False)
        True
        >>> get_env_bool('NONEXISTENT', False)
        False
    """
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ('true', '1', 'yes', 'on')


def get_env_int(key: str, default: int) -> int:
    """
    Get integer value from environment variable.

    Returns the default when the variable is unset or not numeric.
    """
    value = os.getenv(key)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {key}: {value!r}, using {default}")
        return default


def get_env_optional(key: str) -> Optional[str]:
    """Get string value from environment, treating empty strings as unset."""
    value = os.getenv(key)
    if value is None or value.strip() == '':
        return None
    return value


class Config:
    """
    Application configuration class.

    Loads configuration from environment variables with sensible defaults.
    All configuration values should be accessed through this class to
    ensure consistency and ease of testing.

    Example:
        >>> config = Config()
        >>> config.MAX_FILE_SIZE
        1000000
        >>> config.PORT
        3000
    """

    # =========================================================================
    # Model Configuration
    # =========================================================================

    # gs://bucket/object, s3://bucket/key, http(s)://... or a local path
    MODEL_URL: str = os.getenv(
        'MODEL_URL',
        'gs://submissionmlgc-model/submissions-model/model.pt'
    )
    DEVICE: str = os.getenv('DEVICE', 'cpu')
    MODEL_LOAD_MODE: str = os.getenv('MODEL_LOAD_MODE', 'blocking')
    MODEL_DOWNLOAD_TIMEOUT: int = get_env_int('MODEL_DOWNLOAD_TIMEOUT', 30)
    AWS_ENDPOINT_URL: Optional[str] = get_env_optional('AWS_ENDPOINT_URL')

    # =========================================================================
    # API Configuration
    # =========================================================================

    HOST: str = os.getenv('HOST', '0.0.0.0')
    PORT: int = get_env_int('PORT', 3000)
    DEBUG: bool = get_env_bool('DEBUG', False)
    API_VERSION: str = os.getenv('API_VERSION', '1.0.0')

    # =========================================================================
    # Request Limits
    # =========================================================================

    MAX_FILE_SIZE: int = get_env_int('MAX_FILE_SIZE', 1000000)
    MAX_IMAGE_DIMENSION: int = get_env_int('MAX_IMAGE_DIMENSION', 4096)

    # =========================================================================
    # Record Store
    # =========================================================================

    RECORD_STORE: str = os.getenv('RECORD_STORE', 'firestore')
    FIRESTORE_PROJECT: Optional[str] = get_env_optional('FIRESTORE_PROJECT')
    FIRESTORE_COLLECTION: str = os.getenv('FIRESTORE_COLLECTION', 'prediction_histories')

    # =========================================================================
    # Logging Configuration
    # =========================================================================

    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT: str = os.getenv('LOG_FORMAT', 'json')

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def __init__(self):
        self.validate()
        logger.debug(f"Configuration loaded: {self}")

    @classmethod
    def validate(cls) -> bool:
        """
        Validate configuration values.

        Returns:
            True if all configuration is valid

        Raises:
            ValueError: If any configuration value is invalid
        """
        if not cls.MODEL_URL:
            raise ValueError("MODEL_URL must be set")

        valid_load_modes = ['blocking', 'background']
        if cls.MODEL_LOAD_MODE not in valid_load_modes:
            raise ValueError(
                f"Invalid MODEL_LOAD_MODE: {cls.MODEL_LOAD_MODE}. "
                f"Must be one of {valid_load_modes}"
            )

        valid_stores = ['firestore', 'memory']
        if cls.RECORD_STORE not in valid_stores:
            raise ValueError(
                f"Invalid RECORD_STORE: {cls.RECORD_STORE}. "
                f"Must be one of {valid_stores}"
            )

        if not (1024 <= cls.PORT <= 65535):
            raise ValueError(
                f"Invalid PORT: {cls.PORT}. "
                f"Must be between 1024 and 65535"
            )

        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if cls.LOG_LEVEL.upper() not in valid_levels:
            raise ValueError(
                f"Invalid LOG_LEVEL: {cls.LOG_LEVEL}. "
                f"Must be one of {valid_levels}"
            )

        valid_formats = ['json', 'text']
        if cls.LOG_FORMAT not in valid_formats:
            raise ValueError(
                f"Invalid LOG_FORMAT: {cls.LOG_FORMAT}. "
                f"Must be one of {valid_formats}"
            )

        if cls.MAX_FILE_SIZE <= 0:
            raise ValueError("MAX_FILE_SIZE must be positive")
        if cls.MAX_IMAGE_DIMENSION <= 0:
            raise ValueError("MAX_IMAGE_DIMENSION must be positive")
        if cls.MODEL_DOWNLOAD_TIMEOUT <= 0:
            raise ValueError("MODEL_DOWNLOAD_TIMEOUT must be positive")

        return True

    @classmethod
    def to_dict(cls) -> dict:
        """Convert configuration to dictionary, for logging and /info."""
        return {
            key: value
            for key, value in vars(cls).items()
            if not key.startswith('_') and key.isupper()
        }

    def __repr__(self) -> str:
        return (
            f"Config(MODEL_URL='{self.MODEL_URL}', PORT={self.PORT}, "
            f"RECORD_STORE='{self.RECORD_STORE}', LOG_LEVEL='{self.LOG_LEVEL}')"
        )


# Global configuration instance, import as: from cancer_api.config import config
config = Config()

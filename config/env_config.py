"""
Environment Configuration Module for the Medical Bill Scanner

This module handles loading environment variables from .env files
and provides default values for all configuration options.
"""

import os
from pathlib import Path
from typing import Optional

import structlog
from dotenv import load_dotenv

logger = structlog.get_logger(__name__)


class Config:
    """Configuration class that loads from .env files with fallbacks"""

    def __init__(self, env_file: Optional[str] = None):
        """
        Initialize configuration by loading from .env file

        Args:
            env_file: Path to .env file (defaults to .env in project root)
        """
        project_root = Path(__file__).parent.parent
        env_path = Path(env_file) if env_file else project_root / ".env"

        if env_path.exists():
            load_dotenv(env_path)
            logger.info("Loaded environment file", path=str(env_path))
        else:
            logger.debug("No .env file found, using environment variables only", path=str(env_path))

    @property
    def openai_api_key(self) -> Optional[str]:
        """Get OpenAI API key used for bill extraction"""
        return os.getenv("OPENAI_API_KEY") or None

    @property
    def openai_model(self) -> str:
        """Get the vision model used for bill extraction"""
        return os.getenv("OPENAI_MODEL", "gpt-4o")

    @property
    def openai_max_tokens(self) -> int:
        return int(os.getenv("OPENAI_MAX_TOKENS", "4096"))

    @property
    def rate_api_base_url(self) -> Optional[str]:
        """Get base URL of the remote Medicare rate service; unset means fallback table only"""
        return os.getenv("RATE_API_BASE_URL") or None

    @property
    def rate_api_timeout_seconds(self) -> float:
        return float(os.getenv("RATE_API_TIMEOUT_SECONDS", "10"))

    @property
    def reference_year(self) -> int:
        """Get fee schedule year stamped on fallback rates"""
        return int(os.getenv("REFERENCE_YEAR", "2024"))

    @property
    def reference_effective_date(self) -> str:
        return os.getenv("REFERENCE_EFFECTIVE_DATE", "2024-01-01")

    @property
    def max_upload_bytes(self) -> int:
        """Get upload size limit for bill images"""
        return int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

    @property
    def host(self) -> str:
        """Get server host"""
        return os.getenv("HOST", "0.0.0.0")

    @property
    def port(self) -> int:
        """Get server port"""
        return int(os.getenv("PORT", "3000"))

    @property
    def debug(self) -> bool:
        """Get debug mode"""
        return os.getenv("DEBUG", "false").lower() in ("true", "1", "yes", "on")

    @property
    def log_level(self) -> str:
        """Get log level"""
        return os.getenv("LOG_LEVEL", "INFO").upper()


# Global config instance
config = Config()


def get_config(env_file: Optional[str] = None) -> Config:
    """
    Get configuration instance

    Args:
        env_file: Optional path to specific .env file

    Returns:
        Config instance
    """
    if env_file:
        return Config(env_file)
    return config


def check_required_config(settings: Optional[Config] = None) -> bool:
    """
    Check that bill extraction is configured.

    Price comparison works without any configuration; only the image
    scanning path needs an OpenAI key.

    Args:
        settings: Configuration to check (defaults to the global config)
    """
    settings = settings or config
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set, image scanning is disabled")
        return False
    logger.info("Configuration validated successfully")
    return True

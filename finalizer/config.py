import logging
import os
from dataclasses import dataclass
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

PLACEHOLDER_KEY = "your_api_key_here"


def _is_configured(value: Optional[str]) -> bool:
    return bool(value) and value != PLACEHOLDER_KEY


def _number(name: str, default, cast=float):
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Everything the finalizer reads from the environment, read once"""
    google_maps_api_key: Optional[str] = None
    hotpepper_key: Optional[str] = None
    database_url: str = 'sqlite:///events.db'
    timezone: str = 'Asia/Tokyo'
    places_language: str = 'ja'
    provider_timeout_seconds: float = 10.0
    provider_retry_timeout_seconds: float = 30.0
    provider_max_retries: int = 2
    finalize_lock_ttl_seconds: float = 120.0
    log_file: Optional[str] = 'app.log'
    port: int = 5001

    @classmethod
    def from_env(cls, dotenv: bool = True) -> 'Settings':
        if dotenv:
            load_dotenv()
        settings = cls(
            google_maps_api_key=os.getenv('GOOGLE_MAPS_API_KEY'),
            hotpepper_key=os.getenv('HOTPEPPER_KEY'),
            database_url=os.getenv('DATABASE_URL', cls.database_url),
            timezone=os.getenv('FINALIZER_TIMEZONE', cls.timezone),
            places_language=os.getenv('PLACES_LANGUAGE', cls.places_language),
            provider_timeout_seconds=_number('PROVIDER_TIMEOUT_SECONDS', cls.provider_timeout_seconds),
            provider_retry_timeout_seconds=_number(
                'PROVIDER_RETRY_TIMEOUT_SECONDS', cls.provider_retry_timeout_seconds
            ),
            provider_max_retries=_number('PROVIDER_MAX_RETRIES', cls.provider_max_retries, int),
            finalize_lock_ttl_seconds=_number('FINALIZE_LOCK_TTL_SECONDS', cls.finalize_lock_ttl_seconds),
            log_file=os.getenv('LOG_FILE', cls.log_file) or None,
            port=_number('PORT', cls.port, int),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        # Fail on a bad timezone now rather than halfway through a pipeline
        self.tzinfo
        if self.provider_max_retries < 0:
            raise ConfigurationError("PROVIDER_MAX_RETRIES must not be negative")

    @property
    def tzinfo(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"Unknown timezone: {self.timezone!r}")

    def missing_credentials(self) -> List[str]:
        missing = []
        if not _is_configured(self.google_maps_api_key):
            missing.append('GOOGLE_MAPS_API_KEY')
        if not _is_configured(self.hotpepper_key):
            missing.append('HOTPEPPER_KEY')
        return missing

    def require_credentials(self) -> None:
        missing = self.missing_credentials()
        if missing:
            logger.error(f"Provider credentials not configured: {', '.join(missing)}")
            raise ConfigurationError(f"Missing API config: {', '.join(missing)}")

"""Runtime settings for the migration toolkit."""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "WCM_"

# Safety caps on source pagination (pages of `page_size` items)
DEFAULT_MAX_PAGES = {
    "categories": 10,
    "products": 10,
    "customers": 50,
    "orders": 100,
    "coupons": 10,
    "reviews": 50,
    "pages": 20,
    "blog_posts": 50,
}


@dataclass
class Settings:
    """Tunable policy for migration runs."""
    # Batching
    batch_size: int = 50
    page_size: int = 100
    max_pages: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_MAX_PAGES))

    # BigCommerce rate limit: 150 requests / 30s, kept slightly conservative
    rate_limit_requests: int = 140
    rate_limit_window: float = 30.0
    min_request_interval: float = 0.1
    max_concurrent_requests: int = 10

    # Retry policy for target writes; retry_attempts counts every call, the first included
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_factor: float = 2.0

    # HTTP
    request_timeout: float = 30.0

    # Persistence
    state_dir: str = "./data/wizard"

    # Logging
    log_level: str = "INFO"

    def max_pages_for(self, entity: str) -> Optional[int]:
        """Get the pagination cap for an entity, or None for unbounded."""
        return self.max_pages.get(entity)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "batch_size": self.batch_size,
            "page_size": self.page_size,
            "max_pages": dict(self.max_pages),
            "rate_limit_requests": self.rate_limit_requests,
            "rate_limit_window": self.rate_limit_window,
            "min_request_interval": self.min_request_interval,
            "max_concurrent_requests": self.max_concurrent_requests,
            "retry_attempts": self.retry_attempts,
            "retry_base_delay": self.retry_base_delay,
            "retry_max_delay": self.retry_max_delay,
            "retry_factor": self.retry_factor,
            "request_timeout": self.request_timeout,
            "state_dir": self.state_dir,
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Create from dictionary representation, ignoring unknown keys."""
        defaults = cls()
        max_pages = dict(DEFAULT_MAX_PAGES)
        max_pages.update(data.get("max_pages", {}))

        return cls(
            batch_size=int(data.get("batch_size", defaults.batch_size)),
            page_size=int(data.get("page_size", defaults.page_size)),
            max_pages=max_pages,
            rate_limit_requests=int(data.get("rate_limit_requests", defaults.rate_limit_requests)),
            rate_limit_window=float(data.get("rate_limit_window", defaults.rate_limit_window)),
            min_request_interval=float(data.get("min_request_interval", defaults.min_request_interval)),
            max_concurrent_requests=int(data.get("max_concurrent_requests", defaults.max_concurrent_requests)),
            retry_attempts=int(data.get("retry_attempts", defaults.retry_attempts)),
            retry_base_delay=float(data.get("retry_base_delay", defaults.retry_base_delay)),
            retry_max_delay=float(data.get("retry_max_delay", defaults.retry_max_delay)),
            retry_factor=float(data.get("retry_factor", defaults.retry_factor)),
            request_timeout=float(data.get("request_timeout", defaults.request_timeout)),
            state_dir=data.get("state_dir", defaults.state_dir),
            log_level=str(data.get("log_level", defaults.log_level)).upper(),
        )

    @classmethod
    def from_json_file(cls, path: str) -> "Settings":
        """Load settings from a JSON file."""
        with open(path) as f:
            return cls.from_dict(json.load(f))

    @classmethod
    def from_env(cls, base: Optional["Settings"] = None) -> "Settings":
        """
        Overlay WCM_* environment variables on top of base settings.

        Example: WCM_BATCH_SIZE=25 WCM_STATE_DIR=/var/lib/wcm
        """
        data = (base or cls()).to_dict()

        for f in fields(cls):
            if f.name == "max_pages":
                continue
            value = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if value is not None:
                data[f.name] = value

        return cls.from_dict(data)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings, loading from the environment once."""
    global _settings
    if _settings is None:
        config_file = os.environ.get(f"{ENV_PREFIX}CONFIG")
        base = Settings.from_json_file(config_file) if config_file else None
        _settings = Settings.from_env(base)
        logger.debug(f"Loaded settings: {_settings.to_dict()}")
    return _settings


def set_settings(settings: Optional[Settings]) -> None:
    """Replace the process-wide settings (None resets to lazy loading)."""
    global _settings
    _settings = settings

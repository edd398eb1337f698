import os
from datetime import timedelta
from enum import Enum
from typing import FrozenSet, Optional

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

# Discord refuses member timeouts longer than 28 days
MAX_TIMEOUT_SECONDS = 28 * 24 * 3600

class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"

class Config:
    def __init__(self):
        self.DISCORD_TOKEN = self._get_required("DISCORD_TOKEN")
        self.ENVIRONMENT = Environment(os.getenv("ENVIRONMENT", "development"))

        # Moderation
        self.EXEMPT_ROLE_IDS: FrozenSet[int] = self._get_id_set("EXEMPT_ROLE_IDS")
        self.TIMEOUT_CHANNEL_ID: Optional[int] = self._get_optional_id("TIMEOUT_CHANNEL_ID")
        self.SPAM_THRESHOLD = self._get_int("SPAM_THRESHOLD", 3, minimum=2)
        self.SPAM_WINDOW_SECONDS = self._get_int("SPAM_WINDOW_SECONDS", 3600, minimum=1)
        self.TIMEOUT_SECONDS = self._get_int("TIMEOUT_SECONDS", 3600, minimum=1, maximum=MAX_TIMEOUT_SECONDS)

        # Sharding defaults (can be overridden by args if needed, but nice to have here)
        self.SHARD_COUNT = self._get_int("SHARD_COUNT", 1, minimum=1)

    @property
    def spam_window(self) -> timedelta:
        return timedelta(seconds=self.SPAM_WINDOW_SECONDS)

    @property
    def timeout_duration(self) -> timedelta:
        return timedelta(seconds=self.TIMEOUT_SECONDS)

    def _get_required(self, key: str) -> str:
        value = os.getenv(key)
        if not value:
            raise ValueError(f"Missing required environment variable: {key}")
        return value

    def _get_int(self, key: str, default: int, minimum: int = 0, maximum: Optional[int] = None) -> int:
        raw = os.getenv(key)
        if raw is None or not raw.strip():
            return default
        try:
            value = int(raw.strip())
        except ValueError:
            raise ValueError(f"Environment variable {key} must be an integer, got {raw!r}") from None
        if value < minimum:
            raise ValueError(f"Environment variable {key} must be >= {minimum}, got {value}")
        if maximum is not None and value > maximum:
            raise ValueError(f"Environment variable {key} must be <= {maximum}, got {value}")
        return value

    def _get_optional_id(self, key: str) -> Optional[int]:
        raw = os.getenv(key, "").strip()
        if not raw:
            return None
        if not raw.isdigit():
            raise ValueError(f"Environment variable {key} must be a Discord ID, got {raw!r}")
        return int(raw)

    def _get_id_set(self, key: str) -> FrozenSet[int]:
        """Parses a comma separated list of snowflakes, e.g. '123,456'. Blank entries are ignored."""
        raw = os.getenv(key, "")
        ids = set()
        for part in raw.split(","):
            part = part.strip()
            if not part:
                continue
            if not part.isdigit():
                raise ValueError(f"Environment variable {key} contains a non-numeric ID: {part!r}")
            ids.add(int(part))
        return frozenset(ids)

# Singleton instance
shared_config = Config()

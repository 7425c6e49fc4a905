"""Project-wide configuration and constants."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

DATA_DIR_ENV = "PLANNER_SYNC_DATA_DIR"

DEFAULT_API_URL = "https://app.inventory-planner.com/api/v1"
API_URL_ENV = "INVENTORY_PLANNER_API"
API_KEY_ENV = "INVENTORY_PLANNER_KEY"
ACCOUNT_ENV = "INVENTORY_PLANNER_ACCOUNT"

REQUEST_TIMEOUT = 15
MAX_RETRIES = 3
RETRY_BACKOFF_MS = 2000
PAGE_LIMIT = 100
MAX_SUMMARY_ERRORS = 10


class ConfigurationError(RuntimeError):
    """Raised when required Inventory Planner settings are missing."""

    def __init__(self, message: str, *, missing: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.missing = missing or []


@dataclass(slots=True, frozen=True)
class PlannerCredentials:
    """Credentials and endpoint for one Inventory Planner account."""

    api_key: str
    account_id: str
    api_url: str = DEFAULT_API_URL

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PlannerCredentials":
        env = os.environ if environ is None else environ
        api_key = env.get(API_KEY_ENV, "").strip()
        account_id = env.get(ACCOUNT_ENV, "").strip()
        missing = [name for name, value in ((API_KEY_ENV, api_key), (ACCOUNT_ENV, account_id)) if not value]
        if missing:
            raise ConfigurationError(
                f"Missing Inventory Planner configuration: {', '.join(missing)}",
                missing=missing,
            )
        api_url = env.get(API_URL_ENV, "").strip() or DEFAULT_API_URL
        return cls(api_key=api_key, account_id=account_id, api_url=api_url.rstrip("/"))

    def headers(self) -> Dict[str, str]:
        # The upstream API expects the raw token, not a Bearer scheme.
        return {
            "Authorization": self.api_key,
            "Account": self.account_id,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def redacted(self) -> Dict[str, object]:
        """Return a loggable view that never exposes the full API key."""

        return {
            "api_url": self.api_url,
            "account_id": self.account_id,
            "api_key_length": len(self.api_key),
            "api_key_preview": f"{self.api_key[:10]}...",
        }


def data_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return ``$PLANNER_SYNC_DATA_DIR`` or ``./data`` under the working directory."""

    env = os.environ if environ is None else environ
    override = env.get(DATA_DIR_ENV, "").strip()
    return Path(override) if override else Path.cwd() / "data"


def cache_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    return data_dir(environ) / "cache"


def ensure_data_dirs(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Ensure local data directories exist and return the cache directory."""

    cache = cache_dir(environ)
    cache.mkdir(parents=True, exist_ok=True)
    return cache

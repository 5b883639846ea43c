"""smsrental application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

The field name is the **lowercase** version of the env-var name (e.g.
``ANOSIM_API_KEY`` → ``anosim_api_key``).

Typical usage::

    from smsrental.core.settings import Settings

    settings = Settings()                  # loads from env + .env
    print(settings.anosim_configured)      # True / False
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

__all__ = ["Settings", "DEFAULT_RELAYS"]

logger = logging.getLogger(__name__)

#: CORS relays tried in order by the receive-sms-online scraper.  The target
#: URL is appended URL-encoded to each prefix.
DEFAULT_RELAYS: tuple[str, ...] = (
    "https://api.allorigins.win/raw?url=",
    "https://api.allorigins.win/get?url=",
    "https://corsproxy.io/?",
    "https://cors-anywhere.herokuapp.com/",
    "https://thingproxy.freeboard.io/fetch/",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _csv_to_list(value: str) -> list[str]:
    """Split a comma-separated string into a list of non-empty, stripped items.

    Returns an empty list for blank / whitespace-only input.
    """
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).

    A provider whose API key is empty is disabled; the corresponding
    ``*_configured`` property returns ``False``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Provider credentials
    # ------------------------------------------------------------------
    sms_activate_api_key: str = Field(default="", description="sms-activate API key.")
    gogetsms_api_key: str = Field(default="", description="GoGetSMS API key.")
    smspva_api_key: str = Field(default="", description="SMSPVA API key.")
    anosim_api_key: str = Field(default="", description="Anosim API key.")
    anosim_product_id: int | None = Field(
        default=None,
        description="Anosim product id used when a rent request names no product.",
    )
    anosim_provider_id: int | None = Field(
        default=None,
        description="Optional Anosim carrier/provider id.",
    )

    # ------------------------------------------------------------------
    # Scraping
    # ------------------------------------------------------------------
    receive_sms_relays: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_RELAYS),
        description="Ordered CORS relay prefixes (comma-separated in env).",
    )

    # ------------------------------------------------------------------
    # Provider transport
    # ------------------------------------------------------------------
    provider_timeout_s: float = Field(
        default=15.0,
        gt=0.0,
        description="Timeout for a single provider HTTP call.",
    )
    provider_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Total HTTP attempts per provider call (1 = no retries).",
    )
    default_rent_hours: int = Field(
        default=4,
        ge=1,
        description="Lease hours when a rent request names no duration; initial expiry of registered numbers.",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    database_path: str = Field(
        default="data/smsrental.db",
        description="Path to the SQLite database file.",
    )

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------
    cache_ttl_s: float = Field(
        default=120.0,
        gt=0.0,
        description="Age after which a cached snapshot is considered stale.",
    )
    cache_cooling_s: float = Field(
        default=30.0,
        ge=0.0,
        description="Minimum gap between automatic loads of one cache key.",
    )

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------
    sync_timeout_s: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout for one provider fetch during a sync.",
    )
    sync_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for a retryable sync failure.",
    )
    sync_interval_min: int = Field(
        default=150,
        ge=1,
        description="Min seconds between automatic sync passes.",
    )
    sync_interval_max: int = Field(
        default=210,
        ge=1,
        description="Max seconds between automatic sync passes.",
    )
    sync_min_gap_s: float = Field(
        default=60.0,
        ge=0.0,
        description="Minimum seconds between scheduled syncs of one rental.",
    )
    sync_failure_threshold: int = Field(
        default=3,
        ge=0,
        description="Consecutive failures tolerated before a rental is backed off.",
    )
    sync_failure_backoff_max_s: float = Field(
        default=900.0,
        gt=0.0,
        description="Upper bound on the per-rental failure back-off.",
    )

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------
    hidden_reconnect_threshold_s: float = Field(
        default=60.0,
        ge=0.0,
        description="Hidden duration after which subscriptions are rebuilt.",
    )

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------
    api_host: str = Field(default="127.0.0.1", description="Bind address.")
    api_port: int = Field(default=8080, ge=1, le=65535, description="Bind port.")

    # ------------------------------------------------------------------
    # Runtime flags
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("receive_sms_relays", mode="before")
    @classmethod
    def _parse_csv_relays(cls, v: str | list[str]) -> list[str]:
        """Accept a comma-separated string **or** an already-parsed list."""
        if isinstance(v, str):
            return _csv_to_list(v)
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Model validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_sync_intervals(self) -> Settings:
        """Ensure min ≤ max for the auto-sync interval."""
        if self.sync_interval_min > self.sync_interval_max:
            raise ValueError(
                f"sync_interval_min ({self.sync_interval_min}) "
                f"> sync_interval_max ({self.sync_interval_max})"
            )
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def database_path_resolved(self) -> Path:
        """Return the database path as a resolved :class:`~pathlib.Path`."""
        return Path(self.database_path).resolve()

    @property
    def sms_activate_configured(self) -> bool:
        """``True`` if the sms-activate API key is set."""
        return bool(self.sms_activate_api_key)

    @property
    def gogetsms_configured(self) -> bool:
        """``True`` if the GoGetSMS API key is set."""
        return bool(self.gogetsms_api_key)

    @property
    def smspva_configured(self) -> bool:
        """``True`` if the SMSPVA API key is set."""
        return bool(self.smspva_api_key)

    @property
    def anosim_configured(self) -> bool:
        """``True`` if the Anosim API key is set."""
        return bool(self.anosim_api_key)

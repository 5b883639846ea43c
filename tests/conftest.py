"""Shared pytest fixtures and configuration for the smsrental test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import aiosqlite
import pytest
import pytest_asyncio
from pydantic_settings import SettingsConfigDict

from smsrental.core import configure_logging
from smsrental.core.models import ProviderKind, Rental, RentalStatus
from smsrental.core.settings import Settings
from smsrental.storage.database import create_schema

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    ``force=True`` applies the configuration even when pytest's own
    ``log_cli`` handler is already installed.
    """
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove provider credentials and smsrental env vars for one test.

    Also disables pydantic-settings ``.env`` loading so that credentials in a
    developer's local ``.env`` file do not leak into Settings isolation tests.
    """
    sensitive_prefixes = (
        "SMS_ACTIVATE_",
        "GOGETSMS_",
        "SMSPVA_",
        "ANOSIM_",
        "RECEIVE_SMS_",
        "PROVIDER_",
        "DEFAULT_RENT_",
        "DATABASE_",
        "CACHE_",
        "SYNC_",
        "HIDDEN_",
        "API_",
        "LOG_LEVEL",
        "LOG_FORMAT",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in sensitive_prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


@pytest.fixture()
def settings(clean_env: None) -> Settings:
    """Real settings with no providers enabled and fast timings."""
    return Settings(
        database_path=":memory:",
        sync_timeout_s=2,
        sync_max_attempts=1,
        sync_min_gap_s=0,
        cache_ttl_s=60,
        cache_cooling_s=0,
    )


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def conn() -> AsyncIterator[aiosqlite.Connection]:
    """In-memory database with the full schema applied."""
    db = await aiosqlite.connect(":memory:")
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    await create_schema(db)
    try:
        yield db
    finally:
        await db.close()


def _make_rental(
    rental_id: str = "r-1",
    *,
    provider: ProviderKind = ProviderKind.SMS_ACTIVATE,
    native_ids: dict[str, str] | None = None,
    phone: str = "+4915123456789",
    status: RentalStatus = RentalStatus.ACTIVE,
    hours: float = 24,
    leased_at: datetime | None = None,
    assignee: str | None = None,
    credentials: dict[str, str] | None = None,
) -> Rental:
    """Build a :class:`Rental` with sensible defaults for tests."""
    leased = leased_at or datetime.now(UTC)
    return Rental(
        id=rental_id,
        phone_number=phone,
        provider=provider,
        provider_native_ids=native_ids if native_ids is not None else {"rent_id": f"n-{rental_id}"},
        service_code="wa",
        country_code="DE",
        status=status,
        leased_at=leased,
        expires_at=leased + timedelta(hours=hours),
        assignee=assignee,
        access_credentials=credentials or {},
    )


@pytest.fixture()
def make_rental():
    """Factory building a :class:`Rental` with sensible defaults."""
    return _make_rental


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")

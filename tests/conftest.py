"""Shared test fixtures."""

from __future__ import annotations

import pytest

_ENV_VARS = (
    "TON_WALLET",
    "TONAPI_KEY",
    "TONAPI_BASE_URL",
    "POLL_INTERVAL_MS",
    "POLL_JITTER_MS",
    "PAGE_LIMIT",
    "PAGE_SIZE",
    "REQUEST_TIMEOUT_SECONDS",
    "DATA_DIR",
    "STATS_FILE",
    "STATE_FILE",
    "SHEET_ID",
    "SHEET_TAB",
    "GOOGLE_SERVICE_ACCOUNT_EMAIL",
    "GOOGLE_PRIVATE_KEY",
    "DONATIONSTATS_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove service settings so a developer's .env never leaks into tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)

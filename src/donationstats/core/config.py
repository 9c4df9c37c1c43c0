from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path


class ConfigError(Exception):
    """Missing or invalid configuration."""


@dataclass(frozen=True, slots=True)
class DonationConfig:
    """Service configuration loaded at process startup."""

    ton_wallet: str | None = None
    tonapi_key: str | None = None
    tonapi_base_url: str = "https://tonapi.io"
    poll_interval_ms: int = 30_000
    poll_jitter_ms: int = 5_000
    page_limit: int = 5
    page_size: int = 50
    request_timeout_seconds: float = 15.0
    data_dir: Path = Path("./data")
    stats_file: str = "stats.json"
    state_file: str = "state.json"
    sheet_id: str | None = None
    sheet_tab: str = "Sheet1"
    google_service_account_email: str | None = None
    google_private_key: str | None = None
    log_level: str = "INFO"

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def poll_jitter_seconds(self) -> float:
        return self.poll_jitter_ms / 1000

    def require_account(self) -> str:
        """Return the wallet to poll or fail when ingestion is not configured."""
        if not self.ton_wallet:
            raise ConfigError(
                "TON_WALLET is not set; transaction polling is disabled"
            )
        return self.ton_wallet


def _optional_env(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def _int_env(name: str, default: int, *, minimum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if not value > 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def load_config_from_env() -> DonationConfig:
    """Load service config from env and validate numeric settings."""
    return DonationConfig(
        ton_wallet=_optional_env("TON_WALLET"),
        tonapi_key=_optional_env("TONAPI_KEY"),
        tonapi_base_url=_optional_env("TONAPI_BASE_URL") or "https://tonapi.io",
        poll_interval_ms=_int_env("POLL_INTERVAL_MS", 30_000, minimum=1),
        poll_jitter_ms=_int_env("POLL_JITTER_MS", 5_000, minimum=0),
        page_limit=_int_env("PAGE_LIMIT", 5, minimum=1),
        page_size=_int_env("PAGE_SIZE", 50, minimum=1),
        request_timeout_seconds=_float_env("REQUEST_TIMEOUT_SECONDS", 15.0),
        data_dir=Path(_optional_env("DATA_DIR") or "./data"),
        stats_file=_optional_env("STATS_FILE") or "stats.json",
        state_file=_optional_env("STATE_FILE") or "state.json",
        sheet_id=_optional_env("SHEET_ID"),
        sheet_tab=_optional_env("SHEET_TAB") or "Sheet1",
        google_service_account_email=_optional_env("GOOGLE_SERVICE_ACCOUNT_EMAIL"),
        google_private_key=_optional_env("GOOGLE_PRIVATE_KEY"),
        log_level=(_optional_env("DONATIONSTATS_LOG_LEVEL") or "INFO").upper(),
    )

"""Best-effort mirror of country totals to a Google Sheet.

The sheet holds two columns, ``Country | Amount``, sorted by amount
descending. Each push clears ``A:B`` and rewrites from ``A1``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from loguru import logger

from donationstats.core.config import DonationConfig
from donationstats.core.retry import RetryPolicy, is_transient_status

SHEETS_SCOPES = ("https://www.googleapis.com/auth/spreadsheets",)
_TOKEN_URI = "https://oauth2.googleapis.com/token"  # noqa: S105


class MirrorState(Enum):
    CONFIGURED = "configured"
    DISABLED = "disabled"


@dataclass(frozen=True, slots=True)
class MirrorOutcome:
    """Result of one publish."""

    ok: bool
    updated: int = 0
    skipped: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "updated": self.updated,
            "skipped": self.skipped,
            "error": self.error,
        }


class MirrorSink(Protocol):
    @property
    def state(self) -> MirrorState: ...

    def publish(self, snapshot: Mapping[str, float]) -> MirrorOutcome: ...


class NullMirrorSink:
    """Sink used when no spreadsheet is configured."""

    @property
    def state(self) -> MirrorState:
        return MirrorState.DISABLED

    def publish(self, snapshot: Mapping[str, float]) -> MirrorOutcome:
        return MirrorOutcome(ok=True, skipped=True)


@dataclass(frozen=True, slots=True)
class SheetsConfig:
    sheet_id: str
    tab: str
    service_account_email: str
    private_key: str

    @property
    def clear_range(self) -> str:
        return f"{self.tab}!A:B"

    @property
    def write_range(self) -> str:
        return f"{self.tab}!A1"


def restore_private_key(raw: str) -> str:
    """Turn literal ``\\n`` sequences from env files back into newlines."""
    if "\\n" in raw:
        return raw.replace("\\n", "\n")
    return raw


def missing_sheets_settings(config: DonationConfig) -> list[str]:
    required = {
        "SHEET_ID": config.sheet_id,
        "GOOGLE_SERVICE_ACCOUNT_EMAIL": config.google_service_account_email,
        "GOOGLE_PRIVATE_KEY": config.google_private_key,
    }
    return [name for name, value in required.items() if not value]


def build_rows(snapshot: Mapping[str, Any]) -> list[list[Any]]:
    """Header plus ``[country, amount]`` rows, largest amount first."""
    rows: list[list[Any]] = []
    for country, amount in snapshot.items():
        if not country or not isinstance(country, str):
            continue
        try:
            value = float(amount or 0)
        except (TypeError, ValueError):
            value = 0.0
        rows.append([country, value])
    rows.sort(key=lambda row: row[1], reverse=True)
    return [["Country", "Amount"], *rows]


def is_retryable_sheets_error(exc: BaseException) -> bool:
    if isinstance(exc, HttpError):
        status = getattr(exc.resp, "status", None)
        try:
            return is_transient_status(int(status) if status is not None else None)
        except (TypeError, ValueError):
            return False
    return isinstance(exc, (TimeoutError, ConnectionError))


def _default_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=3, base_delay=0.5, is_retryable=is_retryable_sheets_error
    )


class SheetsMirrorSink:
    """Pushes snapshots through the Sheets v4 values API."""

    def __init__(
        self,
        config: SheetsConfig,
        *,
        retry_policy: RetryPolicy | None = None,
        service: Any = None,
    ) -> None:
        self._config = config
        self._retry = retry_policy or _default_retry_policy()
        self._service = service

    @property
    def state(self) -> MirrorState:
        return MirrorState.CONFIGURED

    def _sheets(self) -> Any:
        if self._service is None:
            credentials = service_account.Credentials.from_service_account_info(
                {
                    "type": "service_account",
                    "client_email": self._config.service_account_email,
                    "private_key": restore_private_key(self._config.private_key),
                    "token_uri": _TOKEN_URI,
                },
                scopes=list(SHEETS_SCOPES),
            )
            self._service = build(
                "sheets", "v4", credentials=credentials, cache_discovery=False
            )
        return self._service

    def publish(self, snapshot: Mapping[str, float]) -> MirrorOutcome:
        values = build_rows(snapshot)
        sheet_values = self._sheets().spreadsheets().values()

        self._retry.call(
            sheet_values.clear(
                spreadsheetId=self._config.sheet_id,
                range=self._config.clear_range,
                body={},
            ).execute,
            name="sheets.values.clear",
        )
        self._retry.call(
            sheet_values.update(
                spreadsheetId=self._config.sheet_id,
                range=self._config.write_range,
                valueInputOption="RAW",
                body={"values": values},
            ).execute,
            name="sheets.values.update",
        )

        updated = len(values) - 1
        logger.bind(sheet_id=self._config.sheet_id, rows=updated).info(
            "Google Sheet updated ({} rows)", updated
        )
        return MirrorOutcome(ok=True, updated=updated)


def build_mirror_sink(config: DonationConfig) -> MirrorSink:
    """Pick the sink once at startup based on which settings are present."""
    missing = missing_sheets_settings(config)
    if missing:
        logger.bind(missing=missing).warning(
            "Google Sheets mirror disabled, missing: {}", ", ".join(missing)
        )
        return NullMirrorSink()

    assert config.sheet_id is not None  # noqa: S101
    assert config.google_service_account_email is not None  # noqa: S101
    assert config.google_private_key is not None  # noqa: S101
    logger.info("Google Sheets mirror enabled (tab: {})", config.sheet_tab)
    return SheetsMirrorSink(
        SheetsConfig(
            sheet_id=config.sheet_id,
            tab=config.sheet_tab,
            service_account_email=config.google_service_account_email,
            private_key=config.google_private_key,
        )
    )

"""Owned in-memory state and its durable representation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from donationstats.infra.storage.json_store import JsonStore
from donationstats.ingest.cursor import CursorTracker
from donationstats.ingest.totals import CountryTotals

_WATERMARK_KEY = "last_seen_tx_id"
_LEGACY_WATERMARK_KEY = "lastSeenTxId"


@dataclass
class DonationState:
    """Country totals plus the dedup watermark, owned by one ingestion process."""

    totals: CountryTotals = field(default_factory=lambda: CountryTotals.from_raw({}))
    cursor: CursorTracker = field(default_factory=CursorTracker)

    @property
    def watermark(self) -> str | None:
        return self.cursor.watermark

    def state_document(self) -> dict[str, Any]:
        return {_WATERMARK_KEY: self.cursor.watermark}


def watermark_from_document(raw: Any) -> str | None:
    if not isinstance(raw, dict):
        return None
    value = raw.get(_WATERMARK_KEY)
    if value is None:
        value = raw.get(_LEGACY_WATERMARK_KEY)
    if isinstance(value, (str, int)) and not isinstance(value, bool) and value != "":
        return str(value)
    return None


class StateRepository:
    """Loads and persists ``DonationState`` as two JSON documents."""

    def __init__(
        self,
        store: JsonStore,
        *,
        stats_file: str = "stats.json",
        state_file: str = "state.json",
    ) -> None:
        self._store = store
        self._stats_file = stats_file
        self._state_file = state_file

    def load(self) -> DonationState:
        totals = CountryTotals.from_raw(self._store.read_json(self._stats_file, {}))
        watermark = watermark_from_document(self._store.read_json(self._state_file, {}))
        logger.bind(
            stats_file=str(self._store.path_for(self._stats_file)),
            state_file=str(self._store.path_for(self._state_file)),
            watermark=watermark,
        ).info("Loaded donation state (watermark: {})", watermark or "none")
        return DonationState(totals=totals, cursor=CursorTracker(watermark))

    def persist_totals(self, state: DonationState) -> None:
        self._store.write_json(self._stats_file, state.totals.snapshot())

    def persist(self, state: DonationState) -> None:
        """Write totals, then the watermark.

        A crash between the two writes may re-count, never drop, transactions.
        """
        self.persist_totals(state)
        self._store.write_json(self._state_file, state.state_document())

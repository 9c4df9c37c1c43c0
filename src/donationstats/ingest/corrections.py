"""Admin corrections handed from a CLI process to the running poller.

While ``serve`` owns the data directory, corrections are queued as one JSON
document each. The ingestion cycle applies them to its in-memory totals and
removes them once the totals that include them have been persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Any
import uuid

from loguru import logger

from donationstats.countries.core import DEFAULT_VOCABULARY
from donationstats.infra.storage.json_store import JsonStore
from donationstats.ingest.totals import (
    CorrectionError,
    CountryTotals,
    validate_amount,
    validate_delta,
)

SET = "set"
ADD = "add"
_NAME_PREFIX = "correction-"


@dataclass(frozen=True, slots=True)
class PendingCorrection:
    kind: str
    country: str
    value: float

    def to_document(self) -> dict[str, Any]:
        return {"kind": self.kind, "country": self.country, "value": self.value}

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "queued": True, **self.to_document()}

    @classmethod
    def create(cls, kind: Any, country: Any, value: Any) -> PendingCorrection:
        """Validate a correction without applying it.

        Raises:
            CorrectionError: kind, country or value is not acceptable
        """
        if kind == SET:
            checked = validate_amount(value)
        elif kind == ADD:
            checked = validate_delta(value)
        else:
            raise CorrectionError(f"Unknown correction kind: {kind!r}")
        if not isinstance(country, str) or not DEFAULT_VOCABULARY.is_canonical(country):
            raise CorrectionError(f"Not a canonical country: {country!r}")
        return cls(kind=kind, country=country, value=checked)

    @classmethod
    def from_document(cls, raw: Any) -> PendingCorrection | None:
        if not isinstance(raw, dict):
            return None
        try:
            return cls.create(raw.get("kind"), raw.get("country"), raw.get("value"))
        except CorrectionError:
            return None

    def apply_to(self, totals: CountryTotals) -> float:
        if self.kind == SET:
            return totals.set_absolute(self.country, self.value)
        return totals.add_delta(self.country, self.value)


class CorrectionQueue:
    """FIFO of pending corrections, one document per correction."""

    def __init__(self, store: JsonStore) -> None:
        self._store = store

    def enqueue(self, correction: PendingCorrection) -> str:
        name = f"{_NAME_PREFIX}{time.time_ns():020d}-{uuid.uuid4().hex[:8]}.json"
        self._store.write_json(name, correction.to_document())
        logger.bind(name=name, **correction.to_document()).info(
            "Queued {} correction for {}", correction.kind, correction.country
        )
        return name

    def pending(self) -> list[tuple[str, PendingCorrection | None]]:
        """Queued corrections oldest first; unreadable entries come back as None."""
        return [
            (name, PendingCorrection.from_document(self._store.read_json(name)))
            for name in self._store.list_names(f"{_NAME_PREFIX}*.json")
        ]

    def discard(self, name: str) -> bool:
        try:
            self._store.remove(name)
        except OSError as e:
            logger.bind(name=name, error=str(e)).warning(
                "Could not remove applied correction {}: {}", name, e
            )
            return False
        return True

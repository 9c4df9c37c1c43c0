"""Read and correction surface over the owned donation state.

An HTTP layer (or the CLI) routes to these methods; they never fail because
of ingestion errors and always return all vocabulary countries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from donationstats.adapters.sheets.mirror import MirrorOutcome, MirrorSink, MirrorState
from donationstats.countries.core import normalize_country
from donationstats.infra.storage.json_store import PersistenceWriteError
from donationstats.ingest.corrections import ADD, SET, CorrectionQueue, PendingCorrection
from donationstats.ingest.state import DonationState, StateRepository
from donationstats.ingest.totals import UnknownCountryError


@dataclass(frozen=True, slots=True)
class CorrectionResult:
    country: str
    amount: float
    persisted: bool

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "country": self.country, "amount": self.amount}


class DonationService:
    def __init__(
        self,
        state: DonationState,
        repository: StateRepository,
        mirror: MirrorSink,
        *,
        corrections: CorrectionQueue | None = None,
    ) -> None:
        self._state = state
        self._repository = repository
        self._mirror = mirror
        self._corrections = corrections

    @property
    def mirror_state(self) -> MirrorState:
        return self._mirror.state

    def health(self) -> dict[str, Any]:
        return {"ok": True, "last_seen_tx_id": self._state.watermark}

    def stats(self) -> dict[str, float]:
        return self._state.totals.snapshot()

    def top(self, n: int = 5) -> list[tuple[str, float]]:
        self._state.totals.ensure_defaults()
        return self._state.totals.top(n)

    def set_country(self, country: Any, amount: Any) -> CorrectionResult:
        """Replace a country's total.

        Raises:
            UnknownCountryError: country text does not resolve
            InvalidAmountError: amount is negative or not finite
        """
        normalized = self._resolve(country)
        value = self._state.totals.set_absolute(normalized, amount)
        return self._after_correction(SET, normalized, value)

    def add_country(self, country: Any, delta: Any) -> CorrectionResult:
        """Add ``delta`` (possibly negative) to a country's total, floored at 0.

        Raises:
            UnknownCountryError: country text does not resolve
            InvalidDeltaError: delta is not finite
        """
        normalized = self._resolve(country)
        value = self._state.totals.add_delta(normalized, delta)
        return self._after_correction(ADD, normalized, value)

    def queue_correction(self, kind: str, country: Any, value: Any) -> PendingCorrection:
        """Validate a correction and leave it for the process that owns the state.

        Raises:
            UnknownCountryError: country text does not resolve
            CorrectionError: kind or value is not acceptable
        """
        if self._corrections is None:
            raise RuntimeError("No correction queue configured")
        correction = PendingCorrection.create(kind, self._resolve(country), value)
        self._corrections.enqueue(correction)
        return correction

    def sync_mirror(self) -> MirrorOutcome:
        """Push the current snapshot to the mirror; errors propagate to the caller."""
        return self._mirror.publish(self.stats())

    @staticmethod
    def _resolve(country: Any) -> str:
        normalized = normalize_country(country)
        if normalized is None:
            raise UnknownCountryError(f"Unknown country: {country!r}")
        return normalized

    def _after_correction(self, kind: str, country: str, value: float) -> CorrectionResult:
        self._state.totals.ensure_defaults()
        logger.bind(kind=kind, country=country, amount=value).info(
            "Admin correction ({}): {} = {}", kind, country, value
        )

        persisted = True
        try:
            self._repository.persist_totals(self._state)
        except PersistenceWriteError as e:
            persisted = False
            logger.bind(error=str(e)).error("Failed to persist totals: {}", e)

        try:
            self._mirror.publish(self._state.totals.snapshot())
        except Exception as e:  # noqa: BLE001 - mirror is best-effort
            logger.bind(error=str(e)).warning("Google Sheets mirror failed: {}", e)

        return CorrectionResult(country=country, amount=value, persisted=persisted)

"""Logging for ingestion cycles, kept apart from the cycle's business logic."""

from __future__ import annotations

from typing import TYPE_CHECKING

import loguru
from loguru import logger

if TYPE_CHECKING:
    from donationstats.ingest.cycle import CycleReport


class IngestionLogger:
    """Handles all logging for IngestionCycle."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def cycle_start(self, account: str, watermark: str | None) -> None:
        label = watermark or "none"
        self._logger.bind(account=account, watermark=label).info(
            "Polling transactions for {} (watermark: {})", account, label
        )

    def cycle_busy(self) -> None:
        self._logger.warning("Previous ingestion cycle still running, skipping")

    def page_fetched(self, page: int, item_count: int) -> None:
        self._logger.bind(page=page, items=item_count).debug(
            "Fetched page {} ({} transactions)", page, item_count
        )

    def watermark_reached(self, page: int, tx_id: str) -> None:
        self._logger.bind(page=page, tx_id=tx_id).debug(
            "Reached watermark {} on page {}", tx_id, page
        )

    def country_unresolved(self, tx_id: str | None, comment: str | None) -> None:
        self._logger.bind(tx_id=tx_id).debug(
            "No country in comment {!r}, skipping", comment
        )

    def donation_counted(self, tx_id: str | None, country: str, amount: float) -> None:
        self._logger.bind(tx_id=tx_id, country=country, amount=amount).info(
            "Counted {} TON for {}", amount, country
        )

    def scan_aborted(self, page: int, error: BaseException) -> None:
        self._logger.bind(page=page, error=str(error)).error(
            "Ingestion aborted on page {}: {}", page, error
        )

    def scan_failed(self, page: int, error: BaseException) -> None:
        self._logger.bind(page=page, error=repr(error)).opt(exception=error).error(
            "Unexpected error fetching page {}, aborting scan", page
        )

    def correction_applied(self, kind: str, country: str, value: float) -> None:
        self._logger.bind(kind=kind, country=country, amount=value).info(
            "Applied queued correction ({}): {} = {}", kind, country, value
        )

    def correction_rejected(self, name: str) -> None:
        self._logger.bind(name=name).warning("Discarding unreadable correction {}", name)

    def watermark_committed(self, previous: str | None, current: str | None) -> None:
        if previous == current:
            return
        self._logger.bind(previous=previous, current=current).info(
            "Watermark advanced: {} -> {}", previous or "none", current
        )

    def persistence_failed(self, error: BaseException) -> None:
        self._logger.bind(error=str(error)).error("Failed to persist state: {}", error)

    def mirror_failed(self, error: BaseException) -> None:
        self._logger.bind(error=str(error)).warning("Google Sheets mirror failed: {}", error)

    def cycle_complete(self, report: CycleReport, top: list[tuple[str, float]]) -> None:
        self._logger.bind(
            pages=report.pages_fetched,
            scanned=report.scanned,
            counted=report.counted,
            unresolved=report.unresolved,
            aborted=report.aborted,
            top5=top,
        ).info(
            "Cycle complete: {} counted, {} unresolved across {} pages; top5 {}",
            report.counted,
            report.unresolved,
            report.pages_fetched,
            top,
        )

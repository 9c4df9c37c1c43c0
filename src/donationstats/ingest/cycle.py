from __future__ import annotations

from dataclasses import asdict, dataclass
import math
import threading
from typing import Any, Protocol

from donationstats.adapters.sheets.mirror import MirrorOutcome, MirrorSink
from donationstats.countries.core import normalize_country
from donationstats.infra.clients.tonapi import (
    DEFAULT_PAGE_SIZE,
    LedgerClientError,
    TonapiTransaction,
    TransactionPage,
)
from donationstats.infra.storage.json_store import PersistenceWriteError
from donationstats.ingest.corrections import CorrectionQueue
from donationstats.ingest.logger import IngestionLogger
from donationstats.ingest.state import DonationState, StateRepository


class LedgerClient(Protocol):
    def fetch_page(
        self, account: str, page_index: int, page_size: int = ...
    ) -> TransactionPage: ...


@dataclass
class CycleReport:
    """Summary of one ingestion pass."""

    pages_fetched: int = 0
    scanned: int = 0
    counted: int = 0
    unresolved: int = 0
    skipped_amount: int = 0
    duplicates: int = 0
    corrections_applied: int = 0
    reached_watermark: bool = False
    aborted: bool = False
    error: str | None = None
    watermark: str | None = None
    persisted: bool = False
    mirror: MirrorOutcome | None = None
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["mirror"] = self.mirror.to_dict() if self.mirror else None
        return data


class IngestionCycle:
    """
    One polling pass over the account's transaction feed.

    Pages are fetched newest-first until the committed watermark is reached,
    the feed runs out, or ``page_limit`` pages have been scanned. Qualifying
    donations are added to the totals, the newest identifier becomes the new
    watermark, and the snapshot is persisted and mirrored. Corrections queued
    by other processes are applied first.
    """

    def __init__(
        self,
        client: LedgerClient,
        state: DonationState,
        repository: StateRepository,
        mirror: MirrorSink,
        *,
        account: str,
        page_limit: int = 5,
        page_size: int = DEFAULT_PAGE_SIZE,
        corrections: CorrectionQueue | None = None,
    ) -> None:
        """
        Initialize the ingestion cycle.

        Args:
            client: Ledger client used to fetch transaction pages
            state: Owned totals and watermark, mutated in place
            repository: Persists the state after each pass
            mirror: Best-effort sink for the totals snapshot
            account: Wallet address to poll
            page_limit: Maximum pages fetched per pass
            page_size: Transactions per page
            corrections: Queue of admin corrections from other processes
        """
        self._client = client
        self._state = state
        self._repository = repository
        self._mirror = mirror
        self._account = account
        self._page_limit = page_limit
        self._page_size = page_size
        self._corrections = corrections
        # Applied in memory, removed from the queue after the next persist.
        self._unpersisted_corrections: list[str] = []
        self._busy = threading.Lock()
        self._logger = IngestionLogger()

    def run(self) -> CycleReport:
        """Run one pass; upstream, persistence and mirror errors are contained."""
        if not self._busy.acquire(blocking=False):
            self._logger.cycle_busy()
            return CycleReport(skipped=True, watermark=self._state.watermark)
        try:
            return self._run_locked()
        finally:
            self._busy.release()

    def _run_locked(self) -> CycleReport:
        report = CycleReport()
        cursor = self._state.cursor
        previous = cursor.watermark
        self._logger.cycle_start(self._account, previous)

        self._apply_corrections(report)

        cursor.begin_cycle()
        self._scan_pages(report)

        report.watermark = cursor.commit()
        self._logger.watermark_committed(previous, report.watermark)

        self._finalize(report)
        return report

    def _apply_corrections(self, report: CycleReport) -> None:
        if self._corrections is None:
            return
        for name, correction in self._corrections.pending():
            if name in self._unpersisted_corrections:
                continue
            if correction is None:
                self._logger.correction_rejected(name)
                self._corrections.discard(name)
                continue
            value = correction.apply_to(self._state.totals)
            self._unpersisted_corrections.append(name)
            report.corrections_applied += 1
            self._logger.correction_applied(correction.kind, correction.country, value)

    def _scan_pages(self, report: CycleReport) -> None:
        for page_index in range(self._page_limit):
            try:
                page = self._client.fetch_page(
                    self._account, page_index, self._page_size
                )
            except LedgerClientError as e:
                self._logger.scan_aborted(page_index, e)
                self._mark_aborted(report, e)
                return
            except Exception as e:  # noqa: BLE001 - contained at the cycle boundary
                self._logger.scan_failed(page_index, e)
                self._mark_aborted(report, e)
                return

            report.pages_fetched += 1
            self._logger.page_fetched(page_index, page.raw_count)
            if page.is_empty:
                return

            if self._scan_page(page_index, page.transactions, report):
                report.reached_watermark = True
                return
            # Dropped malformed items still count toward the page length.
            if page.raw_count < self._page_size:
                return

    @staticmethod
    def _mark_aborted(report: CycleReport, error: Exception) -> None:
        report.aborted = True
        report.error = str(error) or type(error).__name__

    def _scan_page(
        self, page_index: int, items: list[TonapiTransaction], report: CycleReport
    ) -> bool:
        """Aggregate one page; return True once the watermark is reached."""
        cursor = self._state.cursor
        # Upstream ordering is not guaranteed; sort is stable for equal times.
        ordered = sorted(items, key=lambda tx: tx.occurred_at, reverse=True)

        for tx in ordered:
            if not tx.is_incoming:
                continue
            tx_id = tx.identifier
            if cursor.is_watermark(tx_id):
                self._logger.watermark_reached(page_index, tx_id)
                return True
            if cursor.seen_this_cycle(tx_id):
                # Shifted here from an earlier page by offset paging.
                report.duplicates += 1
                continue

            report.scanned += 1
            cursor.observe(tx_id)

            amount = tx.amount_ton
            if not math.isfinite(amount) or amount <= 0:
                report.skipped_amount += 1
                continue

            country = normalize_country(tx.comment)
            if country is None:
                report.unresolved += 1
                self._logger.country_unresolved(tx_id, tx.comment)
                continue

            self._state.totals.add(country, amount)
            report.counted += 1
            self._logger.donation_counted(tx_id, country, amount)
        return False

    def _finalize(self, report: CycleReport) -> None:
        totals = self._state.totals
        totals.ensure_defaults()

        try:
            self._repository.persist(self._state)
            report.persisted = True
        except PersistenceWriteError as e:
            self._logger.persistence_failed(e)

        if report.persisted and self._corrections is not None:
            self._unpersisted_corrections = [
                name
                for name in self._unpersisted_corrections
                if not self._corrections.discard(name)
            ]

        try:
            report.mirror = self._mirror.publish(totals.snapshot())
        except Exception as e:  # noqa: BLE001 - mirror is best-effort
            self._logger.mirror_failed(e)
            report.mirror = MirrorOutcome(ok=False, error=str(e))

        self._logger.cycle_complete(report, totals.top(5))

from __future__ import annotations


class CursorTracker:
    """Watermark-based dedup for a feed scanned newest-first.

    The committed watermark is the identifier of the newest transaction
    accounted for by a finished cycle. During a cycle the first observed
    identifier becomes the candidate; ``commit()`` promotes it. Identifiers
    observed earlier in the same cycle are remembered so that items shifted
    onto a later page by offset paging are not counted twice.
    """

    def __init__(self, watermark: str | None = None) -> None:
        self._watermark = watermark or None
        self._candidate: str | None = None
        self._seen: set[str] = set()

    @property
    def watermark(self) -> str | None:
        return self._watermark

    @property
    def candidate(self) -> str | None:
        return self._candidate

    def begin_cycle(self) -> None:
        self._candidate = None
        self._seen.clear()

    def is_watermark(self, tx_id: str | None) -> bool:
        return bool(tx_id) and tx_id == self._watermark

    def seen_this_cycle(self, tx_id: str | None) -> bool:
        return bool(tx_id) and tx_id in self._seen

    def is_new(self, tx_id: str | None) -> bool:
        return not self.is_watermark(tx_id) and not self.seen_this_cycle(tx_id)

    def observe(self, tx_id: str | None) -> None:
        if not tx_id:
            return
        if self._candidate is None:
            self._candidate = tx_id
        self._seen.add(tx_id)

    def commit(self) -> str | None:
        if self._candidate:
            self._watermark = self._candidate
        self._candidate = None
        self._seen.clear()
        return self._watermark

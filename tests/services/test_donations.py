from __future__ import annotations

from collections.abc import Mapping
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from donationstats.adapters.sheets.mirror import MirrorOutcome, MirrorState, NullMirrorSink
from donationstats.countries.core import BASE_COUNTRIES
from donationstats.core.config import ConfigError, DonationConfig
from donationstats.infra.clients.tonapi import TransactionPage, parse_transactions_page
from donationstats.infra.storage.json_store import JsonStore, PersistenceWriteError
from donationstats.ingest.corrections import CorrectionQueue
from donationstats.ingest.state import StateRepository
from donationstats.ingest.totals import (
    CorrectionError,
    InvalidAmountError,
    InvalidDeltaError,
    UnknownCountryError,
)
from donationstats.services.donations import DonationService
from donationstats.services.runtime import DonationRuntime


class MockMirror:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[dict[str, float]] = []

    @property
    def state(self) -> MirrorState:
        return MirrorState.CONFIGURED

    def publish(self, snapshot: Mapping[str, float]) -> MirrorOutcome:
        self.published.append(dict(snapshot))
        if self.fail:
            raise ConnectionError("sheets unreachable")
        return MirrorOutcome(ok=True, updated=len(snapshot))


@pytest.fixture
def repository(tmp_path: Path) -> StateRepository:
    return StateRepository(JsonStore(tmp_path))


@pytest.fixture
def mirror() -> MockMirror:
    return MockMirror()


@pytest.fixture
def service(repository: StateRepository, mirror: MockMirror) -> DonationService:
    return DonationService(repository.load(), repository, mirror)


# ----------------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------------


def test_health_on_fresh_start(service: DonationService) -> None:
    assert service.health() == {"ok": True, "last_seen_tx_id": None}


def test_stats_lists_every_country_at_zero(service: DonationService) -> None:
    stats = service.stats()

    assert set(stats) == set(BASE_COUNTRIES)
    assert all(value == 0 for value in stats.values())


def test_top_orders_by_amount(service: DonationService) -> None:
    service.set_country("Japan", 3)
    service.set_country("France", 5)

    assert service.top(2) == [("France", 5.0), ("Japan", 3.0)]


# ----------------------------------------------------------------------------
# Corrections
# ----------------------------------------------------------------------------


def test_set_country_resolves_alias_and_persists(
    service: DonationService, tmp_path: Path, mirror: MockMirror
) -> None:
    result = service.set_country("usa", 12.5)

    assert result.to_dict() == {"ok": True, "country": "United States", "amount": 12.5}
    assert result.persisted is True
    stored = json.loads((tmp_path / "stats.json").read_text("utf-8"))
    assert stored["United States"] == 12.5
    assert mirror.published[-1]["United States"] == 12.5


def test_add_country_applies_delta_and_clamps(service: DonationService) -> None:
    service.set_country("Japan", 10)

    assert service.add_country("japan", 2.5).amount == 12.5
    assert service.add_country("Japan", -100).amount == 0.0


def test_unknown_country_is_rejected(service: DonationService, tmp_path: Path) -> None:
    with pytest.raises(UnknownCountryError):
        service.set_country("Atlantis", 1)

    assert not (tmp_path / "stats.json").exists()


@pytest.mark.parametrize("country", ["", None, 42])
def test_non_text_country_is_rejected(service: DonationService, country: object) -> None:
    with pytest.raises(UnknownCountryError):
        service.add_country(country, 1)


def test_invalid_values_are_rejected(service: DonationService) -> None:
    with pytest.raises(InvalidAmountError):
        service.set_country("France", -1)
    with pytest.raises(InvalidDeltaError):
        service.add_country("France", float("nan"))

    assert service.stats()["France"] == 0


def test_corrections_do_not_touch_watermark(
    service: DonationService, tmp_path: Path
) -> None:
    service.set_country("France", 1)

    assert not (tmp_path / "state.json").exists()
    assert service.health()["last_seen_tx_id"] is None


def test_persistence_failure_still_applies_correction(
    service: DonationService, repository: StateRepository
) -> None:
    with patch.object(
        repository, "persist_totals", side_effect=PersistenceWriteError("disk full")
    ):
        result = service.set_country("France", 4)

    assert result.persisted is False
    assert service.stats()["France"] == 4.0


def test_mirror_failure_does_not_fail_correction(repository: StateRepository) -> None:
    service = DonationService(repository.load(), repository, MockMirror(fail=True))

    result = service.add_country("Brazil", 2)

    assert result.amount == 2.0
    assert result.persisted is True


def test_sync_mirror_propagates_errors(repository: StateRepository) -> None:
    service = DonationService(repository.load(), repository, MockMirror(fail=True))

    with pytest.raises(ConnectionError):
        service.sync_mirror()


def test_sync_mirror_pushes_full_snapshot(
    service: DonationService, mirror: MockMirror
) -> None:
    outcome = service.sync_mirror()

    assert outcome.ok is True
    assert set(mirror.published[0]) == set(BASE_COUNTRIES)


# ----------------------------------------------------------------------------
# Runtime wiring
# ----------------------------------------------------------------------------


def test_runtime_loads_persisted_state(tmp_path: Path) -> None:
    (tmp_path / "stats.json").write_text(json.dumps({"France": 3.0}), "utf-8")
    (tmp_path / "state.json").write_text(
        json.dumps({"last_seen_tx_id": "T3"}), "utf-8"
    )

    runtime = DonationRuntime.from_config(DonationConfig(data_dir=tmp_path))

    assert runtime.service.health() == {"ok": True, "last_seen_tx_id": "T3"}
    assert runtime.service.stats()["France"] == 3.0
    assert isinstance(runtime.mirror, NullMirrorSink)


def test_runtime_requires_wallet_for_ingestion(tmp_path: Path) -> None:
    runtime = DonationRuntime.from_config(DonationConfig(data_dir=tmp_path))

    with pytest.raises(ConfigError, match="TON_WALLET"):
        runtime.ingestion_cycle()


def test_runtime_cycle_shares_state_with_service(tmp_path: Path) -> None:
    class OnePageClient:
        def fetch_page(self, account, page_index, page_size=50):
            if page_index:
                return TransactionPage()
            return parse_transactions_page(
                {
                    "transactions": [
                        {
                            "hash": "T1",
                            "utime": 1,
                            "in_msg": {
                                "value": 1_500_000_000,
                                "decoded": {"comment": "Kazakhstan"},
                            },
                        }
                    ]
                }
            )

    runtime = DonationRuntime.from_config(
        DonationConfig(ton_wallet="EQwallet", data_dir=tmp_path)
    )

    runtime.ingestion_cycle(OnePageClient()).run()

    assert runtime.service.stats()["Kazakhstan"] == 1.5
    assert runtime.service.health()["last_seen_tx_id"] == "T1"


def test_runtime_cycle_applies_queued_corrections(tmp_path: Path) -> None:
    runtime = DonationRuntime.from_config(
        DonationConfig(ton_wallet="EQwallet", data_dir=tmp_path)
    )
    runtime.service.queue_correction("set", "uk", 7)

    class EmptyClient:
        def fetch_page(self, account, page_index, page_size=50):
            return TransactionPage()

    report = runtime.ingestion_cycle(EmptyClient()).run()

    assert report.corrections_applied == 1
    assert runtime.service.stats()["United Kingdom"] == 7.0
    assert runtime.corrections.pending() == []
    assert runtime.serve_lock.path.name == "serve.pid"


# ----------------------------------------------------------------------------
# Queued corrections
# ----------------------------------------------------------------------------


@pytest.fixture
def queue(tmp_path: Path) -> CorrectionQueue:
    return CorrectionQueue(JsonStore(tmp_path / "corrections"))


def test_queue_correction_resolves_alias_without_applying(
    repository: StateRepository, queue: CorrectionQueue, tmp_path: Path
) -> None:
    service = DonationService(repository.load(), repository, MockMirror(), corrections=queue)

    pending = service.queue_correction("add", "usa", 2)

    assert pending.to_dict() == {
        "ok": True,
        "queued": True,
        "kind": "add",
        "country": "United States",
        "value": 2.0,
    }
    assert service.stats()["United States"] == 0
    assert not (tmp_path / "stats.json").exists()
    assert [c for _, c in queue.pending()] == [pending]


def test_queue_correction_validates_before_queueing(
    repository: StateRepository, queue: CorrectionQueue
) -> None:
    service = DonationService(repository.load(), repository, MockMirror(), corrections=queue)

    with pytest.raises(UnknownCountryError):
        service.queue_correction("set", "Atlantis", 1)
    with pytest.raises(InvalidAmountError):
        service.queue_correction("set", "France", -1)
    with pytest.raises(CorrectionError):
        service.queue_correction("drop", "France", 1)

    assert queue.pending() == []


def test_queue_correction_requires_a_queue(service: DonationService) -> None:
    with pytest.raises(RuntimeError):
        service.queue_correction("set", "France", 1)

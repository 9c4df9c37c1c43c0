"""Startup wiring: one state aggregate shared by the poller and the read surface."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from donationstats.adapters.sheets.mirror import MirrorSink, build_mirror_sink
from donationstats.core.config import DonationConfig
from donationstats.infra.clients.tonapi import TonapiClient
from donationstats.infra.storage.json_store import JsonStore
from donationstats.infra.storage.pidfile import PidFile
from donationstats.ingest.corrections import CorrectionQueue
from donationstats.ingest.cycle import IngestionCycle, LedgerClient
from donationstats.ingest.scheduler import PollScheduler
from donationstats.ingest.state import DonationState, StateRepository
from donationstats.services.donations import DonationService

SERVE_PID_FILE = "serve.pid"
CORRECTIONS_DIR = "corrections"


@dataclass
class DonationRuntime:
    config: DonationConfig
    state: DonationState
    repository: StateRepository
    mirror: MirrorSink
    service: DonationService
    corrections: CorrectionQueue
    serve_lock: PidFile

    @classmethod
    def from_config(
        cls, config: DonationConfig, *, mirror: MirrorSink | None = None
    ) -> DonationRuntime:
        store = JsonStore(config.data_dir)
        logger.bind(data_dir=str(store.base_dir)).info(
            "Data directory: {}", store.base_dir
        )
        repository = StateRepository(
            store, stats_file=config.stats_file, state_file=config.state_file
        )
        state = repository.load()
        corrections = CorrectionQueue(JsonStore(store.base_dir / CORRECTIONS_DIR))
        sink = mirror if mirror is not None else build_mirror_sink(config)
        return cls(
            config=config,
            state=state,
            repository=repository,
            mirror=sink,
            service=DonationService(
                state, repository, sink, corrections=corrections
            ),
            corrections=corrections,
            serve_lock=PidFile(store.base_dir / SERVE_PID_FILE),
        )

    def ingestion_cycle(self, client: LedgerClient | None = None) -> IngestionCycle:
        """Build the cycle; raises ConfigError when no wallet is configured."""
        account = self.config.require_account()
        return IngestionCycle(
            client or TonapiClient.from_config(self.config),
            self.state,
            self.repository,
            self.mirror,
            account=account,
            page_limit=self.config.page_limit,
            page_size=self.config.page_size,
            corrections=self.corrections,
        )

    def scheduler(self, cycle: IngestionCycle) -> PollScheduler:
        return PollScheduler(
            cycle.run,
            interval_seconds=self.config.poll_interval_seconds,
            max_jitter_seconds=self.config.poll_jitter_seconds,
        )

from __future__ import annotations

from collections.abc import Iterator
import json
import os
from pathlib import Path
import sys
from unittest.mock import patch

from loguru import logger
import pytest
from typer.testing import CliRunner

from donationstats.infra.storage.pidfile import PidFile
from donationstats.ingest.cycle import CycleReport
from donationstats.ui.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("DONATIONSTATS_LOG_LEVEL", "ERROR")
    yield tmp_path
    # The CLI points loguru at the runner's captured stderr.
    logger.remove()
    logger.add(sys.stderr)


def invoke_json(*args: str) -> dict:
    result = runner.invoke(app, list(args))
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_health_reports_watermark(data_dir: Path) -> None:
    (data_dir / "state.json").write_text(
        json.dumps({"last_seen_tx_id": "T3"}), "utf-8"
    )

    assert invoke_json("health") == {"ok": True, "last_seen_tx_id": "T3"}


def test_stats_lists_all_countries() -> None:
    stats = invoke_json("stats")

    assert len(stats) == 40
    assert stats["France"] == 0


def test_stats_top(data_dir: Path) -> None:
    (data_dir / "stats.json").write_text(
        json.dumps({"France": 2.0, "Japan": 5.0, "Brazil": 1.0}), "utf-8"
    )

    assert invoke_json("stats", "--top", "2") == {"Japan": 5.0, "France": 2.0}


def test_set_country_persists(data_dir: Path) -> None:
    payload = invoke_json("set-country", "uk", "--amount", "7.25")

    assert payload == {"ok": True, "country": "United Kingdom", "amount": 7.25}
    stored = json.loads((data_dir / "stats.json").read_text("utf-8"))
    assert stored["United Kingdom"] == 7.25


def test_add_country_accepts_negative_delta(data_dir: Path) -> None:
    invoke_json("set-country", "Japan", "--amount", "3")

    payload = invoke_json("add-country", "Japan", "--delta", "-5")

    assert payload["amount"] == 0.0


def test_unknown_country_exits_with_usage_error() -> None:
    result = runner.invoke(app, ["set-country", "Atlantis", "--amount", "1"])

    assert result.exit_code == 2
    assert "Unknown country" in result.output


def test_negative_amount_is_rejected() -> None:
    result = runner.invoke(app, ["set-country", "France", "--amount", "-1"])

    assert result.exit_code == 2


def test_invalid_config_exits() -> None:
    with patch.dict("os.environ", {"POLL_INTERVAL_MS": "soon"}):
        result = runner.invoke(app, ["health"])

    assert result.exit_code == 1
    assert "POLL_INTERVAL_MS" in result.output


def test_poll_once_requires_wallet() -> None:
    result = runner.invoke(app, ["poll-once"])

    assert result.exit_code == 1
    assert "TON_WALLET" in result.output


def test_poll_once_prints_report(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TON_WALLET", "EQwallet")

    with patch(
        "donationstats.ingest.cycle.IngestionCycle.run",
        return_value=CycleReport(pages_fetched=1, counted=2, watermark="T3"),
    ):
        payload = invoke_json("poll-once")

    assert payload["counted"] == 2
    assert payload["watermark"] == "T3"


def test_sync_sheets_requires_configuration() -> None:
    result = runner.invoke(app, ["sync-sheets"])

    assert result.exit_code == 1
    assert "not configured" in result.output


def test_sheets_test_requires_configuration() -> None:
    result = runner.invoke(app, ["sheets-test"])

    assert result.exit_code == 1


# Corrections while serve is running


def test_correction_is_queued_while_serve_holds_the_directory(data_dir: Path) -> None:
    PidFile(data_dir / "serve.pid").acquire()

    payload = invoke_json("set-country", "France", "--amount", "5")

    assert payload == {
        "ok": True,
        "queued": True,
        "kind": "set",
        "country": "France",
        "value": 5.0,
    }
    assert not (data_dir / "stats.json").exists()
    assert len(list((data_dir / "corrections").glob("correction-*.json"))) == 1


def test_queued_correction_is_still_validated(data_dir: Path) -> None:
    PidFile(data_dir / "serve.pid").acquire()

    result = runner.invoke(app, ["add-country", "Atlantis", "--delta", "1"])

    assert result.exit_code == 2
    assert not list((data_dir / "corrections").glob("*.json"))


def test_stale_serve_pid_file_is_ignored(data_dir: Path) -> None:
    # Above the kernel's pid_max, so no such process exists.
    (data_dir / "serve.pid").write_text("4194305\n", "utf-8")

    payload = invoke_json("set-country", "France", "--amount", "5")

    assert payload == {"ok": True, "country": "France", "amount": 5.0}
    stored = json.loads((data_dir / "stats.json").read_text("utf-8"))
    assert stored["France"] == 5.0


def test_poll_once_refused_while_serve_runs(
    data_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TON_WALLET", "EQwallet")
    PidFile(data_dir / "serve.pid").acquire()

    result = runner.invoke(app, ["poll-once"])

    assert result.exit_code == 1
    assert "serve is running" in result.output


def test_second_serve_is_refused(
    data_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TON_WALLET", "EQwallet")
    (data_dir / "serve.pid").write_text(f"{os.getppid()}\n", "utf-8")

    result = runner.invoke(app, ["serve"])

    assert result.exit_code == 1
    assert "already running" in result.output

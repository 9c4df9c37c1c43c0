"""Tests for environment-driven configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from donationstats.core.config import ConfigError, DonationConfig, load_config_from_env


class TestLoadConfigFromEnv:
    def test_defaults_when_env_is_empty(self):
        config = load_config_from_env()

        assert config == DonationConfig()
        assert config.poll_interval_seconds == 30.0
        assert config.poll_jitter_seconds == 5.0
        assert config.data_dir == Path("./data")

    def test_reads_all_settings(self, monkeypatch):
        monkeypatch.setenv("TON_WALLET", "EQwallet")
        monkeypatch.setenv("TONAPI_KEY", "key")
        monkeypatch.setenv("POLL_INTERVAL_MS", "60000")
        monkeypatch.setenv("PAGE_LIMIT", "3")
        monkeypatch.setenv("DATA_DIR", "/tmp/donations")
        monkeypatch.setenv("STATS_FILE", "totals.json")
        monkeypatch.setenv("SHEET_TAB", "Totals")
        monkeypatch.setenv("DONATIONSTATS_LOG_LEVEL", "debug")

        config = load_config_from_env()

        assert config.ton_wallet == "EQwallet"
        assert config.tonapi_key == "key"
        assert config.poll_interval_ms == 60_000
        assert config.page_limit == 3
        assert config.data_dir == Path("/tmp/donations")
        assert config.stats_file == "totals.json"
        assert config.sheet_tab == "Totals"
        assert config.log_level == "DEBUG"

    def test_blank_values_fall_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("TON_WALLET", "   ")
        monkeypatch.setenv("PAGE_LIMIT", "")

        config = load_config_from_env()

        assert config.ton_wallet is None
        assert config.page_limit == 5

    @pytest.mark.parametrize(
        ("name", "value"),
        [
            ("POLL_INTERVAL_MS", "soon"),
            ("POLL_INTERVAL_MS", "0"),
            ("PAGE_LIMIT", "-1"),
            ("PAGE_SIZE", "1.5"),
            ("REQUEST_TIMEOUT_SECONDS", "0"),
            ("REQUEST_TIMEOUT_SECONDS", "abc"),
        ],
    )
    def test_invalid_numbers_raise(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ConfigError, match=name):
            load_config_from_env()


class TestRequireAccount:
    def test_returns_wallet(self):
        assert DonationConfig(ton_wallet="EQwallet").require_account() == "EQwallet"

    def test_missing_wallet_raises(self):
        with pytest.raises(ConfigError, match="TON_WALLET"):
            DonationConfig().require_account()

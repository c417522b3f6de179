"""
Tests for sentinel_trader/utils/config_loader.py against the shipped
config/settings.yaml.
"""
import os

import pytest
import yaml

from sentinel_trader.bot import FeedSupervisor, load_instruments
from sentinel_trader.position_management import PositionConfig
from sentinel_trader.strategy import DEFAULT_STAGES, GuardConfig, StrategyConfig
from sentinel_trader.utils import ConfigLoader, env_secret, lookup, require_sections

CONFIG_DIR = os.path.join(os.path.dirname(__file__), "..", "config")


@pytest.fixture
def settings():
    return ConfigLoader(CONFIG_DIR).load("settings")


class TestConfigLoader:
    def test_sections_present(self, settings):
        for section in ("logging", "paths", "account", "instruments", "guard", "strategies",
                        "positions", "advisory", "feed", "cloud", "server"):
            assert section in settings, section

    def test_cached(self):
        loader = ConfigLoader(CONFIG_DIR)
        assert loader.load("settings") is loader.load("settings")

    def test_dot_path_get(self):
        loader = ConfigLoader(CONFIG_DIR)
        assert loader.get("settings", "guard.max_trades_per_day") == 6
        assert loader.get("settings", "guard.missing", "fallback") == "fallback"
        assert loader.get("nonexistent", "a.b", 1) == 1

    def test_missing_required(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigLoader(str(tmp_path)).load("settings")

    def test_missing_optional(self, tmp_path):
        assert ConfigLoader(str(tmp_path)).load("settings", required=False) is None

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("a: [1, 2\n")
        with pytest.raises(yaml.YAMLError):
            ConfigLoader(str(tmp_path)).load("broken")

    def test_top_level_must_be_mapping(self, tmp_path):
        (tmp_path / "list.yaml").write_text("- a\n- b\n")
        with pytest.raises(yaml.YAMLError):
            ConfigLoader(str(tmp_path)).load("list")

    def test_empty_file(self, tmp_path):
        (tmp_path / "empty.yaml").write_text("")
        assert ConfigLoader(str(tmp_path)).load("empty") == {}

    def test_reload_rereads(self, tmp_path):
        path = tmp_path / "s.yaml"
        path.write_text("a: 1\n")
        loader = ConfigLoader(str(tmp_path))
        assert loader.load("s") == {"a": 1}
        path.write_text("a: 2\n")
        loader.reload("s")
        assert loader.load("s") == {"a": 2}


class TestLookup:
    def test_nested(self):
        assert lookup({"a": {"b": {"c": 3}}}, "a.b.c") == 3

    def test_missing(self):
        assert lookup({"a": {"b": 1}}, "a.b.c", "d") == "d"
        assert lookup({}, "x") is None

    def test_env_secret(self, monkeypatch):
        cfg = {"advisory": {"api_key_env": "SENTINEL_TEST_SECRET"}}
        monkeypatch.setenv("SENTINEL_TEST_SECRET", "s3cret")
        assert env_secret(cfg, "advisory.api_key_env") == "s3cret"
        monkeypatch.delenv("SENTINEL_TEST_SECRET")
        assert env_secret(cfg, "advisory.api_key_env") is None
        assert env_secret({}, "advisory.api_key_env") is None


class TestShippedSettings:
    def test_required_sections(self, settings):
        require_sections(settings)

    def test_missing_section_named(self):
        with pytest.raises(ValueError, match="feed"):
            require_sections({"instruments": {"X": {}}, "guard": {}, "positions": {"sl_pct": 0.005}})

    def test_instruments(self, settings):
        instruments = load_instruments(settings)
        assert set(instruments) == {"XAU/USD", "NAS100"}
        assert instruments["NAS100"].session.start_minute == 13 * 60 + 30
        assert "SESSION_BREAKOUT" in instruments["NAS100"].default_strategies

    def test_guard_stages_match_defaults(self, settings):
        guard = GuardConfig.from_config(settings["guard"])
        assert guard.stages == DEFAULT_STAGES
        assert guard.breakpoints == (120, 360, 720)

    def test_position_ladder(self, settings):
        cfg = PositionConfig.from_config(settings["positions"])
        assert cfg.tp_pcts == (0.006, 0.01, 0.03)
        assert sum(cfg.tp_allocation) == pytest.approx(1.0)

    def test_strategy_config(self, settings):
        assert StrategyConfig.from_config(settings["strategies"]).warmup_candles == 20

    def test_feed_sources(self, settings):
        sup = FeedSupervisor.from_config(settings, load_instruments(settings), lambda tick: None)
        assert [s.name for s in sup.sources] == ["binance", "coinbase"]
        assert sup.failover_after == 3

    def test_no_secrets_in_file(self, settings):
        assert lookup(settings, "advisory.api_key_env") == "OPENAI_API_KEY"
        assert "api_key" not in settings["advisory"]

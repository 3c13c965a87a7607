"""Tests for settings and the agent token store."""

from pathlib import Path

import pytest

from fleetpilot.__main__ import build_parser, parse_overrides
from fleetpilot.config import MissingTokenError, Settings, load_token, save_token


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SPACETRADERS_TOKEN", raising=False)


def make_settings(tmp_path: Path, **kwargs) -> Settings:
    return Settings(_env_file=None, token_file=tmp_path / "AGENT_TOKEN", **kwargs)


class TestSettings:
    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("SPACETRADERS_RATE_LIMIT", "1.5")
        monkeypatch.setenv("SPACETRADERS_STRATEGY", "mine")
        settings = make_settings(tmp_path)
        assert settings.rate_limit == 1.5
        assert settings.strategy == "mine"

    def test_defaults(self, tmp_path: Path) -> None:
        settings = make_settings(tmp_path)
        assert settings.base_url == "https://api.spacetraders.io/v2"
        assert settings.degraded_threshold == 3


class TestToken:
    def test_setting_wins_over_file(self, tmp_path: Path) -> None:
        (tmp_path / "AGENT_TOKEN").write_text("from-file\n")
        assert load_token(make_settings(tmp_path, token=" from-env ")) == "from-env"

    def test_falls_back_to_file(self, tmp_path: Path) -> None:
        (tmp_path / "AGENT_TOKEN").write_text("from-file\n")
        assert load_token(make_settings(tmp_path)) == "from-file"

    def test_missing_token(self, tmp_path: Path) -> None:
        with pytest.raises(MissingTokenError, match="SPACETRADERS_TOKEN"):
            load_token(make_settings(tmp_path))

    def test_empty_file(self, tmp_path: Path) -> None:
        (tmp_path / "AGENT_TOKEN").write_text("  \n")
        with pytest.raises(MissingTokenError, match="empty"):
            load_token(make_settings(tmp_path))

    def test_save_then_load(self, tmp_path: Path) -> None:
        settings = Settings(_env_file=None, token_file=tmp_path / "nested" / "AGENT_TOKEN")
        path = save_token(settings, "abc.def")
        assert path.read_text() == "abc.def\n"
        assert load_token(settings) == "abc.def"


class TestCli:
    def test_parse_overrides(self) -> None:
        assert parse_overrides(["tester-3:TRADE", "TESTER-4:mine"]) == {
            "TESTER-3": "trade",
            "TESTER-4": "mine",
        }
        assert parse_overrides(None) == {}

    def test_bad_override_exits(self) -> None:
        with pytest.raises(SystemExit):
            parse_overrides(["TESTER-3"])

    def test_run_options(self) -> None:
        args = build_parser().parse_args(["run", "--strategy", "mine", "--assign", "A-1:trade"])
        assert args.command == "run"
        assert args.strategy == "mine"
        assert args.assign == ["A-1:trade"]

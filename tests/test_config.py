"""Tests for codexline config models and parser."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
import yaml
from pydantic import ValidationError

from codexline.config.models import (
    ClientOptions,
    CodexlineConfig,
    ThreadOptions,
    TurnOptions,
)
from codexline.config.parser import ConfigError, load_config

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: Any) -> Path:
    """Write *data* as YAML and return the file path."""
    path.write_text(yaml.dump(data), encoding="utf-8")
    return path


# ===================================================================
# Model validation tests
# ===================================================================


class TestClientOptions:
    def test_defaults(self) -> None:
        opts = ClientOptions()
        assert opts.codex_path is None
        assert opts.shutdown_timeout == 5.0
        assert opts.max_line_bytes == 1_048_576

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ClientOptions(codex_bin="x")  # type: ignore[call-arg]

    def test_non_positive_line_limit_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ClientOptions(max_line_bytes=0)


class TestThreadOptions:
    def test_to_wire_omits_unset(self) -> None:
        opts = ThreadOptions(model="gpt-5", skip_git_repo_check=True)
        assert opts.to_wire() == {"model": "gpt-5", "skip_git_repo_check": True}

    def test_to_wire_empty(self) -> None:
        assert ThreadOptions().to_wire() is None

    def test_web_search_mode_wins(self) -> None:
        opts = ThreadOptions(web_search_mode="cached", web_search_enabled=True)
        assert opts.to_wire() == {"web_search_mode": "cached"}

    def test_web_search_enabled_sent_as_mode(self) -> None:
        assert ThreadOptions(web_search_enabled=True).to_wire() == {
            "web_search_mode": "live"
        }
        assert ThreadOptions(web_search_enabled=False).to_wire() == {
            "web_search_mode": "disabled"
        }

    def test_invalid_sandbox_mode(self) -> None:
        with pytest.raises(ValidationError):
            ThreadOptions(sandbox_mode="yolo")  # type: ignore[arg-type]


class TestTurnOptions:
    def test_schema_must_be_object(self) -> None:
        with pytest.raises(ValidationError, match="JSON object"):
            TurnOptions(output_schema=["not", "a", "schema"])  # type: ignore[arg-type]

    def test_no_schema(self) -> None:
        assert TurnOptions().output_schema is None


# ===================================================================
# Parser tests
# ===================================================================


class TestLoadConfig:
    def test_full_file(self, tmp_path: Path) -> None:
        path = _write_yaml(
            tmp_path / "codexline.yaml",
            {
                "client": {
                    "codex_path": "/usr/local/bin/codex",
                    "config": {"model_reasoning_effort": "high"},
                },
                "thread": {"model": "gpt-5", "sandbox_mode": "workspace-write"},
            },
        )
        cfg = load_config(path)
        assert isinstance(cfg, CodexlineConfig)
        assert cfg.client.codex_path == "/usr/local/bin/codex"
        assert cfg.client.config == {"model_reasoning_effort": "high"}
        assert cfg.thread.sandbox_mode == "workspace-write"

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "codexline.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == CodexlineConfig()

    def test_no_default_file_gives_defaults(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        assert load_config() == CodexlineConfig()

    def test_default_file_discovered(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _write_yaml(tmp_path / "codexline.yaml", {"thread": {"model": "o3"}})
        monkeypatch.chdir(tmp_path)
        assert load_config().thread.model == "o3"

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Config file not found"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "codexline.yaml"
        path.write_text("client: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid YAML in codexline.yaml"):
            load_config(path)

    def test_non_mapping(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "codexline.yaml", ["a", "b"])
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            load_config(path)

    def test_unknown_option_reported(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "codexline.yaml", {"thread": {"modle": "x"}})
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        message = str(exc_info.value)
        assert "Config validation failed" in message
        assert "thread → modle: Unknown option" in message

    def test_invalid_value_reported(self, tmp_path: Path) -> None:
        path = _write_yaml(
            tmp_path / "codexline.yaml", {"thread": {"sandbox_mode": "yolo"}}
        )
        with pytest.raises(ConfigError, match="Invalid value"):
            load_config(path)

    def test_sibling_dotenv_loaded(self, tmp_path: Path) -> None:
        _write_yaml(tmp_path / "codexline.yaml", {})
        (tmp_path / ".env").write_text("CODEXLINE_TEST_KEY=from-dotenv\n")
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("CODEXLINE_TEST_KEY", None)
            load_config(tmp_path / "codexline.yaml")
            assert os.environ["CODEXLINE_TEST_KEY"] == "from-dotenv"

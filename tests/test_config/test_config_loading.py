from pathlib import Path

import pytest
from pydantic import ValidationError

import turnkeeper.config as config_module
from turnkeeper.config import Config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path: Path):
    for name in ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY", "TURNKEEPER_MODEL__API_KEY", "TURNKEEPER_MODEL__MODEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing-home-config.yaml")


def test_defaults():
    cfg = Config()

    assert cfg.model.provider == "anthropic"
    assert cfg.model.max_tokens == 4096
    assert cfg.model.api_version == "2023-06-01"
    assert cfg.orchestrator.max_depth == 5
    assert cfg.orchestrator.max_concurrency == 5
    assert cfg.orchestrator.duplicate_window_seconds == 60.0
    assert cfg.tools.enabled == ["viewFile", "listDirectory", "editFile"]


def test_load_prefers_local_config_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("model:\n  model: home-model\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    local_cfg = tmp_path / "config.yaml"
    local_cfg.write_text(
        (
            "model:\n"
            "  model: local-model\n"
            "orchestrator:\n"
            "  max_depth: 3\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.model.model == "local-model"
    assert cfg.orchestrator.max_depth == 3


def test_load_falls_back_to_default_path_when_no_local(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("tools:\n  auto_approve:\n    - viewFile\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    cfg = Config.load()

    assert cfg.tools.auto_approve == ["viewFile"]


def test_load_uses_anthropic_env_key_when_api_key_missing(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "env-anthropic-key")

    cfg = Config.load()

    assert cfg.model.api_key == "env-anthropic-key"


def test_load_keeps_configured_api_key(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.yaml").write_text("model:\n  api_key: yaml-key\n", encoding="utf-8")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "env-anthropic-key")

    cfg = Config.load()

    assert cfg.model.api_key == "yaml-key"


def test_prefixed_env_var_overrides_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.yaml").write_text("model:\n  model: yaml-model\n  max_tokens: 1024\n", encoding="utf-8")
    monkeypatch.setenv("TURNKEEPER_MODEL__MODEL", "env-model")

    cfg = Config.load()

    assert cfg.model.model == "env-model"
    assert cfg.model.max_tokens == 1024


def test_invalid_limits_are_rejected(tmp_path: Path):
    config_path = tmp_path / "bad.yaml"
    config_path.write_text("orchestrator:\n  max_depth: 0\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        Config.from_yaml(config_path)


def test_save_round_trips_through_yaml(tmp_path: Path):
    config_path = tmp_path / "saved" / "config.yaml"
    cfg = Config()
    cfg.orchestrator.max_concurrency = 2
    cfg.workspace.path = "/srv/project"

    cfg.save(config_path)
    reloaded = Config.from_yaml(config_path)

    assert reloaded.orchestrator.max_concurrency == 2
    assert reloaded.workspace.path == "/srv/project"


def test_resolved_workspace_path_anchors_relative_to_runtime_base(tmp_path: Path):
    cfg = Config()
    cfg.workspace.path = "./project"

    assert cfg.resolved_workspace_path(tmp_path) == (tmp_path / "project").resolve()

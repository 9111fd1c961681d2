"""Tests for configuration loading."""

from flowgate.config import FlowgateConfig, load_config
from flowgate.persistence import SQLiteWorkflowRepository, get_repository


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
default_model: gpt-4.1-mini
model_provider: openai
subworkflow_poll_interval: 0.5
pricing:
  house-model:
    input: 0.001
    output: 0.002
"""
    )
    monkeypatch.setenv("FLOWGATE_CONFIG", str(config_path))
    monkeypatch.delenv("FLOWGATE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("FLOWGATE_LOG_LEVEL", raising=False)

    config = load_config()
    assert config.default_model == "gpt-4.1-mini"
    assert config.subworkflow_poll_interval == 0.5
    assert config.subworkflow_timeout == 300.0
    assert config.pricing["house-model"].output == 0.002
    assert config.log_level == "INFO"


def test_environment_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\nlog_level: INFO\n")
    monkeypatch.setenv("FLOWGATE_DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")
    monkeypatch.setenv("FLOWGATE_LOG_LEVEL", "DEBUG")

    config = load_config(str(config_path))
    assert config.database_url == f"sqlite://{tmp_path / 'env.db'}"
    assert config.log_level == "DEBUG"


def test_get_repository_uses_config(tmp_path, monkeypatch):
    monkeypatch.delenv("FLOWGATE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    config = FlowgateConfig(database_url=f"sqlite://{tmp_path / 'cfg.db'}")

    repo = get_repository(config=config)
    assert isinstance(repo, SQLiteWorkflowRepository)
    assert repo.db_path == str(tmp_path / "cfg.db")


def test_resolve_model_adds_provider_to_bare_names():
    config = FlowgateConfig(model_provider="anthropic", default_model="claude-sonnet-4-5")
    assert config.resolve_model(None) == "anthropic:claude-sonnet-4-5"
    assert config.resolve_model("openai:gpt-4o") == "openai:gpt-4o"
    assert config.resolve_model("gpt-4o") == "anthropic:gpt-4o"

"""Configuration loading, overrides and the .env loader."""

import os

import pytest
import yaml

from shellwatch.utils.config import config_path, load_config, save_config
from shellwatch.utils.env import load_env
from shellwatch.utils.errors import ConfigError


class TestLoadConfig:

    def test_defaults_without_file(self, home):
        cfg = load_config()
        assert cfg.enabled is False
        assert cfg.redact_secrets is True
        assert cfg.max_events == 10000 and cfg.retention_days == 30
        assert cfg.analysis.max_concurrent_jobs == 1
        assert cfg.llm.enabled is False
        assert cfg.llm.safety.require_user_review is True
        assert cfg.storage.path == str(home / "observer")

    def test_file_and_overrides_merge(self, home):
        home.mkdir(parents=True)
        config_path().write_text(yaml.safe_dump({"llm": {"type": "openai", "safety": {"cache_enabled": True}}}))
        cfg = load_config(overrides={"llm": {"enabled": True}})
        assert cfg.llm.type == "openai"
        assert cfg.llm.enabled is True
        assert cfg.llm.safety.cache_enabled is True
        assert cfg.llm.safety.require_user_review is True

    def test_invalid_value(self, home):
        home.mkdir(parents=True)
        config_path().write_text(yaml.safe_dump({"analysis": {"max_concurrent_jobs": 0}}))
        with pytest.raises(ConfigError):
            load_config()

    def test_malformed_yaml(self, home):
        home.mkdir(parents=True)
        config_path().write_text("enabled: [unterminated")
        with pytest.raises(ConfigError) as exc:
            load_config()
        assert exc.value.hint

    def test_save_keeps_default_path_symbolic(self, home):
        cfg = load_config()
        cfg.enabled = True
        save_config(cfg)
        raw = yaml.safe_load(config_path().read_text())
        assert raw["enabled"] is True
        assert raw["storage"]["path"] is None
        assert load_config().enabled is True

    def test_ollama_env_override(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_HOST", "http://gpu-box:11434")
        assert load_config().llm.ollama.base_url == "http://gpu-box:11434"


def test_load_env_does_not_clobber(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text('# keys\nexport SW_TEST_A="one"\nSW_TEST_B=two\n\nbroken line\n')
    monkeypatch.setenv("SW_TEST_B", "already")
    monkeypatch.delenv("SW_TEST_A", raising=False)
    parsed = load_env(str(env_file))
    assert parsed == {"SW_TEST_A": "one", "SW_TEST_B": "two"}
    assert os.environ["SW_TEST_A"] == "one"
    assert os.environ["SW_TEST_B"] == "already"
    monkeypatch.delenv("SW_TEST_A")

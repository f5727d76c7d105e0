# shellwatch/utils/config.py
from __future__ import annotations

import os
import pathlib
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .env import shellwatch_home
from .errors import ConfigError

CONFIG_NAME = "config.yaml"

ProviderType = Literal["ollama", "openai", "anthropic", "mock", "mcp"]
ShellType = Literal["bash", "zsh", "nushell", "unknown"]


class StorageConfig(BaseModel):
    backend: Literal["local", "redis"] = "local"
    # None resolves to <home>/observer at load time
    path: Optional[str] = None
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "shellwatch:event:"


class AnalysisConfig(BaseModel):
    max_concurrent_jobs: int = Field(default=1, ge=1)
    search_timeout: float = Field(default=10.0, gt=0)
    # capture-end starts a background `analyze last` after a failing command
    auto_analyze: bool = True


class SafetyConfig(BaseModel):
    require_user_review: bool = True
    cache_enabled: bool = False
    cache_ttl: int = Field(default=3600, ge=0)
    max_context_length: int = Field(default=8000, gt=0)


class OllamaConfig(BaseModel):
    base_url: str = Field(default_factory=lambda: os.environ.get("OLLAMA_URL") or os.environ.get("OLLAMA_HOST") or "http://localhost:11434")
    model: str = Field(default_factory=lambda: os.environ.get("SHELLWATCH_OLLAMA_MODEL", "llama3.2"))
    timeout: float = Field(default_factory=lambda: float(os.environ.get("SHELLWATCH_OLLAMA_TIMEOUT", "120")))


class OpenAIConfig(BaseModel):
    model: str = Field(default_factory=lambda: os.environ.get("SHELLWATCH_OPENAI_MODEL", "gpt-4o-mini"))
    base_url: Optional[str] = None


class AnthropicConfig(BaseModel):
    model: str = Field(default_factory=lambda: os.environ.get("SHELLWATCH_ANTHROPIC_MODEL", "claude-3-5-haiku-latest"))


class LLMConfig(BaseModel):
    type: ProviderType = "ollama"
    enabled: bool = False
    timeout: float = Field(default=60.0, gt=0)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    anthropic: AnthropicConfig = Field(default_factory=AnthropicConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)


class ShellwatchConfig(BaseModel):
    enabled: bool = False
    redact_secrets: bool = True
    secret_patterns: List[str] = Field(default_factory=list)
    chunk_size: int = Field(default=4096, gt=0)
    max_events: int = Field(default=10000, ge=0)
    retention_days: int = Field(default=30, ge=0)
    shell_type: Optional[ShellType] = None
    session_id: Optional[str] = None
    pane_id: Optional[str] = None
    tab_id: Optional[str] = None
    storage: StorageConfig = Field(default_factory=StorageConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)


def config_path() -> pathlib.Path:
    return shellwatch_home() / CONFIG_NAME


def _deepmerge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively overlay `override` onto a copy of `base`."""
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deepmerge(out[k], v)
        else:
            out[k] = v
    return out


def _resolve(cfg: ShellwatchConfig) -> ShellwatchConfig:
    if not cfg.storage.path:
        cfg.storage.path = str(shellwatch_home() / "observer")
    else:
        cfg.storage.path = os.path.expanduser(cfg.storage.path)
    return cfg


def load_config(path: str | os.PathLike | None = None, overrides: Optional[Dict[str, Any]] = None) -> ShellwatchConfig:
    """
    Read config.yaml (if any), overlay `overrides` and validate.
    A missing file yields the defaults; a malformed one raises ConfigError.
    """
    p = pathlib.Path(path) if path else config_path()
    raw: Dict[str, Any] = {}
    if p.exists():
        try:
            with p.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"cannot parse {p}: {e}", hint=f"fix or delete {p}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{p} must contain a mapping", hint=f"fix or delete {p}")
    if overrides:
        raw = _deepmerge(raw, overrides)
    try:
        cfg = ShellwatchConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration in {p}: {e}", hint=f"fix the listed keys in {p}") from e
    return _resolve(cfg)


def save_config(cfg: ShellwatchConfig, path: str | os.PathLike | None = None) -> pathlib.Path:
    p = pathlib.Path(path) if path else config_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    data = cfg.model_dump(mode="json")
    # keep the default path symbolic so moving SHELLWATCH_HOME keeps working
    if data["storage"]["path"] == str(shellwatch_home() / "observer"):
        data["storage"]["path"] = None
    with p.open("w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False)
    return p

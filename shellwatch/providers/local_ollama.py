# shellwatch/providers/local_ollama.py
from __future__ import annotations

import logging
from typing import List, Optional

import requests

from .base import ModelProvider, extract_json, shape_output, unparsed_output
from .types import ModelInput, ModelOutput, SanitizedContext
from ..utils.errors import ProviderUnavailable
from ..utils.prompt import build_prompt

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:11434"
DEFAULT_MODEL = "llama3.2"


def _normalize_base(u: Optional[str]) -> str:
    u = (u or "").strip()
    if not u:
        return DEFAULT_URL
    if not (u.startswith("http://") or u.startswith("https://")):
        u = "http://" + u
    return u.rstrip("/")


def _clean_tag(tag: Optional[str]) -> str:
    """Strip whitespace and any accidental shell quotes from a model tag."""
    if not tag:
        return ""
    return tag.strip().strip('"').strip("'")


class OllamaProvider(ModelProvider):
    name = "ollama"

    def __init__(self, base_url: Optional[str] = None, model: Optional[str] = None, timeout: float = 120.0, **kwargs):
        super().__init__(model=_clean_tag(model) or DEFAULT_MODEL, timeout=timeout, **kwargs)
        self.base_url = _normalize_base(base_url)

    def _get(self, path: str) -> requests.Response:
        return requests.get(f"{self.base_url}{path}", timeout=self.timeout)

    def _post(self, path: str, data: dict) -> requests.Response:
        return requests.post(f"{self.base_url}{path}", json=data, timeout=self.timeout)

    def installed_models(self) -> List[str]:
        try:
            r = self._get("/api/tags")
        except requests.RequestException as e:
            logger.debug("ollama not reachable at %s: %s", self.base_url, e)
            return []
        if not r.ok:
            return []
        try:
            data = r.json()
        except ValueError:
            return []
        # schema: {"models":[{"name":"llama3.2:latest", ...}, ...]}
        return [m.get("name", "") for m in (data.get("models") or []) if m.get("name")]

    def is_available(self) -> bool:
        names = self.installed_models()
        return self.model in names or f"{self.model}:latest" in names

    def _call_model(self, model_input: ModelInput, sanitized: SanitizedContext) -> ModelOutput:
        body = {
            "model": self.model,
            "prompt": build_prompt(model_input),
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.2, "top_p": 0.9, "num_ctx": 4096},
        }
        try:
            r = self._post("/api/generate", body)
        except requests.RequestException as e:
            raise ProviderUnavailable(f"ollama request failed: {e}", hint="is `ollama serve` running?") from e
        if not r.ok:
            raise ProviderUnavailable(f"ollama returned HTTP {r.status_code}: {r.text[:200]}", hint=f"try `ollama pull {self.model}`")

        try:
            data = r.json()
        except ValueError as e:
            raise ProviderUnavailable(f"ollama returned malformed JSON: {e}") from e
        raw = data.get("response", "") or ""
        tokens = (data.get("prompt_eval_count") or 0) + (data.get("eval_count") or 0) or None
        obj = extract_json(raw)
        if obj is None:
            # small local models drift out of JSON now and then
            logger.debug("ollama reply was not JSON, keeping it as free text")
            return unparsed_output(raw, self.name, self.model, tokens)
        return shape_output(obj, self.name, self.model, tokens)

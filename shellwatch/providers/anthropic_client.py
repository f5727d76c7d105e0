# shellwatch/providers/anthropic_client.py
from __future__ import annotations

import logging
import os
from typing import Optional

import requests

from .base import ModelProvider, extract_json, shape_output, unparsed_output
from .types import ModelInput, ModelOutput, SanitizedContext
from ..utils.errors import ProviderUnavailable
from ..utils.prompt import SYSTEM_PROMPT, build_prompt

logger = logging.getLogger(__name__)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = os.environ.get("ANTHROPIC_VERSION", "2023-06-01")
DEFAULT_MODEL = "claude-3-5-haiku-latest"


class AnthropicProvider(ModelProvider):
    name = "anthropic"

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None, **kwargs):
        # installers sometimes write the model name with quotes
        model = (model or "").strip().strip("'").strip('"') or DEFAULT_MODEL
        super().__init__(model=model, **kwargs)
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        if not self.api_key:
            raise ProviderUnavailable("ANTHROPIC_API_KEY is not set", hint="export ANTHROPIC_API_KEY or add it to ~/.shellwatch/.env")

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _call_model(self, model_input: ModelInput, sanitized: SanitizedContext) -> ModelOutput:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }
        body = {
            "model": self.model,
            "max_tokens": 800,
            "temperature": 0.2,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": build_prompt(model_input)}],
        }
        try:
            r = requests.post(ANTHROPIC_URL, headers=headers, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderUnavailable(f"anthropic request failed: {e}") from e
        if r.status_code >= 400:
            raise ProviderUnavailable(f"anthropic returned HTTP {r.status_code}: {r.text[:200]}", hint="check the API key and model name")

        try:
            data = r.json()
        except ValueError as e:
            raise ProviderUnavailable(f"anthropic returned malformed JSON: {e}") from e
        # content is a list of blocks; concatenate text blocks
        text = "".join(
            block.get("text", "")
            for block in (data.get("content") or [])
            if isinstance(block, dict) and block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        tokens = (usage.get("input_tokens") or 0) + (usage.get("output_tokens") or 0) or None
        obj = extract_json(text)
        if obj is None:
            return unparsed_output(text, self.name, self.model, tokens)
        return shape_output(obj, self.name, self.model, tokens)

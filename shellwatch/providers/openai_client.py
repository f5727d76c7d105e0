# shellwatch/providers/openai_client.py
from __future__ import annotations

import json
import logging
import os
from typing import Optional

import openai
from openai import OpenAI

from .base import ModelProvider, extract_json, shape_output, unparsed_output
from .types import ModelInput, ModelOutput, SanitizedContext
from ..utils.errors import ProviderUnavailable
from ..utils.prompt import SYSTEM_PROMPT, build_prompt

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class OpenAIProvider(ModelProvider):
    name = "openai"

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 client: Optional[OpenAI] = None, **kwargs):
        super().__init__(model=model or DEFAULT_MODEL, **kwargs)
        api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if client is None and not api_key:
            raise ProviderUnavailable("OPENAI_API_KEY is not set", hint="export OPENAI_API_KEY or add it to ~/.shellwatch/.env")
        self.client = client or OpenAI(api_key=api_key, base_url=base_url, timeout=self.timeout)

    def is_available(self) -> bool:
        return self.client is not None

    def _call_model(self, model_input: ModelInput, sanitized: SanitizedContext) -> ModelOutput:
        try:
            r = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(model_input)},
                ],
                response_format={"type": "json_object"},
                temperature=0.2,
            )
        except openai.APIError as e:
            raise ProviderUnavailable(f"openai request failed: {e}", hint="check the API key, model name and network") from e

        txt = (r.choices[0].message.content or "").strip()
        tokens = getattr(r.usage, "total_tokens", None) if getattr(r, "usage", None) else None
        try:
            obj = json.loads(txt)
        except ValueError:
            obj = extract_json(txt)
        if not isinstance(obj, dict):
            return unparsed_output(txt, self.name, self.model, tokens)
        return shape_output(obj, self.name, self.model, tokens)

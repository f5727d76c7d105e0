# shellwatch/providers/factory.py
from __future__ import annotations

import logging
from typing import Optional

from .anthropic_client import AnthropicProvider
from .base import ModelProvider, Reviewer
from .local_ollama import OllamaProvider
from .mock import MockProvider
from .openai_client import OpenAIProvider
from ..utils.errors import ProviderUnavailable

logger = logging.getLogger(__name__)


def create_provider(config, reviewer: Optional[Reviewer] = None) -> Optional[ModelProvider]:
    """
    Build the configured provider, or None when the model layer is off,
    the type is unknown/unimplemented, or the backend cannot be set up.
    `config` is a ShellwatchConfig.
    """
    llm = config.llm
    if not llm.enabled:
        return None

    common = dict(
        require_user_review=llm.safety.require_user_review,
        cache_enabled=llm.safety.cache_enabled,
        cache_ttl=llm.safety.cache_ttl,
        max_context_length=llm.safety.max_context_length,
        secret_patterns=config.secret_patterns,
        reviewer=reviewer,
    )
    try:
        if llm.type == "ollama":
            return OllamaProvider(base_url=llm.ollama.base_url, model=llm.ollama.model, timeout=llm.ollama.timeout, **common)
        if llm.type == "openai":
            return OpenAIProvider(model=llm.openai.model, base_url=llm.openai.base_url, timeout=llm.timeout, **common)
        if llm.type == "anthropic":
            return AnthropicProvider(model=llm.anthropic.model, timeout=llm.timeout, **common)
        if llm.type == "mock":
            return MockProvider(timeout=llm.timeout, **common)
    except ProviderUnavailable as e:
        logger.warning("model provider %s unavailable: %s", llm.type, e)
        return None

    logger.warning("model provider type %r is not implemented", llm.type)
    return None


def is_provider_available(config) -> bool:
    provider = create_provider(config)
    return provider is not None and provider.is_available()

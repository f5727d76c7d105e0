# shellwatch/providers/base.py
from __future__ import annotations

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from rich.console import Console

from .sanitizer import format_context_for_review, sanitize_context
from .types import ErrorSummary, ModelInput, ModelOutput, ModelProvenance, ModelSuggestion, SanitizedContext
from ..core.events import now_ms

logger = logging.getLogger(__name__)

# Reviewer: receives the exact text about to leave the machine, returns True to send.
Reviewer = Callable[[str, str], bool]

_TYPES = {"command", "optimization", "shortcut", "warning", "tip"}
_PRIORITIES = {"low", "medium", "high"}


def console_reviewer(review_text: str, provider: str) -> bool:
    """Show the payload on stderr and proceed. Interactive confirmation lives in the CLI."""
    console = Console(stderr=True)
    console.print(review_text, markup=False, highlight=False)
    console.print(f"[yellow]context above will be sent to {provider}[/yellow]")
    return True


def extract_json(s: str) -> Optional[dict]:
    """Parse the outermost {...} block of a model reply that may carry prose around it."""
    if not s:
        return None
    first = s.find("{")
    last = s.rfind("}")
    if first == -1 or last == -1 or last <= first:
        return None
    try:
        obj = json.loads(s[first : last + 1])
    except ValueError:
        return None
    return obj if isinstance(obj, dict) else None


def shape_output(obj: Any, provider: str, model: Optional[str] = None, tokens_used: Optional[int] = None) -> ModelOutput:
    """Coerce a model's JSON into ModelOutput, dropping entries without a title."""
    suggestions = []
    items = obj.get("suggestions") if isinstance(obj, dict) else None
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        if not title:
            continue
        try:
            confidence = float(item.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        kind = str(item.get("type") or "tip").lower()
        prio = str(item.get("priority") or "medium").lower()
        snippet = item.get("actionable_snippet") or item.get("actionableSnippet")
        suggestions.append(ModelSuggestion(
            title=title,
            description=str(item.get("description") or "").strip(),
            actionable_snippet=str(snippet) if snippet else None,
            confidence=min(1.0, max(0.0, confidence)),
            type=kind if kind in _TYPES else "tip",
            priority=prio if prio in _PRIORITIES else "medium",
        ))
    return ModelOutput(
        suggestions=suggestions,
        provenance=ModelProvenance(provider=provider, model=model, timestamp=now_ms(), tokens_used=tokens_used),
    )


def unparsed_output(text: str, provider: str, model: Optional[str] = None, tokens_used: Optional[int] = None) -> ModelOutput:
    """A reply that was not JSON still carries advice; surface it at low confidence."""
    text = (text or "").strip()
    suggestions = []
    if text:
        suggestions.append(ModelSuggestion(
            title="Model Analysis",
            description=text[:500],
            confidence=0.5,
            type="tip",
            priority="medium",
        ))
    return ModelOutput(
        suggestions=suggestions,
        provenance=ModelProvenance(provider=provider, model=model, timestamp=now_ms(), tokens_used=tokens_used),
    )


class ModelProvider(ABC):
    """
    Common safety path for every backend:

      1. sanitize the context (mandatory; failure aborts the call)
      2. answer from the TTL cache when enabled
      3. show the payload to the reviewer when review is required
      4. hand only the sanitized input to `_call_model`
    """

    name = "base"

    def __init__(
        self,
        model: Optional[str] = None,
        require_user_review: bool = True,
        cache_enabled: bool = False,
        cache_ttl: int = 3600,
        max_context_length: int = 8000,
        secret_patterns: Iterable[str] = (),
        reviewer: Optional[Reviewer] = None,
        timeout: float = 60.0,
    ):
        self.model = model
        self.require_user_review = require_user_review
        self.cache_enabled = cache_enabled
        self.cache_ttl = cache_ttl
        self.max_context_length = max_context_length
        self.secret_patterns = list(secret_patterns or ())
        self.reviewer = reviewer or console_reviewer
        self.timeout = timeout
        self._cache: Dict[str, Tuple[float, ModelOutput]] = {}

    @abstractmethod
    def is_available(self) -> bool: ...

    @abstractmethod
    def _call_model(self, model_input: ModelInput, sanitized: SanitizedContext) -> ModelOutput: ...

    def sanitize(self, model_input: ModelInput) -> SanitizedContext:
        return sanitize_context(model_input.context, self.secret_patterns, self.max_context_length)

    def analyze(self, model_input: ModelInput) -> ModelOutput:
        sanitized = self.sanitize(model_input)
        key = self.cache_key(sanitized)

        if self.cache_enabled:
            hit = self._cache.get(key)
            if hit and time.monotonic() - hit[0] < self.cache_ttl:
                logger.debug("%s cache hit", self.name)
                return hit[1]

        if self.require_user_review:
            if not self.reviewer(format_context_for_review(sanitized), self.name):
                logger.info("send to %s declined by reviewer", self.name)
                return ModelOutput(provenance=ModelProvenance(provider=self.name, model=self.model, timestamp=now_ms()))

        output = self._call_model(self._safe_input(model_input, sanitized), sanitized)

        if self.cache_enabled:
            self._cache[key] = (time.monotonic(), output)
        return output

    def _safe_input(self, model_input: ModelInput, sanitized: SanitizedContext) -> ModelInput:
        ctx = sanitized.sanitized
        return model_input.model_copy(update={
            "context": ctx,
            "error_summary": ErrorSummary(
                command=ctx.command,
                args=ctx.args,
                exit_code=ctx.exit_code,
                stderr=ctx.stderr,
                stdout=ctx.stdout,
                cwd=ctx.cwd,
                timestamp=model_input.error_summary.timestamp,
            ),
        })

    @staticmethod
    def cache_key(sanitized: SanitizedContext) -> str:
        ctx = sanitized.sanitized
        blob = json.dumps(
            {"command": ctx.command, "args": ctx.args, "exit_code": ctx.exit_code, "stderr": ctx.stderr[:500]},
            sort_keys=True,
        )
        return hashlib.sha256(blob.encode("utf-8")).hexdigest()

    def clear_cache(self) -> None:
        self._cache.clear()

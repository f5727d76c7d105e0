# shellwatch/providers/mock.py
from __future__ import annotations

from typing import List

from .base import ModelProvider
from .types import ModelInput, ModelOutput, ModelProvenance, ModelSuggestion, SanitizedContext
from ..core.events import now_ms


class MockProvider(ModelProvider):
    """Deterministic provider for tests and demos. Keeps every input it was sent."""

    name = "mock"

    def __init__(self, available: bool = True, **kwargs):
        kwargs.setdefault("require_user_review", False)
        super().__init__(model="mock", **kwargs)
        self.available = available
        self.calls: List[ModelInput] = []

    def is_available(self) -> bool:
        return self.available

    def _call_model(self, model_input: ModelInput, sanitized: SanitizedContext) -> ModelOutput:
        self.calls.append(model_input)
        ctx = model_input.context
        return ModelOutput(
            suggestions=[ModelSuggestion(
                title="Mock Suggestion",
                description=f"`{ctx.command}` exited with {ctx.exit_code}.",
                actionable_snippet=f"# re-run with more detail\n{ctx.command} --help",
                confidence=0.7,
                type="tip",
                priority="medium",
            )],
            provenance=ModelProvenance(provider=self.name, model="mock", timestamp=now_ms(), tokens_used=0),
        )

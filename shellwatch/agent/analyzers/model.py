# shellwatch/agent/analyzers/model.py
from __future__ import annotations

import logging
import os
from typing import List, Optional

from .local_search import find_repo_root
from ..pipeline import AnalysisContext, AnalysisSuggestion, Analyzer, Provenance
from ...core.events import now_ms
from ...core.storage import EventStore
from ...providers.base import ModelProvider
from ...providers.types import ErrorSummary, ModelInput, RepoMetadata
from ...utils.errors import ProviderUnavailable, SanitizationFailure

logger = logging.getLogger(__name__)

_VCS = (("git", ".git"), ("hg", ".hg"), ("svn", ".svn"))
_LANGUAGES = (
    ("flake.nix", "nix", "flakes"),
    ("pyproject.toml", "python", None),
    ("package.json", "javascript", "node"),
    ("Cargo.toml", "rust", "cargo"),
    ("go.mod", "go", None),
)
MAX_FILES = 20


def repo_metadata(cwd: str) -> RepoMetadata:
    root = find_repo_root(cwd)
    if root is None:
        return RepoMetadata()
    vcs = next((name for name, marker in _VCS if os.path.exists(os.path.join(root, marker))), "none")
    language = framework = None
    files: List[str] = []
    for marker, lang, fw in _LANGUAGES:
        if os.path.exists(os.path.join(root, marker)):
            files.append(marker)
            if language is None:
                language, framework = lang, fw
    try:
        extra = sorted(n for n in os.listdir(root) if n.endswith((".nix", ".toml", ".yaml", ".yml")) and n not in files)
    except OSError:
        extra = []
    return RepoMetadata(root=root, type=vcs, files=(files + extra)[:MAX_FILES], language=language, framework=framework)


class ModelAnalyzer(Analyzer):
    """Layer 3: ask the configured model provider. Never raises for provider trouble."""

    name = "model"
    layer = 3

    def __init__(self, provider: Optional[ModelProvider]):
        self.provider = provider

    def analyze(self, context: AnalysisContext, store: Optional[EventStore]) -> List[AnalysisSuggestion]:
        if self.provider is None:
            return []
        try:
            if not self.provider.is_available():
                logger.warning("model provider %s is not available, skipping", self.provider.name)
                return []
            model_input = ModelInput(
                context=context,
                error_summary=ErrorSummary(
                    command=context.command,
                    args=context.args,
                    exit_code=context.exit_code,
                    stderr=context.stderr,
                    stdout=context.stdout,
                    cwd=context.cwd,
                    timestamp=now_ms(),
                ),
                repo_metadata=repo_metadata(context.cwd),
                previous_suggestions=context.prior_suggestions,
            )
            output = self.provider.analyze(model_input)
        except ProviderUnavailable as e:
            logger.warning("model provider %s unavailable: %s", self.provider.name, e)
            return []
        except SanitizationFailure as e:
            logger.error("not sending context to %s: %s", self.provider.name, e)
            return []

        label = f"{self.name}:{output.provenance.provider}"
        return [
            self.suggestion(
                s.title,
                s.description,
                s.confidence,
                type=s.type,
                priority=s.priority,
                snippet=s.actionable_snippet,
            ).model_copy(update={"provenance": Provenance(analyzer=label, layer=3, timestamp=now_ms())})
            for s in output.suggestions
        ]

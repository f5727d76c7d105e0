# shellwatch/providers/types.py
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..agent.pipeline import AnalysisContext, AnalysisSuggestion, Priority, SuggestionType


class RepoMetadata(BaseModel):
    root: Optional[str] = None
    type: Literal["git", "hg", "svn", "none"] = "none"
    files: List[str] = Field(default_factory=list)
    language: Optional[str] = None
    framework: Optional[str] = None


class ErrorSummary(BaseModel):
    command: str
    args: List[str] = Field(default_factory=list)
    exit_code: int
    stderr: str = ""
    stdout: str = ""
    cwd: str = ""
    timestamp: int


class ModelInput(BaseModel):
    """Everything a provider may see about one failure."""

    context: AnalysisContext
    error_summary: ErrorSummary
    repo_metadata: RepoMetadata = Field(default_factory=RepoMetadata)
    previous_suggestions: List[AnalysisSuggestion] = Field(default_factory=list)


class ModelSuggestion(BaseModel):
    title: str
    description: str
    actionable_snippet: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    type: SuggestionType = "tip"
    priority: Priority = "medium"


class ModelProvenance(BaseModel):
    provider: str
    model: Optional[str] = None
    timestamp: int
    tokens_used: Optional[int] = None


class ModelOutput(BaseModel):
    suggestions: List[ModelSuggestion] = Field(default_factory=list)
    provenance: ModelProvenance


class Redaction(BaseModel):
    type: Literal["env", "stdout", "stderr", "command"]
    pattern: str
    # masked form of what was removed, never the raw value
    replaced: str


class SanitizedContext(BaseModel):
    original: AnalysisContext
    sanitized: AnalysisContext
    redactions: List[Redaction] = Field(default_factory=list)

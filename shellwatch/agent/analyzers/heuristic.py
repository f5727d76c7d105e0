# shellwatch/agent/analyzers/heuristic.py
from __future__ import annotations

import re
from typing import List, Optional

from ..pipeline import AnalysisContext, AnalysisSuggestion, Analyzer
from ...core.storage import EventStore

_ATTR = re.compile(r"attribute\s+['\"‘`]([^'\"’`]+)['\"’`]", re.IGNORECASE)
_FIRST_ERROR = re.compile(r"error:\s*(.+)", re.IGNORECASE)
_TOKEN_VAR = re.compile(r"\b([A-Z][A-Z0-9_]*TOKEN)\b")
_FILE_LINE = re.compile(r"([^\s:'\"]+):(\d+):")
_NOT_FOUND = (
    re.compile(r"command not found:\s*([^\s'\"]+)"),         # zsh: command not found: foo
    re.compile(r"([^\s:'\"]+):\s*command not found"),       # bash: foo: command not found
    re.compile(r"Unknown command:\s*['\"]?([^\s'\"]+)"),    # fish / nushell
)


def _has(text: str, *words: str) -> bool:
    return any(w in text for w in words)


class NixErrorAnalyzer(Analyzer):
    name = "nix-error"
    layer = 1

    def analyze(self, context: AnalysisContext, store: Optional[EventStore]) -> List[AnalysisSuggestion]:
        out: List[AnalysisSuggestion] = []
        err = context.stderr.lower()

        if "attribute" in err and _has(err, "missing", "undefined", "not found"):
            m = _ATTR.search(context.stderr)
            attr = m.group(1) if m else "unknown"
            out.append(self.suggestion(
                "Missing Nix Attribute",
                f'The attribute "{attr}" is not defined. Check flake.nix and the modules it imports.',
                0.9,
                type="warning",
                priority="high",
                snippet=f'# Check if "{attr}" is defined in your flake.nix or imported modules\n'
                        f"nix flake show 2>/dev/null | grep -n '{attr}'",
            ))

        if "template" in err and _has(err, "path", "not found"):
            out.append(self.suggestion(
                "Flake-Parts Template Path Error",
                "A template path could not be resolved. Check the flake-parts configuration and the template paths it references.",
                0.85,
                type="warning",
                priority="high",
                snippet="# Verify template paths in flake.nix:\n"
                        "#   - flake-parts inputs and imports\n"
                        "#   - paths used under perSystem / templates",
            ))

        if "font" in err and _has(err, "conflict", "duplicate", "collision"):
            out.append(self.suggestion(
                "Nix buildEnv Font Conflict",
                "Several packages in a buildEnv provide the same font file.",
                0.8,
                type="warning",
                priority="medium",
                snippet="# Either allow the collision:\n"
                        "#   pkgs.buildEnv { ...; ignoreCollisions = true; }\n"
                        "# or drop the duplicate font package from the environment",
            ))

        if "error:" in err and _has(err, "evaluation", "nix"):
            m = _FIRST_ERROR.search(context.stderr)
            msg = m.group(1).strip()[:100] if m else "unknown Nix error"
            out.append(self.suggestion(
                "Nix Evaluation Error",
                f"Nix evaluation failed: {msg}",
                0.75,
                type="warning",
                priority="high",
                snippet="# Re-run with a trace to find the failing expression:\n"
                        "nix build --show-trace",
            ))
        return out


class GitAuthAnalyzer(Analyzer):
    name = "git-auth"
    layer = 1

    def analyze(self, context: AnalysisContext, store: Optional[EventStore]) -> List[AnalysisSuggestion]:
        out: List[AnalysisSuggestion] = []
        text = (context.stderr + "\n" + context.stdout).lower()

        if "rate limit" in text:
            out.append(self.suggestion(
                "GitHub Rate Limit Exceeded",
                "The GitHub API rate limit was hit. Authenticated requests get a much higher limit.",
                0.95,
                type="warning",
                priority="high",
                snippet="export GITHUB_TOKEN=your_token_here\n# or\ngh auth login",
            ))

        if _has(text, "authentication failed", "permission denied", "could not read username"):
            out.append(self.suggestion(
                "Git Authentication Error",
                "The remote rejected the credentials. Check the configured credential helper, token or SSH key.",
                0.9,
                type="warning",
                priority="high",
                snippet="git config --get-all credential.helper\n"
                        "ssh -T git@github.com\n"
                        "gh auth status",
            ))

        if "token" in text and _has(text, "not set", "missing"):
            m = _TOKEN_VAR.search(context.stderr) or _TOKEN_VAR.search(context.stdout)
            var = m.group(1) if m else "TOKEN"
            out.append(self.suggestion(
                "Token Environment Variable Missing",
                f"{var} is not set or is empty in this shell.",
                0.85,
                type="warning",
                priority="high",
                snippet=f"export {var}=your_token_here",
            ))
        return out


class SyntaxErrorAnalyzer(Analyzer):
    name = "syntax-error"
    layer = 1

    def analyze(self, context: AnalysisContext, store: Optional[EventStore]) -> List[AnalysisSuggestion]:
        out: List[AnalysisSuggestion] = []
        err = context.stderr.lower()

        if _has(err, "syntax error", "parse error", "syntaxerror"):
            m = _FILE_LINE.search(context.stderr + "\n" + context.stdout)
            if m:
                path, line = m.group(1), int(m.group(2))
                where = f"{path} at line {line}"
                snippet = f"sed -n '{max(1, line - 3)},{line + 3}p' {path}"
            else:
                where = "the input"
                snippet = "# Look for unbalanced brackets, quotes or missing separators"
            out.append(self.suggestion(
                "Syntax Error Detected",
                f"Syntax error in {where}.",
                0.8,
                type="warning",
                priority="high",
                snippet=snippet,
            ))

        if _has(err, "command not found", "unknown command"):
            cmd = "command"
            for pat in _NOT_FOUND:
                m = pat.search(context.stderr)
                if m:
                    cmd = m.group(1)
                    break
            out.append(self.suggestion(
                "Command Not Found",
                f'"{cmd}" is not on your PATH.',
                0.9,
                type="warning",
                priority="medium",
                snippet=f"command -v {cmd} || echo \"$PATH\" | tr ':' '\\n'\n"
                        f"# with nix: nix-shell -p {cmd}",
            ))
        return out


def create_heuristic_analyzers() -> List[Analyzer]:
    return [NixErrorAnalyzer(), GitAuthAnalyzer(), SyntaxErrorAnalyzer()]

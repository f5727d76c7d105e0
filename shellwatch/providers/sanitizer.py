# shellwatch/providers/sanitizer.py
from __future__ import annotations

import json
import re
from typing import Callable, Iterable, List, Pattern, Tuple

from .types import Redaction, SanitizedContext
from ..agent.pipeline import AnalysisContext
from ..core.redact import REDACTED, compile_patterns, is_secret_key, redact_secrets_from_text, redact_value
from ..utils.errors import SanitizationFailure

# (label, pattern) for credential shapes that appear without a key= prefix
TOKEN_PATTERNS: List[Tuple[str, Pattern[str]]] = [
    ("github_token", re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b")),
    ("openai_key", re.compile(r"\bsk-[A-Za-z0-9_\-]{16,}")),
    ("stripe_key", re.compile(r"\b[pr]k_(?:live|test)_[A-Za-z0-9]{10,}")),
    ("google_api_key", re.compile(r"\bAIza[0-9A-Za-z_\-]{30,}")),
    ("aws_access_key", re.compile(r"\bAKIA[0-9A-Z]{16}\b")),
    ("jwt", re.compile(r"\beyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+")),
]

# long opaque strings; pure hex (commit ids, digests) is left alone
_OPAQUE = re.compile(r"(?<![\w/])[A-Za-z0-9+/_\-]{40,}={0,2}")
_HEX = re.compile(r"^[0-9a-fA-F]+$")


class _Scrubber:
    def __init__(self, custom_patterns: Iterable[str] = ()):
        self.custom = list(custom_patterns or ())
        self.custom_compiled = compile_patterns(self.custom)
        self.redactions: List[Redaction] = []

    def _record(self, kind: str, label: str, value: str) -> None:
        self.redactions.append(Redaction(type=kind, pattern=label, replaced=redact_value(value)))

    def _sub(self, kind: str, label: str, pat: Pattern[str], text: str,
             keep: Callable[[str], bool] = lambda s: False) -> str:
        def repl(m: re.Match) -> str:
            if keep(m.group(0)):
                return m.group(0)
            self._record(kind, label, m.group(0))
            return REDACTED
        return pat.sub(repl, text)

    def text(self, kind: str, text: str) -> str:
        if not text:
            return text
        out = text
        for label, pat in TOKEN_PATTERNS:
            out = self._sub(kind, label, pat, out)
        out = self._sub(kind, "opaque_string", _OPAQUE, out, keep=lambda s: bool(_HEX.match(s)) or s == REDACTED)
        for pat in self.custom_compiled:
            out = self._sub(kind, pat.pattern, pat, out)
        scrubbed = redact_secrets_from_text(out)
        if scrubbed != out:
            self.redactions.append(Redaction(type=kind, pattern="secret_assignment", replaced=REDACTED))
        return scrubbed

    def env(self, env: dict) -> dict:
        out = {}
        for k, v in env.items():
            if is_secret_key(k, self.custom) and v != REDACTED:
                self._record("env", f"key:{k}", str(v))
                out[k] = REDACTED
            else:
                out[k] = self.text("env", str(v))
        return out


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    # the end of the output is where the error usually is
    dropped = len(text) - limit
    return f"[truncated {dropped} chars]\n" + text[-limit:]


def sanitize_context(context: AnalysisContext, custom_patterns: Iterable[str] = (), max_length: int = 8000) -> SanitizedContext:
    """
    Return a copy of `context` that is safe to leave the machine, plus a
    record of what was removed. Any failure aborts with SanitizationFailure.
    """
    try:
        s = _Scrubber(custom_patterns)
        previous = [
            p.model_copy(update={"command": s.text("command", p.command), "args": [s.text("command", a) for a in p.args]})
            for p in context.previous_commands
        ]
        clean = context.model_copy(update={
            "command": s.text("command", context.command),
            "args": [s.text("command", a) for a in context.args],
            "env": s.env(context.env),
            "stdout": _truncate(s.text("stdout", context.stdout), max_length),
            "stderr": _truncate(s.text("stderr", context.stderr), max_length),
            "previous_commands": previous,
            "prior_suggestions": [],
        })
        return SanitizedContext(original=context, sanitized=clean, redactions=s.redactions)
    except Exception as e:
        raise SanitizationFailure(f"could not sanitize context: {e}", hint="check secret_patterns in config.yaml") from e


def format_context_for_review(sanitized: SanitizedContext) -> str:
    ctx = sanitized.sanitized
    lines = [
        "=== context to be sent ===",
        f"command:   {ctx.command} {' '.join(ctx.args)}".rstrip(),
        f"cwd:       {ctx.cwd}",
        f"exit code: {ctx.exit_code}",
    ]
    if ctx.stderr:
        lines += ["stderr:", ctx.stderr[:500] + ("..." if len(ctx.stderr) > 500 else "")]
    if ctx.stdout:
        lines += ["stdout:", ctx.stdout[:500] + ("..." if len(ctx.stdout) > 500 else "")]
    if ctx.env:
        lines += ["env:", json.dumps(ctx.env, indent=2, sort_keys=True)]
    if sanitized.redactions:
        lines.append(f"redactions ({len(sanitized.redactions)}):")
        for r in sanitized.redactions:
            lines.append(f"  - {r.type}: {r.pattern} ({r.replaced})")
    return "\n".join(lines)

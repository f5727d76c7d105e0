# shellwatch/core/redact.py
from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Mapping, Pattern

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

# Environment variable names that are treated as secrets (matched anywhere in the key).
DEFAULT_SECRET_PATTERNS: List[Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"token",
        r"secret",
        r"password",
        r"api[_-]?key",
        r"auth[_-]?token",
        r"access[_-]?token",
        r"private[_-]?key",
        r"credential",
        r"bearer",
        r"session[_-]?id",
        r"cookie",
    )
]

_KV_SECRET = re.compile(
    r"(token|secret|password|api[_-]?key|auth[_-]?token|access[_-]?token)(\s*[:=]\s*)([^\s]{8,})",
    re.IGNORECASE,
)
_BEARER = re.compile(r"\b(bearer)\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE)
_PEM = re.compile(
    r"-----BEGIN (?:[A-Z]+ )?PRIVATE KEY-----[\s\S]*?-----END (?:[A-Z]+ )?PRIVATE KEY-----"
)


def compile_patterns(patterns: Iterable[str]) -> List[Pattern[str]]:
    """Compile caller-supplied patterns, skipping (and warning about) invalid ones."""
    out: List[Pattern[str]] = []
    for p in patterns or ():
        try:
            out.append(re.compile(p, re.IGNORECASE))
        except re.error as e:
            logger.warning("ignoring invalid secret pattern %r: %s", p, e)
    return out


def is_secret_key(key: str, custom_patterns: Iterable[str] = ()) -> bool:
    for pat in DEFAULT_SECRET_PATTERNS + compile_patterns(custom_patterns):
        if pat.search(key):
            return True
    return False


def redact_value(value: str, full_redaction: bool = False) -> str:
    """Mask a value, keeping the first and last four characters of long ones."""
    if not value:
        return value
    if full_redaction or len(value) <= 8:
        return REDACTED
    return f"{value[:4]}...{value[-4:]}"


def sanitize_env(env: Mapping[str, str], custom_patterns: Iterable[str] = ()) -> Dict[str, str]:
    """Copy of `env` with every secret-looking key's value replaced by [REDACTED]."""
    pats = DEFAULT_SECRET_PATTERNS + compile_patterns(custom_patterns)
    out: Dict[str, str] = {}
    for k, v in (env or {}).items():
        if v is None:
            continue
        if any(p.search(k) for p in pats):
            out[k] = redact_value(str(v), full_redaction=True)
        else:
            out[k] = str(v)
    return out


def redact_secrets_from_text(text: str, custom_patterns: Iterable[str] = ()) -> str:
    if not text:
        return text
    out = _PEM.sub(REDACTED, text)
    out = _BEARER.sub(lambda m: f"{m.group(1)} {REDACTED}", out)
    out = _KV_SECRET.sub(lambda m: f"{m.group(1)}={REDACTED}", out)
    for pat in compile_patterns(custom_patterns):
        out = pat.sub(REDACTED, out)
    return out


def validate_redaction() -> bool:
    """Self-check run by `shellwatch doctor`."""
    env = sanitize_env({"GITHUB_TOKEN": "ghp_1234567890abcdef", "PATH": "/usr/bin"})
    if env["GITHUB_TOKEN"] != REDACTED or env["PATH"] != "/usr/bin":
        return False
    text = redact_secrets_from_text("export API_KEY=sk-abcdefghijklmnop and Bearer abc.def.ghi")
    if "sk-abcdefghijklmnop" in text or "abc.def.ghi" in text:
        return False
    return redact_value("abcdefghijklmnop") == "abcd...mnop" and redact_value("") == ""

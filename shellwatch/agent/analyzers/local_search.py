# shellwatch/agent/analyzers/local_search.py
from __future__ import annotations

import fnmatch
import logging
import os
import re
import shutil
import subprocess
from typing import List, Optional, Sequence

from ..pipeline import AnalysisContext, AnalysisSuggestion, Analyzer
from ...core.storage import EventStore

logger = logging.getLogger(__name__)

REPO_MARKERS = (".git", "flake.nix", ".gitignore", "pyproject.toml", "package.json", "Cargo.toml")
MAX_DEPTH = 10
MAX_LISTED = 5
SKIP_DIRS = {".git", "node_modules", ".venv", "venv", "__pycache__", "target", "result"}

_ATTR = re.compile(r"attribute\s+['\"‘`]([^'\"’`]+)['\"’`]", re.IGNORECASE)
_TOKEN_VAR = re.compile(r"\b([A-Z][A-Z0-9_]*TOKEN)\b")
_PY_NAME = re.compile(r"(?:name|module named)\s+['\"]([\w.]+)['\"]")


def find_repo_root(cwd: str, max_depth: int = MAX_DEPTH) -> Optional[str]:
    """Walk up from `cwd` until a directory holding a repository marker is found."""
    current = os.path.abspath(os.path.expanduser(cwd or os.getcwd()))
    for _ in range(max_depth):
        if any(os.path.exists(os.path.join(current, m)) for m in REPO_MARKERS):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return None


def _relative(paths: Sequence[str], root: str) -> List[str]:
    out = []
    for p in paths:
        p = p.strip()
        if not p:
            continue
        out.append(os.path.relpath(p, root) if os.path.isabs(p) else p)
    return sorted(set(out))


def _python_scan(root: str, needle: str, globs: Sequence[str]) -> List[str]:
    hits: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS]
        for name in filenames:
            if globs and not any(fnmatch.fnmatch(name, g) for g in globs):
                continue
            path = os.path.join(dirpath, name)
            try:
                with open(path, "r", encoding="utf-8", errors="ignore") as f:
                    if needle in f.read():
                        hits.append(path)
            except OSError:
                continue
    return hits


def search_in_repo(root: str, needle: str, globs: Sequence[str] = (), timeout: float = 10.0) -> List[str]:
    """
    Files under `root` containing the literal `needle`, relative to `root`.
    Tries ripgrep, then grep, then a plain Python scan. A search that runs
    past `timeout` seconds is killed and counts as no results.
    """
    commands = []
    if shutil.which("rg"):
        cmd = ["rg", "-l", "-F", "--no-messages"]
        for g in globs:
            cmd += ["-g", g]
        commands.append(cmd + ["--", needle, root])
    if shutil.which("grep"):
        cmd = ["grep", "-r", "-l", "-F", "-s"]
        cmd += [f"--include={g}" for g in globs]
        commands.append(cmd + ["--", needle, root])

    for cmd in commands:
        try:
            cp = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("%s timed out after %ss searching for %r", cmd[0], timeout, needle)
            return []
        except OSError as e:
            logger.debug("%s unavailable: %s", cmd[0], e)
            continue
        # 0 = matches, 1 = no matches; anything else is a tool error
        if cp.returncode in (0, 1):
            return _relative(cp.stdout.splitlines(), root)
        logger.debug("%s exited %s: %s", cmd[0], cp.returncode, cp.stderr.strip()[:200])
    return _relative(_python_scan(root, needle, globs), root)


def _listing(files: Sequence[str]) -> str:
    return "\n".join(f"# - {f}" for f in files[:MAX_LISTED])


class LocalSearchAnalyzer(Analyzer):
    name = "local-search"
    layer = 2

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def analyze(self, context: AnalysisContext, store: Optional[EventStore]) -> List[AnalysisSuggestion]:
        root = find_repo_root(context.cwd)
        if root is None:
            return []
        out: List[AnalysisSuggestion] = []
        err = context.stderr.lower()

        m = _ATTR.search(context.stderr)
        if m and _has(err, "missing", "undefined", "not found"):
            attr = m.group(1).split(".")[-1]
            files = search_in_repo(root, attr, ["*.nix"], self.timeout)
            if files:
                out.append(self.suggestion(
                    "Found Attribute References",
                    f'"{attr}" is referenced in {len(files)} file(s) of this repository.',
                    0.7,
                    snippet=_listing(files),
                ))

        if "template" in err and _has(err, "path", "not found"):
            files = search_in_repo(root, "template", ["*.nix"], self.timeout)
            if files:
                out.append(self.suggestion(
                    "Found Template References",
                    "These Nix files mention templates; check the paths they configure.",
                    0.65,
                    snippet=_listing(files),
                ))

        m = _TOKEN_VAR.search(context.stderr)
        if m:
            var = m.group(1)
            files = search_in_repo(root, var, ["*.sh", "*.env", ".env*", "*.nix", "*.yml", "*.yaml"], self.timeout)
            if files:
                out.append(self.suggestion(
                    "Found Token References",
                    f"{var} is referenced in {len(files)} file(s) of this repository.",
                    0.7,
                    snippet=f"{_listing(files)}\n\n# is it set here?\necho ${{{var}:+set}}",
                ))

        m = _PY_NAME.search(context.stderr)
        if m and _has(err, "nameerror", "modulenotfounderror", "importerror", "is not defined"):
            ident = m.group(1)
            files = search_in_repo(root, ident, ["*.py", "*.toml", "*.cfg", "*.txt"], self.timeout)
            if files:
                out.append(self.suggestion(
                    "Found Identifier References",
                    f'"{ident}" appears in {len(files)} file(s); compare the definition or dependency declaration.',
                    0.65,
                    snippet=_listing(files),
                ))

        flake = os.path.join(root, "flake.nix")
        if os.path.exists(flake) and "nix" in err and "missing" in err:
            try:
                with open(flake, "r", encoding="utf-8", errors="ignore") as f:
                    content = f.read()
            except OSError:
                content = "inputs"
            if "inputs" not in content:
                out.append(self.suggestion(
                    "Check flake.nix Configuration",
                    "flake.nix has no inputs section; the missing value may come from an input that was never declared.",
                    0.6,
                    snippet=f"cat {flake}\n# expected shape: {{ inputs = {{ ... }}; outputs = {{ ... }}: ...; }}",
                ))
        return out


def _has(text: str, *words: str) -> bool:
    return any(w in text for w in words)

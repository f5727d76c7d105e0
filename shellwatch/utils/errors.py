# shellwatch/utils/errors.py
from __future__ import annotations

from typing import Optional


class ShellwatchError(Exception):
    """Base error. `hint` is a short remedial action shown by the CLI."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class ConfigError(ShellwatchError):
    pass


class StorageUnavailable(ShellwatchError):
    pass


class ObserverStateError(ShellwatchError):
    pass


class AnalyzerFailure(ShellwatchError):
    def __init__(self, analyzer: str, cause: BaseException):
        super().__init__(f"analyzer {analyzer} failed: {cause}")
        self.analyzer = analyzer
        self.cause = cause


class ProviderUnavailable(ShellwatchError):
    pass


class SanitizationFailure(ShellwatchError):
    pass

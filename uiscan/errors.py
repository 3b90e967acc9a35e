"""Exception types raised across the analysis pipeline."""

from __future__ import annotations


class UiscanError(Exception):
    """Base class for all uiscan errors."""


class SourceTreeUnavailable(UiscanError):
    """The source root does not exist; nothing can be analyzed."""


class ParsePartialFailure(UiscanError):
    """A file could not be turned into a usable syntax tree."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class WriteConflict(UiscanError):
    """A patch target changed on disk between read and write."""

    def __init__(self, path: str) -> None:
        super().__init__(f"{path} changed on disk since it was analyzed")
        self.path = path


class ConfigError(UiscanError):
    """Invalid uiscan configuration."""


class ReviewIncomplete(UiscanError):
    """Patched text was requested before every candidate had a decision."""

    def __init__(self, path: str, pending: int) -> None:
        super().__init__(f"{path}: {pending} candidate(s) still undecided")
        self.path = path
        self.pending = pending

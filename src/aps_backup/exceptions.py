"""Exceptions raised by the backup pipeline.

Node-level errors (``UpstreamError``, ``FetchTimeout``, ``NoVersionFound``) are
caught by the tree walker and only cost the affected subtree. Scope-level and
finalization errors propagate to whoever asked for the archive.
"""

from typing import Any


class BackupError(Exception):
    """Base class for every error raised by aps_backup.

    Attributes:
        context: Extra details for logging (container ids, node type, URL).
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class AuthMissing(BackupError):
    """No access token was supplied. Raised before any upstream call."""


class ScopeNotFound(BackupError):
    """The requested hub or project is not visible to the credential."""


class UpstreamError(BackupError):
    """A call to the remote service failed (network error or non-2xx status)."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, context)
        self.status_code = status_code


class FetchTimeout(UpstreamError):
    """A guarded upstream call did not return within its time limit."""


class NoVersionFound(BackupError):
    """An item has no version with a downloadable storage location."""


class ArchiveFinalizationError(BackupError):
    """Writing the ZIP central directory or closing the sink failed."""


class BackupCancelled(BackupError):
    """The consumer stopped reading the archive stream."""

"""Utility functions for APS Backup."""

import re
import shutil
import sys
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Sequence, TypeVar

from .exceptions import FetchTimeout
from .models import Version

T = TypeVar("T")

MAX_NAME_LENGTH = 255

# Control characters plus the characters Windows and most archivers reject
_ILLEGAL_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_name(name: str | None) -> str:
    """
    Make a display name safe to use as one archive path segment.

    Every illegal character becomes ``_`` and the result is cut to 255
    characters. Empty names and the relative segments ``.``/``..`` are
    replaced by underscores so a segment never collapses or climbs.
    """
    cleaned = _ILLEGAL_NAME_CHARS.sub("_", name or "")[:MAX_NAME_LENGTH]
    if not cleaned:
        return "_"
    if cleaned in (".", ".."):
        return "_" * len(cleaned)
    return cleaned


def join_archive_path(*segments: str) -> str:
    """Join already-sanitized segments with forward slashes, skipping blanks."""
    return "/".join(s for s in segments if s)


def call_with_timeout(
    func: Callable[..., T],
    timeout: float,
    *args: Any,
    description: str = "",
    **kwargs: Any,
) -> T:
    """
    Run ``func`` and wait at most ``timeout`` seconds for its result.

    The call runs on a throwaway worker thread. On timeout the caller gets
    ``FetchTimeout`` right away; the worker is abandoned and finishes (or
    fails) on its own, bounded by the HTTP socket timeout.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="aps-timeout")
    future = executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeoutError:
        future.cancel()
        raise FetchTimeout(
            f"Operation timed out after {timeout:.1f}s: {description or func.__name__}",
            {"timeout": timeout, "operation": description or func.__name__},
        ) from None
    finally:
        executor.shutdown(wait=False)


def select_latest_version(versions: Sequence[Version]) -> Version | None:
    """
    Pick the newest version of an item.

    The service lists versions newest first, but when every entry carries a
    ``versionNumber`` the highest number wins regardless of position. Failing
    that, the latest ``lastModifiedTime`` wins when every entry has one.
    """
    if not versions:
        return None
    if all(v.version_number is not None for v in versions):
        return max(versions, key=lambda v: v.version_number)
    if all(v.last_modified for v in versions):
        # ISO 8601 UTC timestamps from the service order lexically
        return max(versions, key=lambda v: v.last_modified)
    return versions[0]


def human_size(num_bytes: int, precision: int = 2) -> str:
    """Convert bytes to human-readable string (e.g., '1.5 GB')."""
    num = float(num_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB", "PB"]:
        if abs(num) < 1024.0:
            return f"{num:.{precision}f} {unit}"
        num /= 1024.0
    return f"{num:.{precision}f} EB"


def human_time(seconds: float | None) -> str:
    """Convert seconds to human-readable duration (e.g., '2h 15m')."""
    if seconds is None:
        return "calculating..."
    if seconds < 0:
        return "unknown"

    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        m, s = divmod(seconds, 60)
        return f"{m}m {s}s"
    else:
        h, remainder = divmod(seconds, 3600)
        m, s = divmod(remainder, 60)
        return f"{h}h {m}m"


def get_terminal_width() -> int:
    """Get terminal width, defaulting to 80 if unavailable."""
    try:
        return shutil.get_terminal_size().columns
    except Exception:
        return 80


def is_tty() -> bool:
    """Check if stdout is a terminal (supports colors/cursor control)."""
    return sys.stdout.isatty()

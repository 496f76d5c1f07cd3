"""Data models for APS Backup."""

import time
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Iterator, Protocol

from .exceptions import ScopeNotFound


class NodeType(str, Enum):
    """Type tags as they appear in the ``type`` field of the service's JSON."""

    HUB = "hubs"
    PROJECT = "projects"
    FOLDER = "folders"
    ITEM = "items"
    VERSION = "versions"


@dataclass
class ContainerNode:
    """One hub, project, folder or item in the remote tree."""

    id: str
    name: str
    type: NodeType
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def is_folder(self) -> bool:
        return self.type is NodeType.FOLDER

    @property
    def is_item(self) -> bool:
        return self.type is NodeType.ITEM

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "ContainerNode":
        """Build a node from a JSON:API resource object.

        Hubs and projects carry ``attributes.name``; folders and items carry
        ``attributes.displayName``. Either is accepted for any type.
        """
        attributes = data.get("attributes") or {}
        name = attributes.get("displayName") or attributes.get("name") or data.get("id", "")
        return cls(
            id=data["id"],
            name=name,
            type=NodeType(data["type"]),
            attributes=attributes,
        )


@dataclass
class Version:
    """A revision of an item, carrying the download location."""

    id: str
    name: str
    version_number: int | None = None
    storage_url: str | None = None
    last_modified: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Version":
        attributes = data.get("attributes") or {}
        storage = (data.get("relationships") or {}).get("storage") or {}
        link = ((storage.get("meta") or {}).get("link") or {}).get("href")
        number = attributes.get("versionNumber")
        return cls(
            id=data["id"],
            name=attributes.get("displayName") or attributes.get("name") or data["id"],
            version_number=int(number) if number is not None else None,
            storage_url=link,
            last_modified=attributes.get("lastModifiedTime"),
        )


@dataclass(frozen=True)
class BackupScope:
    """What to back up: every visible hub, or one hub+project pair."""

    hub_id: str | None = None
    project_id: str | None = None

    @property
    def is_full(self) -> bool:
        return self.hub_id is None and self.project_id is None

    @classmethod
    def full(cls) -> "BackupScope":
        return cls()

    @classmethod
    def scoped(cls, hub_id: str, project_id: str) -> "BackupScope":
        if not hub_id or not project_id:
            raise ScopeNotFound(
                "A scoped backup needs both a hub id and a project id",
                {"hub_id": hub_id, "project_id": project_id},
            )
        return cls(hub_id=hub_id, project_id=project_id)


class ByteStream(Protocol):
    """What ``openVersionContent`` hands back; ``requests.Response`` fits."""

    def iter_content(self, chunk_size: int) -> Iterator[bytes]: ...

    def close(self) -> None: ...


@dataclass
class FetchedContent:
    """Display name of the resolved version plus its open byte stream.

    The stream must be consumed or closed by the caller.
    """

    name: str
    stream: ByteStream
    version: Version | None = None

    def iter_chunks(self, chunk_size: int) -> Iterator[bytes]:
        for chunk in self.stream.iter_content(chunk_size):
            if chunk:
                yield chunk

    def close(self) -> None:
        self.stream.close()


@dataclass
class BackupStats:
    """Track backup statistics with thread safety."""

    items_archived: int = 0
    items_failed: int = 0
    folders_skipped: int = 0
    hubs_skipped: int = 0
    bytes_archived: int = 0
    duplicate_entries: int = 0
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None

    _lock: Lock = field(default_factory=Lock)

    def increment(self, attr: str, value: int = 1) -> None:
        """Thread-safe increment of a stat attribute."""
        with self._lock:
            current = getattr(self, attr)
            setattr(self, attr, current + value)

    def finish(self) -> None:
        self.end_time = time.time()

    @property
    def elapsed_seconds(self) -> float:
        """Get total elapsed time since the backup started."""
        return (self.end_time or time.time()) - self.start_time

    @property
    def items_processed(self) -> int:
        return self.items_archived + self.items_failed

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/display."""
        return {
            "items_archived": self.items_archived,
            "items_failed": self.items_failed,
            "folders_skipped": self.folders_skipped,
            "hubs_skipped": self.hubs_skipped,
            "bytes_archived": self.bytes_archived,
            "duplicate_entries": self.duplicate_entries,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
        }

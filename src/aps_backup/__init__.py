"""
APS Backup - Stream Autodesk Platform Services projects into a ZIP archive.

Features:
- Depth-first walk of hubs, projects, folders and items
- Latest version of every item streamed straight into the archive
- Per-node time limits and failure isolation
- Full or single-project backups
"""

__version__ = "1.0.0"

from .archiver import ArchiveBuilder, ArchiveWriter
from .client import DataManagementClient
from .config import Config
from .exceptions import (
    ArchiveFinalizationError,
    AuthMissing,
    BackupCancelled,
    BackupError,
    FetchTimeout,
    NoVersionFound,
    ScopeNotFound,
    UpstreamError,
)
from .fetcher import ContentFetcher
from .models import BackupScope, BackupStats, ContainerNode, FetchedContent, NodeType, Version
from .pipeline import ArchiveStream, BackupPipeline
from .utils import sanitize_name

__all__ = [
    "ArchiveBuilder",
    "ArchiveWriter",
    "ArchiveStream",
    "BackupPipeline",
    "ContentFetcher",
    "DataManagementClient",
    "Config",
    "BackupScope",
    "BackupStats",
    "ContainerNode",
    "FetchedContent",
    "NodeType",
    "Version",
    "BackupError",
    "AuthMissing",
    "ScopeNotFound",
    "UpstreamError",
    "FetchTimeout",
    "NoVersionFound",
    "ArchiveFinalizationError",
    "BackupCancelled",
    "sanitize_name",
    "__version__",
]

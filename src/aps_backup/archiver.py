"""Tree walker and streaming ZIP builder."""

import contextlib
import logging
import time
import zipfile
from collections.abc import Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from threading import Event, Lock
from typing import IO, TYPE_CHECKING

from .config import Config
from .exceptions import (
    ArchiveFinalizationError,
    AuthMissing,
    BackupCancelled,
    BackupError,
    ScopeNotFound,
)
from .fetcher import ContentFetcher
from .models import BackupScope, BackupStats, ContainerNode, FetchedContent
from .utils import call_with_timeout, human_size, join_archive_path, sanitize_name

if TYPE_CHECKING:
    from .client import DataManagementClient

logger = logging.getLogger(__name__)


class _DetachableSink:
    """Forwards to the real sink until detached, then discards writes."""

    def __init__(self, sink: IO[bytes]):
        self._sink = sink
        self.detached = False

    def write(self, data: bytes) -> int:
        if self.detached:
            return len(data)
        return self._sink.write(data)

    def flush(self) -> None:
        if not self.detached and hasattr(self._sink, "flush"):
            self._sink.flush()

    def __getattr__(self, name: str):
        # tell/seek exist only when the real sink is seekable
        return getattr(self._sink, name)


class ArchiveWriter:
    """
    Append-only ZIP writer over any binary sink, seekable or not.

    On a non-seekable sink ``zipfile`` writes data descriptors after each
    entry, so nothing already emitted has to be revisited. Two entries with
    the same name are both kept; readers that look names up return the last.
    """

    def __init__(self, sink: IO[bytes], compression_level: int = 9):
        self._sink = _DetachableSink(sink)
        self._zip = zipfile.ZipFile(
            self._sink,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=compression_level,
        )
        self.compression_level = compression_level
        self._lock = Lock()
        self._names: set[str] = set()
        self.finalized = False

    def add_stream(self, name: str, chunks: Iterable[bytes]) -> tuple[int, bool]:
        """
        Write one entry from an iterable of byte chunks.

        Returns:
            Tuple of (bytes_written, was_duplicate_name)

        If reading ``chunks`` fails part way, the entry is left out of the
        central directory and the error propagates.
        """
        info = zipfile.ZipInfo(name, date_time=time.localtime(time.time())[:6])
        info.compress_type = zipfile.ZIP_DEFLATED
        # ZipFile.open() only applies its own level to names, not ZipInfo objects
        if hasattr(info, "compress_level"):
            info.compress_level = self.compression_level
        else:
            info._compresslevel = self.compression_level
        info.external_attr = 0o644 << 16

        with self._lock:
            if self.finalized:
                raise ArchiveFinalizationError(f"Archive already finalized, cannot add {name}")

            duplicate = name in self._names
            if duplicate:
                logger.warning("Duplicate archive entry name, keeping both: %s", name)

            written = 0
            try:
                with self._zip.open(info, mode="w", force_zip64=True) as dest:
                    for chunk in chunks:
                        dest.write(chunk)
                        written += len(chunk)
            except BaseException:
                self._forget(info)
                raise

            self._names.add(name)
            return written, duplicate

    def _forget(self, info: zipfile.ZipInfo) -> None:
        """Drop a partially written entry from the central directory."""
        if info in self._zip.filelist:
            self._zip.filelist.remove(info)
        if self._zip.NameToInfo.get(info.filename) is info:
            del self._zip.NameToInfo[info.filename]
            for earlier in reversed(self._zip.filelist):
                if earlier.filename == info.filename:
                    self._zip.NameToInfo[info.filename] = earlier
                    break

    def finalize(self) -> None:
        """Write the central directory. Exactly once; no entries after this."""
        with self._lock:
            if self.finalized:
                return
            self.finalized = True
            try:
                self._zip.close()
            except BackupCancelled:
                raise
            except Exception as e:
                raise ArchiveFinalizationError(f"Failed to finalize archive: {e}") from e

    def abort(self) -> None:
        """Close without emitting anything more to the sink."""
        if self.finalized:
            return
        self.finalized = True
        self._sink.detached = True
        with contextlib.suppress(ValueError, OSError):
            self._zip.close()


@dataclass
class _Work:
    """One pending node on the traversal stack."""

    kind: str  # "hub", "container" or "item"
    path: str
    hub_id: str
    project_id: str | None = None
    node_id: str | None = None  # folder id for containers, item id for items


class ArchiveBuilder:
    """
    Walk the hub/project/folder tree depth-first and archive every item.

    Traversal uses an explicit stack of ``_Work`` entries so each node's
    listing can be guarded and the stop event checked between nodes.
    """

    def __init__(
        self,
        client: "DataManagementClient",
        sink: IO[bytes],
        config: Config,
        fetcher: ContentFetcher | None = None,
        stats: BackupStats | None = None,
        stop_event: Event | None = None,
    ):
        self.client = client
        self.config = config
        self.fetcher = fetcher or ContentFetcher(client, config)
        self.stats = stats or BackupStats()
        self.stop_event = stop_event or Event()
        self.writer = ArchiveWriter(sink, config.compression_level)

    # -- public operations ---------------------------------------------------

    def backup_all(self, token: str) -> BackupStats:
        """Archive every project of every hub the token can see."""
        return self.run(self.resolve_scope(BackupScope.full(), token), token)

    def backup_scoped(self, token: str, hub_id: str, project_id: str) -> BackupStats:
        """Archive one project; entries start at the project's own name."""
        return self.run(self.resolve_scope(BackupScope.scoped(hub_id, project_id), token), token)

    def resolve_scope(self, scope: BackupScope, token: str) -> list[_Work]:
        """
        Turn a scope into the traversal's root entries.

        Every failure here is fatal: AuthMissing without a token,
        ScopeNotFound for an unknown hub or project, UpstreamError if the
        hubs or projects cannot be listed.
        """
        if not token:
            raise AuthMissing("Access token is missing")

        hubs = self.client.list_hubs(token)

        if scope.is_full:
            logger.info("Full backup of %d hub(s)", len(hubs))
            return [_Work("hub", sanitize_name(h.name), hub_id=h.id) for h in hubs]

        hub = _find(hubs, scope.hub_id)
        if hub is None:
            raise ScopeNotFound(f"Hub not found: {scope.hub_id}", {"hub_id": scope.hub_id})

        project = _find(self.client.list_projects(hub.id, token), scope.project_id)
        if project is None:
            raise ScopeNotFound(
                f"Project {scope.project_id} not found in hub {scope.hub_id}",
                {"hub_id": scope.hub_id, "project_id": scope.project_id},
            )

        logger.info("Scoped backup of project %s in hub %s", project.name, hub.name)
        return [_Work("container", sanitize_name(project.name), hub.id, project.id)]

    def run(self, roots: list[_Work], token: str) -> BackupStats:
        """Traverse from ``roots``, then finalize the archive."""
        stack = list(reversed(roots))
        workers = self.config.max_concurrent_fetches
        executor = None
        if workers > 1:
            executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="aps-fetch")

        try:
            while stack:
                self._check_stopped()
                work = stack.pop()

                if work.kind == "hub":
                    stack.extend(reversed(self._expand_hub(work, token)))
                elif work.kind == "container":
                    stack.extend(reversed(self._expand_container(work, token)))
                else:
                    batch = [work]
                    while executor and stack and stack[-1].kind == "item" and len(batch) < workers:
                        batch.append(stack.pop())
                    results = self._fetch_batch(batch, token, executor)
                    try:
                        for item, result in results:
                            self._archive_item(item, result)
                    finally:
                        results.close()
        except BaseException:
            self.writer.abort()
            raise
        finally:
            if executor:
                executor.shutdown(wait=False, cancel_futures=True)

        self.writer.finalize()
        self.stats.finish()
        logger.info(
            "Backup finished: %d archived (%s), %d failed, %d folder(s) skipped",
            self.stats.items_archived,
            human_size(self.stats.bytes_archived),
            self.stats.items_failed,
            self.stats.folders_skipped,
        )
        return self.stats

    # -- traversal steps -----------------------------------------------------

    def _check_stopped(self) -> None:
        if self.stop_event.is_set():
            raise BackupCancelled("Backup cancelled by consumer")

    def _expand_hub(self, work: _Work, token: str) -> list[_Work]:
        try:
            projects = self.client.list_projects(work.hub_id, token)
        except BackupError as e:
            logger.error("Skipping hub %s: cannot list projects: %s", work.hub_id, e)
            self.stats.increment("hubs_skipped")
            return []

        if not projects:
            logger.info("No projects found for hub: %s", work.path)
            self.stats.increment("hubs_skipped")
            return []

        return [
            _Work("container", join_archive_path(work.path, sanitize_name(p.name)), work.hub_id, p.id)
            for p in projects
        ]

    def _expand_container(self, work: _Work, token: str) -> list[_Work]:
        node_type = "folders" if work.node_id else "projects"
        try:
            children = call_with_timeout(
                self.client.list_children,
                self.config.list_timeout,
                work.hub_id,
                work.project_id,
                work.node_id,
                token,
                description=f"list contents of {node_type} {work.node_id or work.project_id}",
            )
        except BackupError as e:
            logger.error(
                "Skipping %s %s (%s): %s",
                node_type,
                work.node_id or work.project_id,
                work.path,
                e,
            )
            self.stats.increment("folders_skipped")
            return []

        pending = []
        for child in children:
            if child.is_folder:
                path = join_archive_path(work.path, sanitize_name(child.name))
                pending.append(_Work("container", path, work.hub_id, work.project_id, child.id))
            elif child.is_item:
                pending.append(_Work("item", work.path, work.hub_id, work.project_id, child.id))
        return pending

    def _fetch_batch(
        self,
        batch: list[_Work],
        token: str,
        executor: ThreadPoolExecutor | None,
    ) -> Iterator[tuple[_Work, FetchedContent | Exception]]:
        """Fetch a run of sibling items, yielding results in document order."""
        if executor is None:
            for item in batch:
                yield item, self._fetch(item, token)
            return

        futures: list[tuple[_Work, Future]] = [
            (item, executor.submit(self._fetch, item, token)) for item in batch
        ]
        collected = 0
        try:
            for item, future in futures:
                collected += 1
                yield item, future.result()
        finally:
            # Results nobody will archive still hold open streams, including
            # fetches that are running right now
            for _, future in futures[collected:]:
                future.cancel()
                future.add_done_callback(_close_unclaimed)

    def _fetch(self, item: _Work, token: str) -> FetchedContent | Exception:
        if self.stop_event.is_set():
            return BackupCancelled("Backup cancelled by consumer")
        try:
            return self.fetcher.fetch_content(item.project_id, item.node_id, token)
        except Exception as e:
            return e

    def _archive_item(self, item: _Work, result: FetchedContent | Exception) -> None:
        if isinstance(result, BackupCancelled):
            raise result
        if isinstance(result, Exception):
            logger.error("Error backing up item %s (%s): %s", item.node_id, item.path, result)
            self.stats.increment("items_failed")
            return

        entry_name = join_archive_path(item.path, sanitize_name(result.name))
        try:
            written, duplicate = self.writer.add_stream(
                entry_name, result.iter_chunks(self.config.chunk_size)
            )
        except (BackupCancelled, ArchiveFinalizationError):
            raise
        except Exception as e:
            logger.error("Error writing item %s to %s: %s", item.node_id, entry_name, e)
            self.stats.increment("items_failed")
            return
        finally:
            result.close()

        self.stats.increment("items_archived")
        self.stats.increment("bytes_archived", written)
        if duplicate:
            self.stats.increment("duplicate_entries")
        logger.debug(
            "Archived %s (%s, version %s)",
            entry_name,
            human_size(written),
            result.version.id if result.version else "?",
        )


def _find(nodes: list[ContainerNode], node_id: str | None) -> ContainerNode | None:
    return next((n for n in nodes if n.id == node_id), None)


def _close_unclaimed(future: Future) -> None:
    if future.cancelled():
        return
    result = future.result()
    if isinstance(result, FetchedContent):
        result.close()

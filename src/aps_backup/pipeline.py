"""Streaming entry points: produce a backup as an iterable of ZIP bytes."""

import logging
from collections.abc import Iterator
from queue import Empty, Full, Queue
from threading import Event, Thread
from typing import TYPE_CHECKING

from .archiver import ArchiveBuilder
from .config import Config
from .exceptions import ArchiveFinalizationError, BackupCancelled
from .models import BackupScope, BackupStats

if TYPE_CHECKING:
    from .client import DataManagementClient

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/zip"
CONTENT_DISPOSITION = "attachment; filename=backup.zip"

# Chunks held between the writer thread and a slow consumer
QUEUE_DEPTH = 16

_END = object()


class _PipeWriter:
    """Write-only, non-seekable file object that feeds a bounded queue."""

    def __init__(self, chunks: Queue, stop_event: Event, buffer_size: int = 64 * 1024):
        self._chunks = chunks
        self._stop_event = stop_event
        self._buffer = bytearray()
        self._buffer_size = buffer_size

    def write(self, data: bytes) -> int:
        if self._stop_event.is_set():
            raise BackupCancelled("Archive consumer went away")
        self._buffer += data
        if len(self._buffer) >= self._buffer_size:
            self.flush()
        return len(data)

    def flush(self) -> None:
        if self._buffer:
            self.put(bytes(self._buffer))
            self._buffer.clear()

    def put(self, item: object) -> None:
        """Block until the consumer makes room, giving up once stopped."""
        while True:
            if self._stop_event.is_set():
                raise BackupCancelled("Archive consumer went away")
            try:
                self._chunks.put(item, timeout=0.1)
                return
            except Full:
                continue


class ArchiveStream:
    """
    Iterable of ZIP bytes produced by a background writer thread.

    Iterating drives the backup; errors raised after traversal (for example
    ``ArchiveFinalizationError``) are re-raised from the iterator once the
    bytes already produced have been handed out. ``close()`` cancels: the
    walker stops before its next upstream call and open streams are closed.
    """

    def __init__(
        self,
        builder: ArchiveBuilder,
        roots: list,
        token: str,
        pipe: _PipeWriter,
        chunks: Queue,
    ):
        self.builder = builder
        self._roots = roots
        self._token = token
        self._pipe = pipe
        self._chunks = chunks
        self._thread: Thread | None = None
        self._error: BaseException | None = None

    @property
    def stats(self) -> BackupStats:
        return self.builder.stats

    @property
    def cancelled(self) -> bool:
        return self.builder.stop_event.is_set()

    def _run(self) -> None:
        try:
            self.builder.run(self._roots, self._token)
            self._pipe.flush()
        except BackupCancelled:
            logger.info("Backup cancelled after %d item(s)", self.builder.stats.items_archived)
            return
        except BaseException as e:
            logger.error("Backup failed: %s", e)
            self._error = e

        try:
            self._pipe.put(_END)
        except BackupCancelled:
            pass

    def start(self) -> None:
        if self._thread is None:
            self._thread = Thread(target=self._run, name="aps-archive-writer", daemon=True)
            self._thread.start()

    def __iter__(self) -> Iterator[bytes]:
        self.start()
        finished = False
        try:
            while True:
                try:
                    chunk = self._chunks.get(timeout=0.1)
                except Empty:
                    if self._thread.is_alive():
                        continue
                    # The writer can queue its last chunks and exit between the two checks
                    try:
                        chunk = self._chunks.get_nowait()
                    except Empty:
                        break
                if chunk is _END:
                    finished = True
                    break
                yield chunk
        except GeneratorExit:
            self.close()
            raise

        self._thread.join()
        if self._error is not None:
            raise self._error
        if self.cancelled:
            raise BackupCancelled("Backup cancelled before the archive was finalized")
        if not finished:
            raise ArchiveFinalizationError("Archive writer stopped before the archive was complete")

    def close(self, timeout: float = 5.0) -> None:
        """Stop the backup and release the writer thread."""
        if self._thread is not None and not self._thread.is_alive():
            return
        self.builder.stop_event.set()
        while True:
            try:
                self._chunks.get_nowait()
            except Empty:
                break
        if self._thread is not None:
            self._thread.join(timeout)

    def __enter__(self) -> "ArchiveStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class BackupPipeline:
    """
    Produce full or scoped backups as streaming ZIP archives.

    Pre-flight checks and scope resolution run in the calling thread, so
    ``AuthMissing``, ``ScopeNotFound`` and hub-listing failures raise from
    the ``produce_*`` call itself before a single byte exists.
    """

    def __init__(self, client: "DataManagementClient", config: Config):
        self.client = client
        self.config = config

    def produce_full_backup(self, token: str, stats: BackupStats | None = None) -> ArchiveStream:
        return self._produce(BackupScope.full(), token, stats)

    def produce_scoped_backup(
        self,
        token: str,
        hub_id: str,
        project_id: str,
        stats: BackupStats | None = None,
    ) -> ArchiveStream:
        return self._produce(BackupScope.scoped(hub_id, project_id), token, stats)

    def _produce(
        self, scope: BackupScope, token: str, stats: BackupStats | None
    ) -> ArchiveStream:
        chunks: Queue = Queue(maxsize=QUEUE_DEPTH)
        stop_event = Event()
        pipe = _PipeWriter(chunks, stop_event)
        builder = ArchiveBuilder(
            self.client,
            pipe,
            self.config,
            stats=stats,
            stop_event=stop_event,
        )
        roots = builder.resolve_scope(scope, token)
        return ArchiveStream(builder, roots, token, pipe, chunks)

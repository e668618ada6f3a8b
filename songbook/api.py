"""
Core API for the songbook.

Songbook coordinates every operation on songs:
    authorize -> parse/validate -> resolve ID -> document store
              -> search index -> cache
with per-ID serialization of writes and compensation when the index
fails after the store was changed.

Store and index calls block, so they run in worker threads; the event
loop that calls handle() is never blocked on I/O.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from .access import AccessGate, AccessState
from .cache import DocumentCache
from .config import SongbookConfig, resolve_config
from .errors import (
    Forbidden,
    IndexFailure,
    QuerySyntaxError,
    SongbookError,
    SongNotFound,
    StorageError,
    ValidationError,
    log_exception,
)
from .ids import generate_id
from .locks import KeyedLocks
from .render import (
    MIME_TEXT_HTML,
    MIME_TEXT_PLAIN,
    negotiate,
    render_activation_alert,
    render_message,
    render_results,
    render_song,
)
from .song_format import parse_song
from .types import Operation, OperationKind, Result, SongDocument, Status, is_valid_id

logger = logging.getLogger(__name__)

ERROR_LOG_FILENAME = "songbook-errors.log"


def _message_type(content_type: str) -> str:
    """Lists and messages are not song text: text/song degrades to text/plain."""
    return content_type if content_type == MIME_TEXT_HTML else MIME_TEXT_PLAIN


class Songbook:
    """
    Song collection with access control and full-text search.

    Example:
        sb = Songbook("data")
        result = await sb.handle(Operation(OperationKind.CREATE,
                                           raw_body=text, request_key=sb.admin_key))
        hits = await sb.handle(Operation(OperationKind.SEARCH, query="yesterday"))
    """

    def __init__(
        self,
        data_root: Optional[str | Path] = None,
        *,
        config: Optional[SongbookConfig] = None,
        store=None,
        index=None,
        key_store=None,
        check_consistency: bool = True,
    ) -> None:
        """
        Open a songbook, creating its data root on first use.

        Args:
            data_root: Data root directory; DATA_ROOT or ./data if omitted
            config: Pre-loaded config (skips filesystem config discovery)
            store: Injected document store (skips default backend creation)
            index: Injected search index (skips default backend creation)
            key_store: Injected key persistence (skips default backend creation)
            check_consistency: Compare store and index IDs and rebuild the
                index when they differ
        """
        # --- Config resolution ---
        if config is not None:
            self._config = config
        else:
            self._config = resolve_config(Path(data_root) if data_root is not None else None)

        # --- Persistent operations log ---
        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._config.data_root, self._config.log_level)

        # --- Storage backends (injected or factory-created) ---
        if store is not None and index is not None and key_store is not None:
            self._store = store
            self._index = index
            key_store_ = key_store
        else:
            from .backend import create_backends
            from .logging_config import remove_ops_log
            try:
                bundle = create_backends(self._config)
            except Exception:
                remove_ops_log(self._ops_log_handler)
                raise
            self._store = store or bundle.store
            self._index = index or bundle.index
            key_store_ = key_store or bundle.keys

        self._access = AccessGate(AccessState(key_store_))
        self._cache = DocumentCache()
        self._locks = KeyedLocks()

        # ID generation + reservation for creates
        self._create_lock = asyncio.Lock()
        self._reserved: set[str] = set()

        if check_consistency:
            self._check_store_consistency()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> SongbookConfig:
        return self._config

    @property
    def access(self) -> AccessGate:
        return self._access

    @property
    def admin_key(self) -> str:
        return self._access.state.admin_key

    @property
    def pending_activation(self) -> bool:
        return self._access.state.pending_activation

    @property
    def cache(self) -> DocumentCache:
        return self._cache

    @property
    def store(self):
        return self._store

    @property
    def index(self):
        return self._index

    # -------------------------------------------------------------------------
    # Consistency
    # -------------------------------------------------------------------------

    def _check_store_consistency(self) -> bool:
        """
        Rebuild the index if its IDs differ from the store's.

        Returns:
            True if a rebuild was performed
        """
        try:
            store_ids = set(self._store.list_ids())
            index_ids = set(self._index.list_ids())
        except SongbookError as e:
            logger.warning("Store consistency check failed: %s", e)
            return False
        if store_ids == index_ids:
            return False

        logger.info(
            "Index out of sync with store (%d missing, %d orphaned), rebuilding",
            len(store_ids - index_ids), len(index_ids - store_ids),
        )
        try:
            self._index.rebuild_all(self._store)
        except SongbookError as e:
            logger.error("Index rebuild at startup failed: %s", e)
            return False
        return True

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def handle(self, operation: Operation) -> Result:
        """
        Run one operation and describe its outcome.

        Never raises for operation failures: every error becomes a Result
        with the matching status.
        """
        content_type = negotiate(operation.accept)
        allowed = False
        try:
            decision = await self._access.authorize(
                operation.request_key, operation.kind.needs_admin,
                activate=operation.activate,
            )
            allowed = decision.allowed
            if not decision.allowed:
                raise Forbidden("Access forbidden")

            handler = {
                OperationKind.CREATE: self._create,
                OperationKind.READ: self._read,
                OperationKind.UPDATE: self._update,
                OperationKind.DELETE: self._delete,
                OperationKind.SEARCH: self._search,
                OperationKind.REINDEX: self._reindex,
            }[operation.kind]
            result = await handler(operation, content_type)
        except SongbookError as e:
            result = self._error_result(operation, e, content_type)
        except Exception as e:
            logger.exception("Unexpected failure in %s", operation.kind.value)
            log_exception(e, f"{operation.kind.value} {operation.id or ''}".strip(),
                          self._config.data_root / ERROR_LOG_FILENAME)
            result = Result(
                Status.INTERNAL_ERROR,
                render_message("Internal error", content_type),
                _message_type(content_type),
                operation.id,
            )

        # Only callers let through may see the key
        if allowed and result.content_type == MIME_TEXT_HTML and self.pending_activation:
            result.body = render_activation_alert(self.admin_key) + result.body
        return result

    def _error_result(self, operation: Operation, error: SongbookError,
                      content_type: str) -> Result:
        if error.status == Status.INTERNAL_ERROR:
            logger.error("%s %s failed: %s", operation.kind.value, operation.id or "", error)
            log_exception(error, f"{operation.kind.value} {operation.id or ''}".strip(),
                          self._config.data_root / ERROR_LOG_FILENAME)
            message = "Internal error"
        else:
            logger.debug("%s %s rejected: %s", operation.kind.value, operation.id or "", error)
            message = str(error)
        content_type = _message_type(content_type)
        return Result(error.status, render_message(message, content_type),
                      content_type, error.song_id or operation.id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _require_id(operation: Operation) -> str:
        if not operation.id or not is_valid_id(operation.id):
            raise ValidationError(f"Invalid song id: {operation.id!r}")
        return operation.id

    @staticmethod
    def _parse(raw_body: Optional[str], id: Optional[str] = None) -> SongDocument:
        document = parse_song(raw_body or "", id=id)
        if not document.title or not document.artist:
            raise ValidationError("You must provide a title and an artist information")
        return document

    def _id_taken(self, id: str) -> bool:
        return id in self._reserved or self._store.exists(id)

    async def _load(self, id: str) -> str:
        """Raw body from the cache, falling back to the store."""
        body = self._cache.get(id)
        if body is not None:
            return body
        generation = self._cache.generation(id)
        body = await asyncio.to_thread(self._store.read, id)
        self._cache.fill(id, body, generation)
        return body

    async def _commit_write(self, document: SongDocument, previous: Optional[str]) -> None:
        """
        Write the store, then the index, then refresh the cache.

        If indexing fails the store change is undone: a new song is
        deleted, an updated one gets its previous body back.
        """
        id = document.id
        try:
            await asyncio.to_thread(self._store.write, id, document.body)
        except SongbookError:
            self._cache.invalidate(id)
            raise
        except OSError as e:
            self._cache.invalidate(id)
            raise StorageError(f"Failed to write song {id}: {e}", song_id=id) from e

        try:
            await asyncio.to_thread(self._index.add_or_update, document)
        except Exception as e:
            await self._compensate_write(id, previous)
            if isinstance(e, IndexFailure):
                raise
            raise IndexFailure(f"Failed to index song {id}: {e}", song_id=id) from e

        self._cache.put(id, document.body)

    async def _compensate_write(self, id: str, previous: Optional[str]) -> None:
        self._cache.invalidate(id)
        try:
            if previous is None:
                await asyncio.to_thread(self._store.delete, id)
                logger.warning("Indexing failed, removed new song %s from store", id)
            else:
                await asyncio.to_thread(self._store.write, id, previous)
                logger.warning("Indexing failed, restored previous content of song %s", id)
        except Exception as e:
            logger.error("Compensation failed for song %s, store and index may disagree: %s", id, e)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def _create(self, operation: Operation, content_type: str) -> Result:
        document = self._parse(operation.raw_body)

        async with self._create_lock:
            id = await asyncio.to_thread(
                generate_id, document.title, document.artist, self._id_taken,
            )
            self._reserved.add(id)
        try:
            async with self._locks.write(id):
                if await asyncio.to_thread(self._store.exists, id):
                    raise StorageError(f"Song id {id} was taken concurrently", song_id=id)
                document.id = id
                await self._commit_write(document, previous=None)
        finally:
            self._reserved.discard(id)

        logger.info("Created song %s", id)
        return Result(Status.CREATED, id, MIME_TEXT_PLAIN, id)

    async def _read(self, operation: Operation, content_type: str) -> Result:
        id = self._require_id(operation)
        await self._locks.wait_for_writer(id)
        body = await self._load(id)
        logger.debug("Serve song %s as %s", id, content_type)
        return Result(
            Status.OK,
            render_song(body, content_type, transpose=operation.transpose),
            content_type,
            id,
        )

    async def _update(self, operation: Operation, content_type: str) -> Result:
        id = self._require_id(operation)
        document = self._parse(operation.raw_body, id=id)

        async with self._locks.write(id):
            if not await asyncio.to_thread(self._store.exists, id):
                raise SongNotFound(f"The song {id} doesn't exist and cannot be updated",
                                   song_id=id)
            previous = await self._load(id)
            await self._commit_write(document, previous)

        logger.info("Updated song %s", id)
        return Result(Status.OK, id, MIME_TEXT_PLAIN, id)

    async def _delete(self, operation: Operation, content_type: str) -> Result:
        id = self._require_id(operation)

        async with self._locks.write(id):
            if not await asyncio.to_thread(self._store.exists, id):
                raise SongNotFound(f"The song {id} doesn't exist and cannot be deleted",
                                   song_id=id)
            try:
                await asyncio.to_thread(self._store.delete, id)
            finally:
                self._cache.invalidate(id)
            try:
                await asyncio.to_thread(self._index.remove, id)
            except Exception as e:
                logger.error("Song %s deleted from store but still indexed: %s", id, e)
                if isinstance(e, IndexFailure):
                    raise
                raise IndexFailure(f"Failed to unindex song {id}: {e}", song_id=id) from e

        logger.info("Deleted song %s", id)
        return Result(Status.OK, id, MIME_TEXT_PLAIN, id)

    async def _search(self, operation: Operation, content_type: str) -> Result:
        content_type = _message_type(content_type)
        try:
            hits = await asyncio.to_thread(self._index.query, operation.query)
        except QuerySyntaxError as e:
            return Result(
                Status.BAD_REQUEST,
                render_message(f"Wrong query syntax: {e}", content_type, level="warning"),
                content_type,
            )
        return Result(Status.OK, render_results(hits, content_type), content_type)

    async def _reindex(self, operation: Operation, content_type: str) -> Result:
        content_type = _message_type(content_type)
        start = time.monotonic()
        self._cache.clear()
        count = await asyncio.to_thread(self._index.rebuild_all, self._store)
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info("Reindexed %d songs in %.0f milliseconds", count, elapsed_ms)
        if content_type == MIME_TEXT_HTML:
            body = render_message(f"Reindexed {count} songs", content_type, level="success")
        else:
            body = str(count)
        return Result(Status.OK, body, content_type)

    # -------------------------------------------------------------------------
    # Convenience wrappers
    # -------------------------------------------------------------------------

    async def create(self, body: str, *, key: Optional[str] = None) -> Result:
        return await self.handle(Operation(OperationKind.CREATE, raw_body=body, request_key=key))

    async def read(self, id: str, *, key: Optional[str] = None,
                   accept: Optional[str] = None, transpose: int = 0) -> Result:
        return await self.handle(Operation(OperationKind.READ, id=id, request_key=key,
                                           accept=accept, transpose=transpose))

    async def update(self, id: str, body: str, *, key: Optional[str] = None) -> Result:
        return await self.handle(Operation(OperationKind.UPDATE, id=id, raw_body=body,
                                           request_key=key))

    async def delete(self, id: str, *, key: Optional[str] = None) -> Result:
        return await self.handle(Operation(OperationKind.DELETE, id=id, request_key=key))

    async def search(self, query: Optional[str] = None, *, key: Optional[str] = None,
                     accept: Optional[str] = None) -> Result:
        return await self.handle(Operation(OperationKind.SEARCH, query=query,
                                           request_key=key, accept=accept))

    async def reindex(self, *, key: Optional[str] = None) -> Result:
        return await self.handle(Operation(OperationKind.REINDEX, request_key=key))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the store and index and detach the operations log. Idempotent."""
        from .logging_config import remove_ops_log
        self._store.close()
        self._index.close()
        remove_ops_log(self._ops_log_handler)
        self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

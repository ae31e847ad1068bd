"""
Synchronization engine for multi-backend sync.

Orchestrates synchronization between the local stores and every
registered remote backend:
- Pull: remote records -> schema translation -> conflict resolution -> local
- Push: reconciled local snapshot -> remote
- Single-flight guard, debounce and cooldown per backend
- Exponential backoff for transient remote failures
- Events for UI collaborators (ready, connected, disconnected, error, ...)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from ..config import SyncSettings
from ..exceptions import SyncError, TransientServerError, ValidationError
from ..id_utils import unescape_id
from ..local.store import BulkResult, LocalDocumentStore
from ..logging_utils import BackendLoggerAdapter
from ..models import SYNC_ORDER, Collection, Document, utc_now
from ..remote.object_store import RemoteStorageClient
from ..remote.retry import RetryConfig, retry_with_backoff
from ..remote.transport import WebDAVTransport
from .backends import BlobStoreBackend, ObjectStoreBackend, SyncBackend
from .conflict import Conflict, ConflictKind, ConflictResolver, SkippedRecord, SkipReason

logger = logging.getLogger(__name__)

EVENTS = frozenset(
    {"ready", "connected", "disconnected", "error", "sync_started", "sync_completed"}
)

EventHandler = Callable[..., Any]


class SyncStatus(Enum):
    """Connection and sync state of one backend."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SYNCING = "syncing"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class BackendState:
    """What UI collaborators may read about a backend."""

    status: SyncStatus = SyncStatus.DISCONNECTED
    last_sync_time: datetime | None = None
    last_error: str | None = None
    last_attempt: datetime | None = None


@dataclass
class SyncConfig:
    """Configuration for the sync orchestrator."""

    debounce_seconds: float = 1.0
    cooldown_seconds: float = 5.0
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass
class CollectionReport:
    """Outcome of syncing one collection with one backend."""

    pulled: int = 0
    saved: int = 0
    pushed: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)
    save_failures: list[BulkResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pulled": self.pulled,
            "saved": self.saved,
            "pushed": self.pushed,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "skipped": [s.to_dict() for s in self.skipped],
            "save_failures": [
                {"id": r.id, "error": str(r.error) if r.error else None}
                for r in self.save_failures
            ],
        }


@dataclass
class SyncReport:
    """Result of one sync pass."""

    backend: str
    started_at: datetime
    finished_at: datetime | None = None
    collections: dict[str, CollectionReport] = field(default_factory=dict)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def conflicts(self) -> list[Conflict]:
        return [c for report in self.collections.values() for c in report.conflicts]

    @property
    def duration_ms(self) -> int:
        if self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "backend": self.backend,
            "success": self.success,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "collections": {name: r.to_dict() for name, r in self.collections.items()},
        }


class SyncOrchestrator:
    """Owns every piece of sync state for a process.

    Handles:
    - Backend registration and connection state
    - One sync pass at a time per backend (further requests are dropped)
    - Debounced sync requests from local mutations
    - Periodic auto-sync
    - Event delivery to UI collaborators

    Example:
        >>> orchestrator = SyncOrchestrator(stores)
        >>> orchestrator.register_backend(BlobStoreBackend(transport, base_path="/tidemark"))
        >>> orchestrator.on("error", lambda name, error: print(name, error))
        >>> await orchestrator.connect("webdav")
        >>> report = await orchestrator.sync("webdav")
        >>> await orchestrator.dispose()
    """

    def __init__(
        self,
        stores: Mapping[Collection, LocalDocumentStore],
        config: SyncConfig | None = None,
        resolver: ConflictResolver | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            stores: Local store per collection
            config: Timing and retry configuration
            resolver: Conflict resolver (a default one if not provided)
        """
        missing = [c.value for c in SYNC_ORDER if c not in stores]
        if missing:
            raise ValueError(f"missing local stores for: {', '.join(missing)}")

        self.stores = dict(stores)
        self.config = config or SyncConfig()
        self.resolver = resolver or ConflictResolver()

        self._backends: dict[str, SyncBackend] = {}
        self._states: dict[str, BackendState] = {}
        self._handlers: dict[str, list[EventHandler]] = {}
        self._in_flight: set[str] = set()
        self._last_attempt: dict[str, float] = {}
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._debounce_targets: set[str] = set()
        self._pending_tasks: set[asyncio.Task[Any]] = set()
        self._auto_sync_tasks: dict[str, asyncio.Task[None]] = {}
        self.auto_sync_intervals: dict[str, float] = {}

    # =========================================================================
    # Backends and state
    # =========================================================================

    def register_backend(
        self,
        backend: SyncBackend,
        auto_sync_interval: float | None = None,
    ) -> None:
        """Add a backend.

        Args:
            backend: Backend to register; its name must be unique
            auto_sync_interval: Seconds between periodic passes once
                ``start_configured_auto_sync`` runs (None for no periodic sync)
        """
        if backend.name in self._backends:
            raise ValueError(f"backend already registered: {backend.name}")
        self._backends[backend.name] = backend
        self._states[backend.name] = BackendState()
        if auto_sync_interval is not None and auto_sync_interval > 0:
            self.auto_sync_intervals[backend.name] = auto_sync_interval
        logger.info(f"Registered sync backend {backend.name}")
        self._emit("ready", backend.name)

    @property
    def backends(self) -> list[str]:
        return list(self._backends)

    def state(self, name: str) -> BackendState:
        self._backend(name)
        return self._states[name]

    def states(self) -> dict[str, BackendState]:
        return dict(self._states)

    def _backend(self, name: str) -> SyncBackend:
        try:
            return self._backends[name]
        except KeyError:
            raise SyncError(f"Unknown sync backend: {name}", backend=name) from None

    async def connect(self, name: str) -> bool:
        """Connect a backend.

        Returns:
            True if the backend is reachable
        """
        backend = self._backend(name)
        state = self._states[name]
        state.status = SyncStatus.CONNECTING
        try:
            await backend.connect()
        except Exception as e:
            state.status = SyncStatus.ERROR
            state.last_error = str(e)
            logger.error(f"Could not connect backend {name}: {e}")
            self._emit("error", name, e)
            return False

        state.status = SyncStatus.CONNECTED
        state.last_error = None
        logger.info(f"Backend {name} connected")
        self._emit("connected", name)
        return True

    async def disconnect(self, name: str) -> None:
        backend = self._backend(name)
        await self.stop_auto_sync(name)
        await backend.close()
        self._states[name].status = SyncStatus.DISCONNECTED
        logger.info(f"Backend {name} disconnected")
        self._emit("disconnected", name)

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: str, handler: EventHandler) -> None:
        if event not in EVENTS:
            raise ValueError(f"unknown event: {event}")
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(*args)
            except Exception:
                logger.exception(f"Handler for {event} event failed")

    # =========================================================================
    # Sync passes
    # =========================================================================

    async def sync(self, name: str, force: bool = False) -> SyncReport | None:
        """Run one sync pass for a backend.

        Args:
            name: Registered backend name
            force: Ignore the cooldown window

        Returns:
            SyncReport (check ``success``), or None when the request was
            dropped because a pass is in flight or the cooldown is active
        """
        backend = self._backend(name)
        log = BackendLoggerAdapter(logger, {"backend": name})

        if name in self._in_flight:
            log.debug("Sync already in progress, request dropped")
            return None

        loop = asyncio.get_running_loop()
        last = self._last_attempt.get(name)
        if not force and last is not None and loop.time() - last < self.config.cooldown_seconds:
            log.debug("Sync attempted during cooldown, request dropped")
            return None

        self._in_flight.add(name)
        self._last_attempt[name] = loop.time()
        state = self._states[name]
        state.last_attempt = utc_now()
        state.status = SyncStatus.SYNCING
        report = SyncReport(backend=name, started_at=utc_now())
        self._emit("sync_started", name)
        log.info("Sync pass started")

        try:
            for collection in SYNC_ORDER:
                report.collections[collection.value] = await self._sync_collection(
                    backend, collection, log
                )
        except Exception as e:
            report.error = str(e)
            report.finished_at = utc_now()
            state.status = SyncStatus.ERROR
            state.last_error = str(e)
            log.error(f"Sync pass failed: {e}")
            self._emit("error", name, e)
            return report
        finally:
            self._in_flight.discard(name)

        report.finished_at = utc_now()
        state.status = SyncStatus.CONNECTED
        state.last_sync_time = report.finished_at
        state.last_error = None
        log.info(
            "Sync pass finished",
            extra={"duration_ms": report.duration_ms, "conflicts": len(report.conflicts)},
        )
        self._emit("sync_completed", name, report)
        return report

    async def _sync_collection(
        self,
        backend: SyncBackend,
        collection: Collection,
        log: BackendLoggerAdapter,
    ) -> CollectionReport:
        """Pull, reconcile, apply locally, push back: strictly in that order."""
        store = self.stores[collection]
        translator = backend.translator(collection)
        report = CollectionReport()

        raw = await self._with_retry(backend, backend.pull, collection)
        report.pulled = len(raw)

        remote_docs: list[Document] = []
        malformed = 0
        for record in raw:
            try:
                remote_docs.append(translator.to_local(record))
            except ValidationError as e:
                malformed += 1
                log.debug(f"Skipping remote record: {e}")
        if malformed:
            log.warning(
                f"Dropped {malformed} remote record(s) that failed validation",
                extra={"collection": collection.value},
            )

        tombstones = await store.get_tombstones()
        if tombstones:
            kept = []
            for doc in remote_docs:
                deleted_at = tombstones.get(doc.id)
                if deleted_at is not None and (
                    doc.updated_at is None or doc.updated_at <= deleted_at
                ):
                    report.skipped.append(
                        SkippedRecord(unescape_id(doc.id), SkipReason.DELETED_LOCALLY)
                    )
                    continue
                kept.append(doc)
            remote_docs = kept

        local_docs = await store.get_all()
        result = self.resolver.resolve(local_docs, remote_docs)
        report.conflicts.extend(c.unescaped() for c in result.conflicts)
        report.skipped.extend(s.unescaped() for s in result.skipped)

        if result.to_save:
            outcomes = await store.bulk_put(result.to_save, bypass_revision_check=True)
            report.saved = sum(1 for o in outcomes if o.ok)
            report.save_failures = [
                replace(o, id=unescape_id(o.id)) for o in outcomes if not o.ok
            ]

        # Identical records are already there; ambiguous ones wait for the user.
        hold_back = result.ids_with_reason(SkipReason.IDENTICAL) | result.conflict_ids(
            ConflictKind.AMBIGUOUS
        )
        outgoing = [
            translator.to_remote(doc)
            for doc in await store.get_all()
            if doc.id not in hold_back
        ]
        if outgoing:
            await self._with_retry(backend, backend.push, collection, outgoing)
            report.pushed = len(outgoing)

        if result.conflicts:
            log.warning(
                f"{len(result.conflicts)} unresolved conflict(s)",
                extra={"collection": collection.value},
            )
        return report

    async def _with_retry(self, backend: SyncBackend, fn: Callable[..., Any], *args: Any) -> Any:
        if backend.retries_internally:
            return await fn(*args)
        return await retry_with_backoff(
            fn,
            *args,
            is_retryable=lambda e: isinstance(e, TransientServerError),
            config=self.config.retry,
            context_msg=backend.name,
        )

    async def sync_all(self, force: bool = False) -> dict[str, SyncReport | None]:
        """Sync every registered backend concurrently."""
        names = list(self._backends)
        results = await asyncio.gather(
            *(self.sync(name, force=force) for name in names),
            return_exceptions=True,
        )
        reports: dict[str, SyncReport | None] = {}
        for name, result in zip(names, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(f"Sync of {name} raised: {result}")
                reports[name] = None
            else:
                reports[name] = result
        return reports

    # =========================================================================
    # Triggers
    # =========================================================================

    def request_sync(self, name: str | None = None) -> None:
        """Schedule a sync after the debounce window.

        Repeated requests inside the window collapse into one pass.

        Args:
            name: Backend to sync, or None for every backend
        """
        if name is not None:
            self._backend(name)
        self._debounce_targets.update([name] if name is not None else self._backends)

        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self.config.debounce_seconds, self._fire_debounced)

    def _fire_debounced(self) -> None:
        self._debounce_handle = None
        targets, self._debounce_targets = self._debounce_targets, set()
        for name in targets:
            if name not in self._backends:
                continue
            task = asyncio.create_task(self.sync(name))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

    async def flush_pending(self) -> None:
        """Wait for sync passes started by ``request_sync``."""
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)

    async def start_auto_sync(self, name: str, interval_seconds: float) -> None:
        """Start periodic background sync for a backend."""
        self._backend(name)
        if name in self._auto_sync_tasks:
            return

        async def sync_loop() -> None:
            while True:
                try:
                    await asyncio.sleep(interval_seconds)
                    await self.sync(name)
                except asyncio.CancelledError:
                    break
                except Exception:
                    logger.exception(f"Auto-sync of {name} failed")

        self._auto_sync_tasks[name] = asyncio.create_task(sync_loop())
        logger.info(f"Auto-sync of {name} every {interval_seconds}s")

    async def start_configured_auto_sync(self) -> None:
        """Start periodic sync for every backend registered with an interval."""
        for name, interval in self.auto_sync_intervals.items():
            await self.start_auto_sync(name, interval)

    async def stop_auto_sync(self, name: str) -> None:
        """Stop periodic background sync for a backend."""
        task = self._auto_sync_tasks.pop(name, None)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def dispose(self) -> None:
        """Cancel timers and background tasks, drop handlers, close backends.

        A pass that is already running is left to finish.
        """
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        self._debounce_targets.clear()

        for name in list(self._auto_sync_tasks):
            await self.stop_auto_sync(name)

        self._handlers.clear()
        for backend in self._backends.values():
            try:
                await backend.close()
            except Exception:
                logger.exception(f"Closing backend {backend.name} failed")


def create_orchestrator(settings: SyncSettings | None = None) -> SyncOrchestrator:
    """Create an orchestrator with the backends enabled in the settings.

    Args:
        settings: Sync settings (loaded from ~/.tidemark/settings.yaml if not provided)

    Returns:
        SyncOrchestrator with local stores under ``settings.data_dir``. WebDAV
        periodic sync is registered from ``sync_interval_minutes`` and starts
        with ``start_configured_auto_sync``
    """
    settings = settings or SyncSettings.load()
    data_dir = Path(settings.data_dir)
    stores = {collection: LocalDocumentStore(collection, data_dir) for collection in SYNC_ORDER}

    orchestrator = SyncOrchestrator(
        stores,
        SyncConfig(
            debounce_seconds=settings.debounce_seconds,
            cooldown_seconds=settings.cooldown_seconds,
            retry=settings.retry,
        ),
    )

    if settings.webdav.enabled and settings.webdav.url:
        transport = WebDAVTransport(
            settings.webdav.url,
            settings.webdav.username or None,
            settings.webdav.password or None,
        )
        orchestrator.register_backend(
            BlobStoreBackend(
                transport,
                name="webdav",
                base_path=settings.webdav.path,
                retry_config=settings.retry,
            ),
            auto_sync_interval=settings.webdav.sync_interval_minutes * 60 or None,
        )

    if settings.remotestorage.enabled and settings.remotestorage.base_url:
        client = RemoteStorageClient(
            settings.remotestorage.base_url,
            settings.remotestorage.token or None,
        )
        orchestrator.register_backend(ObjectStoreBackend(client, name="remotestorage"))

    return orchestrator

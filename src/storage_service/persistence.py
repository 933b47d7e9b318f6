from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

from social_graph.decay import utc_now
from social_graph.errors import PersistenceFailure
from social_graph.models import MutationSummary
from social_graph.wire_models import GuildGraphValue

from .config import StorageConfig
from .metrics import (
    DROPPED_INTERACTIONS,
    FLUSH_LATENCY_SECONDS,
    PENDING_INTERACTIONS,
    PERSISTENCE_FAILURES,
    STORED_GUILD_GRAPHS,
    STORED_INTERACTIONS,
)

if TYPE_CHECKING:
    from graph_state.store import InMemoryGraphStore


class GuildRepository(Protocol):
    def save_guild(self, value: GuildGraphValue) -> None: ...

    def load_all(self) -> list[GuildGraphValue]: ...

    def delete_guild(self, guild_id: str) -> bool: ...

    def append_interactions(self, rows: list[dict[str, Any]]) -> int: ...

    def close(self) -> None: ...


def build_repository(cfg: StorageConfig) -> GuildRepository | None:
    if cfg.backend == "file":
        from .files import FileRepository

        return FileRepository(cfg.data_dir, compress=cfg.compress_payloads)
    if cfg.backend == "postgres":
        from .db import StorageRepository

        repository = StorageRepository(cfg)
        repository.ensure_schema()
        return repository
    return None


class PersistenceManager:
    """Keeps the in-memory graphs and the storage backend in step.

    Repository calls are blocking and run in worker threads. Every failure is
    logged and counted; the engine keeps running in memory only.
    """

    def __init__(
        self,
        repository: GuildRepository,
        interaction_log: bool = True,
        max_pending: int = 10000,
    ) -> None:
        self._repository = repository
        self._interaction_log = interaction_log
        self._max_pending = max(1, max_pending)
        self._logger = logging.getLogger("graph-persistence")
        self._saved: dict[str, tuple[int, int]] = {}
        self._pending: list[dict[str, Any]] = []
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    async def restore(self, store: InMemoryGraphStore) -> int:
        try:
            values = await asyncio.to_thread(self._repository.load_all)
        except PersistenceFailure:
            PERSISTENCE_FAILURES.labels(operation="load").inc()
            self._logger.exception("restore failed, starting with empty graphs")
            return 0

        restored = 0
        for value in values:
            snapshot = value.to_domain()
            if await store.restore(snapshot):
                restored += 1
        self._saved = await store.change_markers()
        self._logger.info("restored guild graphs count=%d", restored)
        return restored

    async def record_interaction(self, summary: MutationSummary) -> None:
        if not self._interaction_log:
            return
        self._pending.append(summary.to_change_event())
        self._trim_pending()
        PENDING_INTERACTIONS.set(len(self._pending))

    def _trim_pending(self) -> None:
        overflow = len(self._pending) - self._max_pending
        if overflow <= 0:
            return
        # Oldest rows go first.
        del self._pending[:overflow]
        DROPPED_INTERACTIONS.inc(overflow)
        self._logger.warning("interaction buffer full, dropped rows=%d limit=%d", overflow, self._max_pending)

    async def flush(self, store: InMemoryGraphStore) -> int:
        async with self._lock:
            started = time.perf_counter()
            markers = await store.change_markers()
            saved = 0
            for guild_id, marker in markers.items():
                if self._saved.get(guild_id) == marker:
                    continue
                snapshot = await store.snapshot(guild_id)
                if snapshot.version == 0 and snapshot.is_empty:
                    # Removed since the markers were read.
                    continue
                value = GuildGraphValue.from_domain(snapshot, saved_at=utc_now())
                try:
                    await asyncio.to_thread(self._repository.save_guild, value)
                except PersistenceFailure:
                    PERSISTENCE_FAILURES.labels(operation="save").inc()
                    self._logger.exception("failed to save guild graph guild=%s", guild_id)
                    continue
                self._saved[guild_id] = marker
                STORED_GUILD_GRAPHS.inc()
                saved += 1

            await self._flush_interactions()
            FLUSH_LATENCY_SECONDS.observe(time.perf_counter() - started)
            if saved:
                self._logger.info("flushed guild graphs count=%d", saved)
            return saved

    async def _flush_interactions(self) -> None:
        if not self._pending:
            return
        rows, self._pending = self._pending, []
        try:
            written = await asyncio.to_thread(self._repository.append_interactions, rows)
        except PersistenceFailure:
            PERSISTENCE_FAILURES.labels(operation="interactions").inc()
            self._logger.exception("failed to write interaction log rows=%d", len(rows))
            # Keep them for the next flush.
            self._pending = rows + self._pending
            self._trim_pending()
        else:
            STORED_INTERACTIONS.inc(written)
        PENDING_INTERACTIONS.set(len(self._pending))

    async def forget(self, guild_id: str) -> bool:
        async with self._lock:
            self._saved.pop(guild_id, None)
            self._pending = [row for row in self._pending if row["guild_id"] != guild_id]
            PENDING_INTERACTIONS.set(len(self._pending))
            try:
                return await asyncio.to_thread(self._repository.delete_guild, guild_id)
            except PersistenceFailure:
                PERSISTENCE_FAILURES.labels(operation="delete").inc()
                self._logger.exception("failed to delete stored guild graph guild=%s", guild_id)
                return False

    async def _flush_loop(self, store: InMemoryGraphStore, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.flush(store)
            except Exception:
                self._logger.exception("periodic flush failed")

    async def start(self, store: InMemoryGraphStore, interval: float) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._flush_loop(store, interval))

    async def stop(self, store: InMemoryGraphStore) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush(store)
        self._repository.close()

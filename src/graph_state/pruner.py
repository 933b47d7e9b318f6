from __future__ import annotations

import asyncio
import logging

from social_graph.models import PruneReport

from .store import InMemoryGraphStore


class PruneScheduler:
    """Runs ``store.prune`` on a fixed interval."""

    def __init__(
        self,
        store: InMemoryGraphStore,
        interval_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._interval = interval_seconds if interval_seconds is not None else store.config.prune_interval_seconds
        self._logger = logging.getLogger("graph-pruner")
        self._running = False
        self._task: asyncio.Task | None = None
        self.last_report: PruneReport | None = None

    async def run_once(self) -> PruneReport:
        report = await self._store.prune()
        self.last_report = report
        if report.edges_removed or report.nodes_removed or report.guilds_discarded:
            self._logger.info(
                "prune sweep guilds=%d edges_removed=%d nodes_removed=%d channels_forgotten=%d "
                "guilds_discarded=%d duration_ms=%d",
                report.guilds_scanned,
                report.edges_removed,
                report.nodes_removed,
                report.channels_forgotten,
                report.guilds_discarded,
                report.duration_ms,
            )
        return report

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break
            try:
                await self.run_once()
            except Exception:
                self._logger.exception("prune sweep failed")

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        self._logger.info("prune scheduler started interval_seconds=%.1f", self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

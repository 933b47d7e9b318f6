from __future__ import annotations

import asyncio
import logging
import threading
import time

from graph_state.store import InMemoryGraphStore
from social_graph.decay import utc_now
from social_graph.errors import RenderCancelled
from social_graph.models import LabeledEdge, Layout, RenderResult, Snapshot

from .classifier import RelationshipClassifier
from .layout import LayoutEngine
from .metrics import LAYOUT_NOT_CONVERGED, RENDER_LATENCY_SECONDS, RENDERS_CANCELLED, RENDERS_COMPLETED


class RenderService:
    """Runs classification and layout off the event loop as a cancellable unit.

    A render reads only a detached snapshot. Its result is written back to the
    store (positions, labels, cached layout) only if the render was not
    cancelled, and the store itself refuses to resurrect a removed guild.
    """

    def __init__(
        self,
        store: InMemoryGraphStore,
        classifier: RelationshipClassifier | None = None,
        engine: LayoutEngine | None = None,
    ) -> None:
        self._store = store
        self.classifier = classifier or RelationshipClassifier()
        self.engine = engine or LayoutEngine()
        self._logger = logging.getLogger("graph-render")
        self._inflight: dict[str, set[threading.Event]] = {}
        self._inflight_lock = threading.Lock()

    def label_edges(self, snapshot: Snapshot) -> tuple[LabeledEdge, ...]:
        at = snapshot.taken_at or utc_now()
        labeled = []
        for edge in snapshot.edges:
            stats = edge.stats_at(at, snapshot.decay_half_life)
            labeled.append(
                LabeledEdge(
                    user_a=edge.user_a,
                    user_b=edge.user_b,
                    weight=stats.weight,
                    label=self.classifier.classify(stats),
                )
            )
        return tuple(labeled)

    def compute(
        self,
        snapshot: Snapshot,
        previous: Layout | None = None,
        stale: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> RenderResult:
        reuse = (
            previous is not None
            and not stale
            and previous.snapshot_version == snapshot.version
            and set(previous.positions) == set(snapshot.node_ids())
        )
        if reuse:
            layout = previous
        else:
            layout = self.engine.layout(snapshot, previous=previous, cancel_event=cancel_event)
            if not layout.converged:
                LAYOUT_NOT_CONVERGED.inc()

        if cancel_event is not None and cancel_event.is_set():
            raise RenderCancelled(f"render of guild {snapshot.guild_id} cancelled")

        return RenderResult(
            guild_id=snapshot.guild_id,
            layout=layout,
            edges=self.label_edges(snapshot),
            rendered_at=snapshot.taken_at or utc_now(),
            reused_layout=reuse,
        )

    async def render(self, guild_id: str) -> RenderResult:
        # Registered before the snapshot so a reset racing the reads still cancels this render.
        cancel_event = threading.Event()
        with self._inflight_lock:
            self._inflight.setdefault(guild_id, set()).add(cancel_event)

        started = time.perf_counter()
        try:
            snapshot = await self._store.snapshot(guild_id)
            previous, stale = await self._store.previous_layout(guild_id)
            if cancel_event.is_set():
                raise RenderCancelled(f"render of guild {guild_id} cancelled")
            result = await asyncio.to_thread(self.compute, snapshot, previous, stale, cancel_event)
            if cancel_event.is_set():
                raise RenderCancelled(f"render of guild {guild_id} cancelled")
        except RenderCancelled:
            RENDERS_CANCELLED.inc()
            self._logger.info("render cancelled guild=%s", guild_id)
            raise
        finally:
            with self._inflight_lock:
                pending = self._inflight.get(guild_id)
                if pending is not None:
                    pending.discard(cancel_event)
                    if not pending:
                        del self._inflight[guild_id]

        labels = {(edge.user_a, edge.user_b): str(edge.label) for edge in result.edges}
        await self._store.remember_render(snapshot, result.layout, labels)

        elapsed = time.perf_counter() - started
        RENDER_LATENCY_SECONDS.observe(elapsed)
        RENDERS_COMPLETED.labels(reused_layout=str(result.reused_layout).lower()).inc()
        self._logger.info(
            "rendered guild=%s nodes=%d edges=%d iterations=%d reused=%s latency_ms=%d",
            guild_id,
            len(result.layout.positions),
            len(result.edges),
            result.layout.iterations,
            result.reused_layout,
            int(elapsed * 1000),
        )
        return result

    def cancel(self, guild_id: str) -> int:
        with self._inflight_lock:
            pending = list(self._inflight.get(guild_id, ()))
        for event in pending:
            event.set()
        return len(pending)

    def in_flight(self, guild_id: str) -> int:
        with self._inflight_lock:
            return len(self._inflight.get(guild_id, ()))

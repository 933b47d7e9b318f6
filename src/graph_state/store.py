from __future__ import annotations

import asyncio
import logging
import resource
import time
import tracemalloc
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

from social_graph.decay import elapsed_seconds, utc_now
from social_graph.errors import InvalidEvent
from social_graph.models import ChatEvent, GraphLifecycle, Layout, MutationSummary, PruneReport, Snapshot

from .config import GraphConfig, load_graph_config
from .metrics import EDGES_PRUNED, EVENTS_APPLIED, EVENTS_REJECTED, GUILD_GRAPHS, NODES_PRUNED, PRUNE_DURATION_SECONDS
from .models import GuildGraph, GuildSettings, serialize_edge, serialize_node
from .recorder import InteractionRecorder


class InMemoryGraphStore:
    """Per-guild sharded interaction graphs.

    Each guild graph carries its own ``asyncio.Lock`` so mutations of one
    guild are serialized while other guilds proceed independently. The
    registry lock only guards the guild map and is never held while waiting
    on a guild lock.
    """

    APPLY_ATTEMPTS = 3

    def __init__(self, config: GraphConfig | None = None) -> None:
        self.config = config or load_graph_config()
        self._recorder = InteractionRecorder(self.config)
        self._graphs: dict[str, GuildGraph] = {}
        self._registry_lock = asyncio.Lock()
        self._logger = logging.getLogger("graph-state-store")

        tracemalloc.start()

    def _default_settings(self) -> GuildSettings:
        return GuildSettings(
            decay_half_life=self.config.decay_half_life_seconds,
            weight_cap=self.config.weight_cap,
        )

    async def _get(self, guild_id: str) -> GuildGraph | None:
        async with self._registry_lock:
            return self._graphs.get(guild_id)

    async def get_or_create(self, guild_id: str) -> GuildGraph:
        async with self._registry_lock:
            graph = self._graphs.get(guild_id)
            if graph is None:
                graph = GuildGraph(guild_id, self._default_settings())
                self._graphs[guild_id] = graph
                GUILD_GRAPHS.set(len(self._graphs))
            return graph

    @asynccontextmanager
    async def _locked(self, guild_id: str) -> AsyncIterator[GuildGraph]:
        """Yield the live graph for ``guild_id`` with its lock held, creating it if needed."""
        for _ in range(self.APPLY_ATTEMPTS):
            graph = await self.get_or_create(guild_id)
            async with graph.lock:
                # Dropped from the registry between lookup and lock; the next lookup yields a fresh graph.
                if graph.detached:
                    continue
                yield graph
                return
        raise RuntimeError(f"guild {guild_id} kept being removed while waiting for its graph")

    async def apply(self, guild_id: str, event: ChatEvent) -> MutationSummary:
        if event.guild_id != guild_id:
            EVENTS_REJECTED.labels(reason=InvalidEvent.GUILD_MISMATCH).inc()
            raise InvalidEvent(InvalidEvent.GUILD_MISMATCH, f"event={event.guild_id} target={guild_id}")

        async with self._locked(guild_id) as graph:
            try:
                summary = self._recorder.record(graph, event)
            except InvalidEvent as exc:
                EVENTS_REJECTED.labels(reason=exc.reason).inc()
                self._logger.debug("rejected event guild=%s reason=%s detail=%s", guild_id, exc.reason, exc.detail)
                raise
        EVENTS_APPLIED.labels(source=summary.source.value).inc()
        return summary

    async def snapshot(self, guild_id: str) -> Snapshot:
        graph = await self._get(guild_id)
        now = utc_now()
        if graph is not None:
            async with graph.lock:
                if graph.state is not GraphLifecycle.REMOVED:
                    return graph.to_snapshot(taken_at=now)
        settings = self._default_settings()
        return Snapshot(
            guild_id=guild_id,
            version=0,
            decay_half_life=settings.decay_half_life,
            weight_cap=settings.weight_cap,
            taken_at=now,
        )

    def _prune_graph(self, graph: GuildGraph, now: datetime) -> tuple[int, int, int]:
        horizon = self.config.retention_seconds
        epsilon = self.config.prune_epsilon
        half_life = graph.settings.decay_half_life

        stale_edges = [
            key
            for key, edge in graph.edges.items()
            if edge.weight_at(now, half_life) < epsilon and elapsed_seconds(edge.last_update, now) > horizon
        ]
        for key in stale_edges:
            graph.drop_edge(key)

        stale_nodes = [
            user_id
            for user_id, node in graph.nodes.items()
            if graph.degree(user_id) == 0 and elapsed_seconds(node.last_seen, now) > horizon
        ]
        for user_id in stale_nodes:
            graph.drop_node(user_id)

        forgotten = 0
        window = self.config.ambient_window_seconds
        for channel_id, history in list(graph.channel_history.items()):
            while history and elapsed_seconds(history[0][1], now) > window:
                history.popleft()
            if not history:
                del graph.channel_history[channel_id]
                forgotten += 1

        if stale_edges or stale_nodes:
            graph.mark_changed()
        return len(stale_edges), len(stale_nodes), forgotten

    async def _discard_if_idle(self, graph: GuildGraph) -> bool:
        """Drop a shard that never became active and holds nothing worth keeping.

        The caller holds ``graph.lock``. Taking the registry lock here is safe
        because the registry lock is never held while waiting on a guild lock.
        """
        if graph.state is not GraphLifecycle.UNINITIALIZED:
            return False
        if graph.nodes or graph.channel_history or graph.settings != self._default_settings():
            return False
        async with self._registry_lock:
            if self._graphs.get(graph.guild_id) is graph:
                del self._graphs[graph.guild_id]
                GUILD_GRAPHS.set(len(self._graphs))
        graph.detached = True
        return True

    async def prune(self, now: datetime | None = None) -> PruneReport:
        started = time.perf_counter()
        now = now or utc_now()
        report = PruneReport(pruned_at=now)

        async with self._registry_lock:
            graphs = list(self._graphs.values())

        for graph in graphs:
            async with graph.lock:
                if graph.detached:
                    continue
                edges_removed, nodes_removed, forgotten = self._prune_graph(graph, now)
                if await self._discard_if_idle(graph):
                    report.guilds_discarded += 1
            report.guilds_scanned += 1
            report.edges_removed += edges_removed
            report.nodes_removed += nodes_removed
            report.channels_forgotten += forgotten
            if edges_removed or nodes_removed:
                report.per_guild[graph.guild_id] = (nodes_removed, edges_removed)

        EDGES_PRUNED.inc(report.edges_removed)
        NODES_PRUNED.inc(report.nodes_removed)
        elapsed = time.perf_counter() - started
        PRUNE_DURATION_SECONDS.observe(elapsed)
        report.duration_ms = int(elapsed * 1000)
        return report

    async def remove(self, guild_id: str) -> bool:
        async with self._registry_lock:
            graph = self._graphs.pop(guild_id, None)
            GUILD_GRAPHS.set(len(self._graphs))
        if graph is None:
            return False

        async with graph.lock:
            graph.detached = True
            # A graph that never became active is simply discarded.
            if graph.state is GraphLifecycle.ACTIVE:
                graph.transition(GraphLifecycle.REMOVED)
            graph.nodes.clear()
            graph.edges.clear()
            graph.neighbors.clear()
            graph.channel_history.clear()
            graph.layout = None
        self._logger.info("removed guild graph guild=%s", guild_id)
        return True

    async def remove_channel(self, guild_id: str, channel_id: str) -> bool:
        graph = await self._get(guild_id)
        if graph is None:
            return False
        async with graph.lock:
            return graph.channel_history.pop(channel_id, None) is not None

    async def set_decay_half_life(self, guild_id: str, half_life: float) -> GuildSettings:
        if half_life <= 0:
            raise ValueError("decay half-life must be positive")
        async with self._locked(guild_id) as graph:
            graph.settings.decay_half_life = float(half_life)
            graph.mark_changed()
            return GuildSettings(graph.settings.decay_half_life, graph.settings.weight_cap)

    async def set_weight_cap(self, guild_id: str, weight_cap: float) -> GuildSettings:
        if weight_cap <= 0:
            raise ValueError("weight cap must be positive")
        async with self._locked(guild_id) as graph:
            graph.settings.weight_cap = float(weight_cap)
            for edge in graph.edges.values():
                if edge.weight > weight_cap:
                    edge.weight = float(weight_cap)
                    edge.label = None
            graph.mark_changed()
            return GuildSettings(graph.settings.decay_half_life, graph.settings.weight_cap)

    async def get_settings(self, guild_id: str) -> GuildSettings:
        graph = await self._get(guild_id)
        if graph is None:
            return self._default_settings()
        async with graph.lock:
            return GuildSettings(graph.settings.decay_half_life, graph.settings.weight_cap)

    async def previous_layout(self, guild_id: str) -> tuple[Layout | None, bool]:
        graph = await self._get(guild_id)
        if graph is None:
            return None, True
        async with graph.lock:
            return graph.layout, graph.layout_stale

    async def remember_render(
        self,
        snapshot: Snapshot,
        layout: Layout,
        labels: dict[tuple[str, str], str],
    ) -> bool:
        """Store a finished layout as the seed for the next pass.

        Never resurrects a removed guild and never writes into a graph other
        than the one the snapshot was taken from, such as a guild that was
        reset and recreated while the render ran. Labels are only cached when
        the graph has not changed since the snapshot was taken.
        """
        graph = await self._get(snapshot.guild_id)
        if graph is None:
            return False
        async with graph.lock:
            if graph.detached or graph.generation != snapshot.generation:
                return False
            for user_id, position in layout.world_positions().items():
                node = graph.nodes.get(user_id)
                if node is not None:
                    node.position = position
            if graph.version == snapshot.version:
                for key, label in labels.items():
                    edge = graph.edges.get(key)
                    if edge is not None:
                        edge.label = label
                graph.layout_stale = False
            graph.layout = layout
            graph.render_count += 1
            return True

    async def restore(self, snapshot: Snapshot) -> bool:
        restored = GuildGraph.from_snapshot(snapshot)
        async with self._registry_lock:
            current = self._graphs.get(snapshot.guild_id)
            if current is not None and current.state is GraphLifecycle.ACTIVE:
                self._logger.warning("skipping restore of live guild=%s", snapshot.guild_id)
                return False
            if current is not None:
                current.detached = True
            self._graphs[snapshot.guild_id] = restored
            GUILD_GRAPHS.set(len(self._graphs))
        return True

    async def change_markers(self) -> dict[str, tuple[int, int]]:
        async with self._registry_lock:
            graphs = list(self._graphs.values())
        markers: dict[str, tuple[int, int]] = {}
        for graph in graphs:
            async with graph.lock:
                if graph.state is GraphLifecycle.ACTIVE:
                    markers[graph.guild_id] = (graph.version, graph.render_count)
        return markers

    async def guild_sizes(self) -> list[dict[str, Any]]:
        async with self._registry_lock:
            graphs = list(self._graphs.values())
        sizes = []
        for graph in graphs:
            async with graph.lock:
                sizes.append(
                    {
                        "guild_id": graph.guild_id,
                        "state": graph.state.value,
                        "node_count": len(graph.nodes),
                        "edge_count": len(graph.edges),
                    }
                )
        sizes.sort(key=lambda item: (-item["edge_count"], item["guild_id"]))
        return sizes

    async def get_guild_graph(self, guild_id: str, at: datetime | None = None) -> dict[str, Any] | None:
        graph = await self._get(guild_id)
        if graph is None:
            return None
        at = at or utc_now()
        async with graph.lock:
            half_life = graph.settings.decay_half_life
            return {
                "guild_id": guild_id,
                "state": graph.state.value,
                "version": graph.version,
                "decay_half_life": half_life,
                "weight_cap": graph.settings.weight_cap,
                "node_count": len(graph.nodes),
                "edge_count": len(graph.edges),
                "nodes": [serialize_node(node, graph.degree(node.user_id)) for node in graph.nodes.values()],
                "edges": [serialize_edge(edge, at, half_life) for edge in graph.edges.values()],
            }

    async def get_metrics(self) -> dict[str, Any]:
        async with self._registry_lock:
            graphs = list(self._graphs.values())
        node_count = sum(len(graph.nodes) for graph in graphs)
        edge_count = sum(len(graph.edges) for graph in graphs)
        current_bytes, peak_bytes = tracemalloc.get_traced_memory()
        return {
            "guild_count": len(graphs),
            "node_count": node_count,
            "edge_count": edge_count,
            "memory_current_bytes": current_bytes,
            "memory_peak_bytes": peak_bytes,
            "memory_rss_kb": resource.getrusage(resource.RUSAGE_SELF).ru_maxrss,
        }

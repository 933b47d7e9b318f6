from __future__ import annotations

import asyncio
import itertools
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from social_graph.models import Edge, EdgeRecord, GraphLifecycle, Layout, Node, NodeRecord, Snapshot

_TRANSITIONS = {
    GraphLifecycle.UNINITIALIZED: {GraphLifecycle.ACTIVE},
    GraphLifecycle.ACTIVE: {GraphLifecycle.ACTIVE, GraphLifecycle.REMOVED},
    GraphLifecycle.REMOVED: set(),
}

_GENERATIONS = itertools.count(1)


@dataclass(slots=True)
class GuildSettings:
    decay_half_life: float
    weight_cap: float


def edge_key(left: str, right: str) -> tuple[str, str]:
    return (left, right) if left <= right else (right, left)


class GuildGraph:
    """A single guild's graph shard. Every read or write must hold ``lock``."""

    def __init__(self, guild_id: str, settings: GuildSettings) -> None:
        self.guild_id = guild_id
        self.settings = settings
        self.nodes: dict[str, Node] = {}
        self.edges: dict[tuple[str, str], Edge] = {}
        self.neighbors: dict[str, set[str]] = {}
        self.channel_history: dict[str, deque[tuple[str, datetime]]] = {}
        self.state = GraphLifecycle.UNINITIALIZED
        self.version = 0
        self.layout: Layout | None = None
        self.layout_stale = True
        self.render_count = 0
        self.lock = asyncio.Lock()
        self.generation = next(_GENERATIONS)
        # Set once the shard leaves the registry; later writers must look it up again.
        self.detached = False

    def transition(self, target: GraphLifecycle) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"guild {self.guild_id}: illegal transition {self.state.value} -> {target.value}")
        self.state = target

    def mark_changed(self) -> None:
        self.version += 1
        self.layout_stale = True

    def upsert_node(self, user_id: str, seen_at: datetime, activity: float = 0.0) -> bool:
        node = self.nodes.get(user_id)
        if node is None:
            self.nodes[user_id] = Node(
                user_id=user_id,
                guild_id=self.guild_id,
                activity=activity,
                last_seen=seen_at,
            )
            return True
        node.activity += activity
        if seen_at > node.last_seen:
            node.last_seen = seen_at
        return False

    def get_or_create_edge(self, left: str, right: str, at: datetime) -> tuple[Edge, bool]:
        key = edge_key(left, right)
        edge = self.edges.get(key)
        if edge is not None:
            return edge, False
        edge = Edge(user_a=key[0], user_b=key[1], weight=0.0, count_ab=0, count_ba=0, last_update=at)
        self.edges[key] = edge
        self.neighbors.setdefault(key[0], set()).add(key[1])
        self.neighbors.setdefault(key[1], set()).add(key[0])
        return edge, True

    def drop_edge(self, key: tuple[str, str]) -> None:
        self.edges.pop(key, None)
        for here, there in (key, key[::-1]):
            linked = self.neighbors.get(here)
            if linked is None:
                continue
            linked.discard(there)
            if not linked:
                self.neighbors.pop(here, None)

    def drop_node(self, user_id: str) -> None:
        for other in list(self.neighbors.get(user_id, ())):
            self.drop_edge(edge_key(user_id, other))
        self.nodes.pop(user_id, None)

    def degree(self, user_id: str) -> int:
        return len(self.neighbors.get(user_id, ()))

    def to_snapshot(self, taken_at: datetime | None = None) -> Snapshot:
        return Snapshot(
            guild_id=self.guild_id,
            version=self.version,
            decay_half_life=self.settings.decay_half_life,
            weight_cap=self.settings.weight_cap,
            nodes=tuple(
                NodeRecord(
                    user_id=node.user_id,
                    activity=node.activity,
                    last_seen=node.last_seen,
                    position=node.position,
                )
                for node in sorted(self.nodes.values(), key=lambda n: n.user_id)
            ),
            edges=tuple(
                EdgeRecord(
                    user_a=edge.user_a,
                    user_b=edge.user_b,
                    weight=edge.weight,
                    count_ab=edge.count_ab,
                    count_ba=edge.count_ba,
                    last_update=edge.last_update,
                    label=edge.label,
                )
                for _, edge in sorted(self.edges.items())
            ),
            taken_at=taken_at,
            generation=self.generation,
        )

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "GuildGraph":
        graph = cls(
            snapshot.guild_id,
            GuildSettings(decay_half_life=snapshot.decay_half_life, weight_cap=snapshot.weight_cap),
        )
        for record in snapshot.nodes:
            graph.nodes[record.user_id] = Node(
                user_id=record.user_id,
                guild_id=snapshot.guild_id,
                activity=record.activity,
                last_seen=record.last_seen,
                position=record.position,
            )
        for record in snapshot.edges:
            if record.user_a == record.user_b:
                continue
            edge, _ = graph.get_or_create_edge(record.user_a, record.user_b, record.last_update)
            edge.weight = min(record.weight, snapshot.weight_cap)
            edge.count_ab = record.count_ab
            edge.count_ba = record.count_ba
            edge.label = record.label
            for user_id in edge.user_a, edge.user_b:
                graph.upsert_node(user_id, record.last_update)
        graph.version = snapshot.version
        if graph.nodes:
            graph.transition(GraphLifecycle.ACTIVE)
        return graph


def serialize_node(node: Node, degree: int = 0) -> dict[str, Any]:
    payload = asdict(node)
    payload["last_seen"] = int(node.last_seen.timestamp() * 1000)
    payload["degree"] = degree
    return payload


def serialize_edge(edge: Edge, at: datetime, half_life: float) -> dict[str, Any]:
    payload = asdict(edge)
    payload["last_update"] = int(edge.last_update.timestamp() * 1000)
    payload["current_weight"] = round(edge.weight_at(at, half_life), 6)
    return payload

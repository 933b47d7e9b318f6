from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from .decay import decayed_weight, elapsed_seconds


class ChatEventKind(str, Enum):
    MESSAGE = "message"
    REACTION = "reaction"


class SourceKind(str, Enum):
    MENTION = "mention"
    REPLY = "reply"
    AMBIENT = "ambient"
    REACTION = "reaction"


class GraphLifecycle(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    REMOVED = "removed"


@dataclass(slots=True)
class ChatEvent:
    """Raw event as delivered by the gateway, before addressee inference."""

    guild_id: str
    speaker_id: str | None
    channel_id: str
    timestamp: datetime
    mentions: list[str] = field(default_factory=list)
    reply_to_speaker_id: str | None = None
    kind: ChatEventKind = ChatEventKind.MESSAGE
    speaker_is_bot: bool = False


@dataclass(slots=True, frozen=True)
class InteractionEvent:
    guild_id: str
    speaker_id: str
    channel_id: str
    timestamp: datetime
    source: SourceKind
    # addressee id -> weight contribution
    addressees: Mapping[str, float]


@dataclass(slots=True)
class Node:
    user_id: str
    guild_id: str
    activity: float
    last_seen: datetime
    position: tuple[float, float] | None = None


@dataclass(slots=True)
class Edge:
    # user_a <= user_b; count_ab counts interactions from user_a towards user_b.
    user_a: str
    user_b: str
    weight: float
    count_ab: int
    count_ba: int
    last_update: datetime
    label: str | None = None

    def weight_at(self, at: datetime, half_life: float) -> float:
        return decayed_weight(self.weight, self.last_update, at, half_life)


@dataclass(slots=True, frozen=True)
class EdgeStats:
    weight: float
    age_seconds: float
    count_ab: int
    count_ba: int

    @property
    def symmetry(self) -> float:
        high = max(self.count_ab, self.count_ba)
        if high <= 0:
            return 0.0
        return min(self.count_ab, self.count_ba) / high


@dataclass(slots=True, frozen=True)
class NodeRecord:
    user_id: str
    activity: float
    last_seen: datetime
    # Render cache; not part of graph identity.
    position: tuple[float, float] | None = field(default=None, compare=False)


@dataclass(slots=True, frozen=True)
class EdgeRecord:
    user_a: str
    user_b: str
    weight: float
    count_ab: int
    count_ba: int
    last_update: datetime
    label: str | None = field(default=None, compare=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_a, self.user_b)

    def weight_at(self, at: datetime, half_life: float) -> float:
        return decayed_weight(self.weight, self.last_update, at, half_life)

    def stats_at(self, at: datetime, half_life: float) -> EdgeStats:
        return EdgeStats(
            weight=self.weight_at(at, half_life),
            age_seconds=elapsed_seconds(self.last_update, at),
            count_ab=self.count_ab,
            count_ba=self.count_ba,
        )


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Detached, point-in-time copy of one guild graph.

    Weights are stored undecayed together with their last update time, so two
    snapshots taken without an intervening mutation compare equal regardless
    of when they were taken. Use ``EdgeRecord.weight_at`` to read a weight at
    a given instant.
    """

    guild_id: str
    version: int
    decay_half_life: float
    weight_cap: float
    nodes: tuple[NodeRecord, ...] = ()
    edges: tuple[EdgeRecord, ...] = ()
    taken_at: datetime | None = field(default=None, compare=False)
    # Identifies the graph instance the copy came from; a reset guild gets a new one.
    generation: int = field(default=0, compare=False)

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def node_ids(self) -> list[str]:
        return [node.user_id for node in self.nodes]


@dataclass(slots=True, frozen=True)
class Label:
    category: str
    qualifier: str | None = None

    def __str__(self) -> str:
        if self.qualifier:
            return f"{self.category} ({self.qualifier})"
        return self.category


@dataclass(slots=True, frozen=True)
class Layout:
    """Normalized node positions plus cluster ids.

    ``positions`` are centered on the origin and scaled into [-1, 1];
    ``center`` and ``scale`` map them back to the engine's working space,
    which is what the next layout pass is seeded from.
    """

    guild_id: str
    positions: Mapping[str, tuple[float, float]]
    clusters: Mapping[str, int]
    center: tuple[float, float] = (0.0, 0.0)
    scale: float = 1.0
    iterations: int = 0
    converged: bool = True
    snapshot_version: int = 0
    snapshot: Snapshot | None = field(default=None, compare=False, repr=False)

    @classmethod
    def empty(cls, guild_id: str, snapshot: Snapshot | None = None) -> "Layout":
        return cls(
            guild_id=guild_id,
            positions={},
            clusters={},
            snapshot_version=snapshot.version if snapshot else 0,
            snapshot=snapshot,
        )

    @property
    def is_empty(self) -> bool:
        return not self.positions

    def world_position(self, user_id: str) -> tuple[float, float] | None:
        point = self.positions.get(user_id)
        if point is None:
            return None
        return (
            self.center[0] + point[0] * self.scale,
            self.center[1] + point[1] * self.scale,
        )

    def world_positions(self) -> dict[str, tuple[float, float]]:
        return {user_id: self.world_position(user_id) for user_id in self.positions}


@dataclass(slots=True, frozen=True)
class LabeledEdge:
    user_a: str
    user_b: str
    weight: float
    label: Label


@dataclass(slots=True, frozen=True)
class RenderResult:
    guild_id: str
    layout: Layout
    edges: tuple[LabeledEdge, ...]
    rendered_at: datetime
    reused_layout: bool = False


@dataclass(slots=True)
class EdgeChange:
    user_a: str
    user_b: str
    old_weight: float
    new_weight: float
    created: bool


@dataclass(slots=True)
class MutationSummary:
    guild_id: str
    speaker_id: str
    channel_id: str
    source: SourceKind
    timestamp: datetime
    edge_changes: list[EdgeChange] = field(default_factory=list)
    created_nodes: list[str] = field(default_factory=list)
    node_count: int = 0
    edge_count: int = 0

    def to_change_event(self) -> dict[str, Any]:
        return {
            "guild_id": self.guild_id,
            "timestamp": int(self.timestamp.timestamp() * 1000),
            "speaker_id": self.speaker_id,
            "channel_id": self.channel_id,
            "source": self.source.value,
            "created_nodes": list(self.created_nodes),
            "relationship_changes": [
                {
                    "user_a": change.user_a,
                    "user_b": change.user_b,
                    "old_weight": round(change.old_weight, 6),
                    "new_weight": round(change.new_weight, 6),
                    "delta_weight": round(change.new_weight - change.old_weight, 6),
                    "created": change.created,
                }
                for change in self.edge_changes
            ],
            "node_count": self.node_count,
            "edge_count": self.edge_count,
        }


@dataclass(slots=True)
class PruneReport:
    pruned_at: datetime
    guilds_scanned: int = 0
    nodes_removed: int = 0
    edges_removed: int = 0
    channels_forgotten: int = 0
    guilds_discarded: int = 0
    per_guild: dict[str, tuple[int, int]] = field(default_factory=dict)
    duration_ms: int = 0

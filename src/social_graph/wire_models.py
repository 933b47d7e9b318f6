from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import models

SCHEMA_VERSION = 1


def datetime_to_epoch_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def epoch_millis_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class WireModel(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class ChatEventValue(WireModel):
    """Ingestion contract consumed from the chat gateway."""

    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    guild_id: str
    speaker_id: str | None = None
    channel_id: str
    timestamp: int = Field(description="timestamp-millis")
    mentions: list[str] = Field(default_factory=list)
    reply_to_speaker_id: str | None = None
    kind: models.ChatEventKind = models.ChatEventKind.MESSAGE
    speaker_is_bot: bool = False

    @classmethod
    def from_domain(cls, event: models.ChatEvent) -> "ChatEventValue":
        return cls(
            guild_id=event.guild_id,
            speaker_id=event.speaker_id,
            channel_id=event.channel_id,
            timestamp=datetime_to_epoch_millis(event.timestamp),
            mentions=list(event.mentions),
            reply_to_speaker_id=event.reply_to_speaker_id,
            kind=event.kind,
            speaker_is_bot=event.speaker_is_bot,
        )

    def to_domain(self) -> models.ChatEvent:
        return models.ChatEvent(
            guild_id=self.guild_id,
            speaker_id=self.speaker_id,
            channel_id=self.channel_id,
            timestamp=epoch_millis_to_datetime(self.timestamp),
            mentions=list(self.mentions),
            reply_to_speaker_id=self.reply_to_speaker_id,
            kind=self.kind,
            speaker_is_bot=self.speaker_is_bot,
        )


class GuildLifecycleValue(WireModel):
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    guild_id: str
    event: Literal["leave", "reset", "channel_delete"]
    channel_id: str | None = None


class NodeValue(WireModel):
    user_id: str
    activity: float = 0.0
    last_seen: int = Field(description="timestamp-millis")
    last_position: tuple[float, float] | None = None

    @classmethod
    def from_domain(cls, node: models.NodeRecord) -> "NodeValue":
        return cls(
            user_id=node.user_id,
            activity=node.activity,
            last_seen=datetime_to_epoch_millis(node.last_seen),
            last_position=node.position,
        )

    def to_domain(self) -> models.NodeRecord:
        return models.NodeRecord(
            user_id=self.user_id,
            activity=self.activity,
            last_seen=epoch_millis_to_datetime(self.last_seen),
            position=tuple(self.last_position) if self.last_position is not None else None,
        )


class EdgeValue(WireModel):
    user_a: str
    user_b: str
    weight: float = Field(ge=0.0)
    count_ab: int = Field(default=0, ge=0, alias="countAB")
    count_ba: int = Field(default=0, ge=0, alias="countBA")
    last_update: int = Field(description="timestamp-millis")
    label: str | None = None

    @classmethod
    def from_domain(cls, edge: models.EdgeRecord) -> "EdgeValue":
        return cls(
            user_a=edge.user_a,
            user_b=edge.user_b,
            weight=edge.weight,
            count_ab=edge.count_ab,
            count_ba=edge.count_ba,
            last_update=datetime_to_epoch_millis(edge.last_update),
            label=edge.label,
        )

    def to_domain(self) -> models.EdgeRecord:
        user_a, user_b = self.user_a, self.user_b
        count_ab, count_ba = self.count_ab, self.count_ba
        if user_b < user_a:
            user_a, user_b = user_b, user_a
            count_ab, count_ba = count_ba, count_ab
        return models.EdgeRecord(
            user_a=user_a,
            user_b=user_b,
            weight=self.weight,
            count_ab=count_ab,
            count_ba=count_ba,
            last_update=epoch_millis_to_datetime(self.last_update),
            label=self.label,
        )


class GuildGraphValue(WireModel):
    """Persistence format: everything needed to rebuild a guild graph and seed its next layout."""

    schema_version: int = SCHEMA_VERSION
    guild_id: str
    saved_at: int = Field(description="timestamp-millis")
    version: int = 0
    decay_half_life: float = Field(gt=0.0)
    weight_cap: float = Field(gt=0.0)
    nodes: list[NodeValue] = Field(default_factory=list)
    edges: list[EdgeValue] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, snapshot: models.Snapshot, saved_at: datetime) -> "GuildGraphValue":
        return cls(
            guild_id=snapshot.guild_id,
            saved_at=datetime_to_epoch_millis(saved_at),
            version=snapshot.version,
            decay_half_life=snapshot.decay_half_life,
            weight_cap=snapshot.weight_cap,
            nodes=[NodeValue.from_domain(node) for node in sorted(snapshot.nodes, key=lambda n: n.user_id)],
            edges=[EdgeValue.from_domain(edge) for edge in sorted(snapshot.edges, key=lambda e: e.key)],
        )

    def to_domain(self) -> models.Snapshot:
        return models.Snapshot(
            guild_id=self.guild_id,
            version=self.version,
            decay_half_life=self.decay_half_life,
            weight_cap=self.weight_cap,
            nodes=tuple(node.to_domain() for node in self.nodes),
            edges=tuple(edge.to_domain() for edge in self.edges),
            taken_at=epoch_millis_to_datetime(self.saved_at),
        )


class RenderNodeValue(WireModel):
    user_id: str
    x: float
    y: float
    cluster_id: int


class RenderEdgeValue(WireModel):
    user_a: str
    user_b: str
    weight: float
    label: str
    category: str
    qualifier: str | None = None


class RenderResultValue(WireModel):
    """Render handoff: normalized coordinates, cluster ids and edge labels."""

    guild_id: str
    rendered_at: int = Field(description="timestamp-millis")
    snapshot_version: int
    iterations: int
    converged: bool
    reused_layout: bool = False
    nodes: list[RenderNodeValue] = Field(default_factory=list)
    edges: list[RenderEdgeValue] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, result: models.RenderResult) -> "RenderResultValue":
        layout = result.layout
        return cls(
            guild_id=result.guild_id,
            rendered_at=datetime_to_epoch_millis(result.rendered_at),
            snapshot_version=layout.snapshot_version,
            iterations=layout.iterations,
            converged=layout.converged,
            reused_layout=result.reused_layout,
            nodes=[
                RenderNodeValue(user_id=user_id, x=x, y=y, cluster_id=layout.clusters.get(user_id, -1))
                for user_id, (x, y) in sorted(layout.positions.items())
            ],
            edges=[
                RenderEdgeValue(
                    user_a=edge.user_a,
                    user_b=edge.user_b,
                    weight=edge.weight,
                    label=str(edge.label),
                    category=edge.label.category,
                    qualifier=edge.label.qualifier,
                )
                for edge in result.edges
            ],
        )


class DecayHalfLifeValue(WireModel):
    decay_half_life: float = Field(gt=0.0, description="seconds")


class WeightCapValue(WireModel):
    weight_cap: float = Field(gt=0.0)

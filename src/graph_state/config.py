from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(slots=True)
class GraphConfig:
    decay_half_life_seconds: float
    weight_cap: float
    prune_epsilon: float
    retention_seconds: float
    prune_interval_seconds: float
    mention_weight: float
    reply_weight: float
    reaction_weight: float
    ambient_weight: float
    ambient_max_speakers: int
    ambient_window_seconds: float
    channel_history_size: int
    ignore_bots: bool


@dataclass(slots=True)
class RuntimeConfig:
    bootstrap_servers: str
    group_id: str
    auto_offset_reset: str
    chat_events_topic: str
    lifecycle_topic: str
    graph_changes_topic: str
    batch_size: int
    stream_enabled: bool


def load_graph_config() -> GraphConfig:
    return GraphConfig(
        decay_half_life_seconds=float(os.getenv("GRAPH_DECAY_HALF_LIFE_SECONDS", str(7 * 24 * 3600))),
        weight_cap=float(os.getenv("GRAPH_WEIGHT_CAP", "10.0")),
        prune_epsilon=float(os.getenv("GRAPH_PRUNE_EPSILON", "0.05")),
        retention_seconds=float(os.getenv("GRAPH_RETENTION_SECONDS", str(30 * 24 * 3600))),
        prune_interval_seconds=float(os.getenv("GRAPH_PRUNE_INTERVAL_SECONDS", "300")),
        mention_weight=float(os.getenv("GRAPH_MENTION_WEIGHT", "1.0")),
        reply_weight=float(os.getenv("GRAPH_REPLY_WEIGHT", "2.0")),
        reaction_weight=float(os.getenv("GRAPH_REACTION_WEIGHT", "0.1")),
        ambient_weight=float(os.getenv("GRAPH_AMBIENT_WEIGHT", "0.5")),
        ambient_max_speakers=int(os.getenv("GRAPH_AMBIENT_MAX_SPEAKERS", "3")),
        ambient_window_seconds=float(os.getenv("GRAPH_AMBIENT_WINDOW_SECONDS", "120")),
        channel_history_size=int(os.getenv("GRAPH_CHANNEL_HISTORY_SIZE", "16")),
        ignore_bots=os.getenv("GRAPH_IGNORE_BOTS", "true").lower() == "true",
    )


def load_runtime_config() -> RuntimeConfig:
    return RuntimeConfig(
        bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
        group_id=os.getenv("GRAPH_STATE_GROUP_ID", "graph-state-service"),
        auto_offset_reset=os.getenv("KAFKA_AUTO_OFFSET_RESET", "latest"),
        chat_events_topic=os.getenv("CHAT_EVENTS_TOPIC", "chat-events"),
        lifecycle_topic=os.getenv("GUILD_LIFECYCLE_TOPIC", "guild-lifecycle"),
        graph_changes_topic=os.getenv("GRAPH_CHANGES_TOPIC", "graph-changes"),
        batch_size=int(os.getenv("GRAPH_STATE_BATCH_SIZE", "16")),
        stream_enabled=os.getenv("GRAPH_STREAM_ENABLED", "true").lower() == "true",
    )

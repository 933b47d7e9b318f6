from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

STORED_GUILD_GRAPHS = Counter("social_graph_storage_guild_saves_total", "Guild graphs written to storage")
STORED_INTERACTIONS = Counter("social_graph_storage_interactions_total", "Interaction log rows written")
PERSISTENCE_FAILURES = Counter(
    "social_graph_storage_failures_total",
    "Failed persistence operations",
    ["operation"],
)
STORAGE_RETRIES = Counter("social_graph_storage_retries_total", "Number of storage retries")
PENDING_INTERACTIONS = Gauge("social_graph_storage_pending_interactions", "Interactions buffered for the next flush")
DROPPED_INTERACTIONS = Counter(
    "social_graph_storage_interactions_dropped_total",
    "Buffered interaction log rows dropped because the buffer was full",
)
FLUSH_LATENCY_SECONDS = Histogram(
    "social_graph_storage_flush_latency_seconds",
    "Latency of persistence flushes",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

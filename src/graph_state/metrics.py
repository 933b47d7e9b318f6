from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

EVENTS_APPLIED = Counter("social_graph_events_applied_total", "Chat events applied to a guild graph", ["source"])
EVENTS_REJECTED = Counter("social_graph_events_rejected_total", "Chat events rejected before mutation", ["reason"])
EDGES_PRUNED = Counter("social_graph_edges_pruned_total", "Edges removed by prune sweeps")
NODES_PRUNED = Counter("social_graph_nodes_pruned_total", "Nodes removed by prune sweeps")
GUILD_GRAPHS = Gauge("social_graph_guild_graphs", "Guild graphs held in memory")
PRUNE_DURATION_SECONDS = Histogram(
    "social_graph_prune_duration_seconds",
    "Duration of prune sweeps",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1, 5),
)

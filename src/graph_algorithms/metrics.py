from __future__ import annotations

from prometheus_client import Counter, Histogram

RENDERS_COMPLETED = Counter("social_graph_renders_total", "Completed renders", ["reused_layout"])
RENDERS_CANCELLED = Counter("social_graph_renders_cancelled_total", "Renders cancelled before completion")
LAYOUT_NOT_CONVERGED = Counter(
    "social_graph_layout_not_converged_total",
    "Layouts that hit the iteration budget before converging",
)
RENDER_LATENCY_SECONDS = Histogram(
    "social_graph_render_latency_seconds",
    "Latency of classification plus layout",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

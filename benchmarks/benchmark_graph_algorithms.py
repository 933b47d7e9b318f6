from __future__ import annotations

import random
import time
from datetime import timedelta

from graph_algorithms.layout import LayoutEngine
from graph_algorithms.service import RenderService
from graph_state.store import InMemoryGraphStore
from social_graph.decay import utc_now
from social_graph.models import EdgeRecord, NodeRecord, Snapshot


def make_snapshot(members: int = 1000, edges_per_member: int = 4) -> Snapshot:
    now = utc_now()
    ids = [f"user-{i:04d}" for i in range(members)]
    nodes = tuple(NodeRecord(user_id, 1.0, now) for user_id in ids)
    seen: dict[tuple[str, str], EdgeRecord] = {}
    for idx, user_id in enumerate(ids):
        # Neighbors cluster around the member's own index, giving visible communities.
        for _ in range(edges_per_member):
            other = ids[(idx + random.randint(1, 25)) % members]
            key = (min(user_id, other), max(user_id, other))
            seen[key] = EdgeRecord(
                key[0],
                key[1],
                random.uniform(0.5, 8.0),
                random.randint(1, 50),
                random.randint(0, 50),
                now - timedelta(hours=random.randint(0, 72)),
            )
    return Snapshot(
        guild_id="bench",
        version=1,
        decay_half_life=7 * 24 * 3600.0,
        weight_cap=10.0,
        nodes=nodes,
        edges=tuple(seen.values()),
        taken_at=now,
    )


def main() -> None:
    random.seed(42)
    snapshot = make_snapshot()
    engine = LayoutEngine()
    service = RenderService(InMemoryGraphStore(), engine=engine)

    start = time.perf_counter()
    cold = engine.layout(snapshot)
    cold_elapsed = time.perf_counter() - start

    start = time.perf_counter()
    warm = engine.layout(snapshot, previous=cold)
    warm_elapsed = time.perf_counter() - start

    start = time.perf_counter()
    labeled = service.label_edges(snapshot)
    label_elapsed = time.perf_counter() - start

    drift = max(
        abs(warm.positions[user_id][0] - cold.positions[user_id][0])
        + abs(warm.positions[user_id][1] - cold.positions[user_id][1])
        for user_id in cold.positions
    )

    print(f"node_count={len(snapshot.nodes)}")
    print(f"edge_count={len(snapshot.edges)}")
    print(f"cold_layout_sec={cold_elapsed:.4f} iterations={cold.iterations} converged={cold.converged}")
    print(f"warm_layout_sec={warm_elapsed:.4f} iterations={warm.iterations} converged={warm.converged}")
    print(f"warm_max_drift={drift:.4f}")
    print(f"clusters={len(set(cold.clusters.values()))}")
    print(f"label_sec={label_elapsed:.4f} labeled_edges={len(labeled)}")


if __name__ == "__main__":
    main()

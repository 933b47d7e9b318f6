from __future__ import annotations

import math
import threading
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from graph_algorithms.config import LayoutConfig
from graph_algorithms.layout import LayoutEngine
from social_graph.errors import RenderCancelled
from social_graph.models import EdgeRecord, Layout, NodeRecord, Snapshot

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_config(**overrides) -> LayoutConfig:
    values = dict(
        max_iterations=300,
        convergence_epsilon=0.001,
        repulsion=1.0,
        spring=1.0,
        gravity=0.05,
        ideal_edge_length=1.0,
        step_size=0.1,
        max_step=1.0,
        damping=0.97,
        warm_start_factor=0.1,
        min_distance=0.01,
        seed_jitter=0.1,
        negligible_weight=0.05,
    )
    values.update(overrides)
    return LayoutConfig(**values)


def make_snapshot(edges: list[tuple[str, str, float]], extra_nodes: tuple[str, ...] = (), version: int = 1) -> Snapshot:
    users = sorted({user for a, b, _ in edges for user in (a, b)} | set(extra_nodes))
    return Snapshot(
        guild_id="g1",
        version=version,
        decay_half_life=1e12,
        weight_cap=10.0,
        nodes=tuple(NodeRecord(user, 1.0, T0) for user in users),
        edges=tuple(EdgeRecord(min(a, b), max(a, b), weight, 1, 1, T0) for a, b, weight in sorted(edges)),
        taken_at=T0,
    )


def max_displacement(first: Layout, second: Layout) -> float:
    return max(
        math.dist(first.positions[user_id], second.positions[user_id])
        for user_id in first.positions
    )


def test_empty_snapshot_gives_empty_layout() -> None:
    snapshot = Snapshot(guild_id="g1", version=0, decay_half_life=10.0, weight_cap=10.0)

    layout = LayoutEngine(make_config()).layout(snapshot)

    assert layout.is_empty
    assert layout.clusters == {}
    assert layout.guild_id == "g1"


def test_single_node_sits_at_origin() -> None:
    layout = LayoutEngine(make_config()).layout(make_snapshot([], extra_nodes=("solo",)))

    assert layout.positions == {"solo": (0.0, 0.0)}
    assert layout.clusters == {"solo": 0}


def test_positions_are_normalized_and_complete() -> None:
    snapshot = make_snapshot([("a", "b", 10.0), ("b", "c", 5.0), ("c", "a", 2.0), ("d", "e", 1.0)])

    layout = LayoutEngine(make_config()).layout(snapshot)

    assert set(layout.positions) == {"a", "b", "c", "d", "e"}
    for x, y in layout.positions.values():
        assert -1.0 - 1e-9 <= x <= 1.0 + 1e-9
        assert -1.0 - 1e-9 <= y <= 1.0 + 1e-9
    assert max(max(abs(x), abs(y)) for x, y in layout.positions.values()) == pytest.approx(1.0)
    assert 1 <= layout.iterations <= 300
    assert layout.snapshot_version == snapshot.version


def test_layout_is_deterministic() -> None:
    snapshot = make_snapshot([("a", "b", 10.0), ("b", "c", 5.0), ("c", "d", 2.0)])
    engine = LayoutEngine(make_config())

    assert engine.layout(snapshot).positions == engine.layout(snapshot).positions


def test_world_positions_round_trip_through_normalization() -> None:
    snapshot = make_snapshot([("a", "b", 10.0), ("b", "c", 5.0)])
    layout = LayoutEngine(make_config()).layout(snapshot)

    for user_id, (x, y) in layout.world_positions().items():
        nx, ny = layout.positions[user_id]
        assert (x - layout.center[0]) / layout.scale == pytest.approx(nx)
        assert (y - layout.center[1]) / layout.scale == pytest.approx(ny)


def test_small_weight_change_moves_nodes_only_slightly() -> None:
    engine = LayoutEngine(make_config())
    base = make_snapshot([("a", "b", 8.0), ("b", "c", 6.0), ("c", "a", 4.0), ("c", "d", 5.0)])
    first = engine.layout(base)

    perturbed = make_snapshot([("a", "b", 8.01), ("b", "c", 6.0), ("c", "a", 4.0), ("c", "d", 5.0)], version=2)
    second = engine.layout(perturbed, previous=first)

    assert max_displacement(first, second) < 0.05


def test_relayout_of_unchanged_graph_stays_put() -> None:
    engine = LayoutEngine(make_config())
    snapshot = make_snapshot([("a", "b", 8.0), ("b", "c", 6.0), ("c", "a", 4.0)])
    first = engine.layout(snapshot)

    second = engine.layout(snapshot, previous=first)

    assert max_displacement(first, second) < 0.02


def test_new_node_is_seeded_near_its_neighbors() -> None:
    engine = LayoutEngine(make_config(seed_jitter=0.1))
    previous = Layout(
        guild_id="g1",
        positions={"a": (-1.0, 0.0), "b": (1.0, 0.0)},
        clusters={"a": 0, "b": 0},
        center=(10.0, 0.0),
        scale=5.0,
    )
    snapshot = make_snapshot([("a", "b", 5.0), ("a", "new", 1.0)])
    adjacency = {
        "a": [("b", 5.0), ("new", 1.0)],
        "b": [("a", 5.0)],
        "new": [("a", 1.0)],
    }

    seeded, warm = engine._seed_positions(snapshot, ["a", "b", "new"], adjacency, previous)

    assert warm is False
    assert seeded["a"] == (5.0, 0.0)
    assert seeded["b"] == (15.0, 0.0)
    assert math.dist(seeded["new"], seeded["a"]) <= 0.1 * math.sqrt(2) + 1e-9


def test_persisted_positions_seed_layout_without_previous() -> None:
    engine = LayoutEngine(make_config())
    snapshot = Snapshot(
        guild_id="g1",
        version=1,
        decay_half_life=1e12,
        weight_cap=10.0,
        nodes=(NodeRecord("a", 1.0, T0, position=(2.0, 2.0)), NodeRecord("b", 1.0, T0, position=(4.0, 2.0))),
        edges=(EdgeRecord("a", "b", 5.0, 1, 1, T0),),
        taken_at=T0,
    )
    adjacency = {"a": [("b", 5.0)], "b": [("a", 5.0)]}

    seeded, warm = engine._seed_positions(snapshot, ["a", "b"], adjacency, None)

    assert warm is True
    assert seeded == {"a": (2.0, 2.0), "b": (4.0, 2.0)}


def test_clusters_follow_connected_components() -> None:
    snapshot = make_snapshot([("a", "b", 3.0), ("b", "c", 3.0), ("x", "y", 2.0), ("c", "x", 0.01)])

    layout = LayoutEngine(make_config()).layout(snapshot)

    assert layout.clusters["a"] == layout.clusters["b"] == layout.clusters["c"] == 0
    assert layout.clusters["x"] == layout.clusters["y"] == 1


def test_cluster_ids_survive_unrelated_changes() -> None:
    engine = LayoutEngine(make_config())
    previous = Layout(
        guild_id="g1",
        positions={},
        clusters={"a": 7, "b": 7, "x": 3, "y": 3},
    )
    snapshot = make_snapshot([("a", "b", 3.0), ("x", "y", 3.0), ("y", "z", 3.0), ("m", "n", 3.0)])

    layout = engine.layout(snapshot, previous=previous)

    assert layout.clusters["a"] == layout.clusters["b"] == 7
    assert layout.clusters["x"] == layout.clusters["y"] == layout.clusters["z"] == 3
    assert layout.clusters["m"] == layout.clusters["n"] == 8


def test_iteration_budget_bounds_work() -> None:
    engine = LayoutEngine(make_config(max_iterations=1))
    snapshot = make_snapshot([("a", "b", 3.0), ("b", "c", 3.0), ("c", "d", 3.0)])

    layout = engine.layout(snapshot)

    assert layout.iterations == 1
    assert layout.converged is False
    assert set(layout.positions) == {"a", "b", "c", "d"}


def test_cancelled_layout_raises() -> None:
    engine = LayoutEngine(make_config())
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(RenderCancelled):
        engine.layout(make_snapshot([("a", "b", 3.0)]), cancel_event=cancel)


def test_config_override_via_replace() -> None:
    config = replace(make_config(), negligible_weight=5.0)
    snapshot = make_snapshot([("a", "b", 3.0)])

    layout = LayoutEngine(config).layout(snapshot)

    assert layout.clusters["a"] != layout.clusters["b"]

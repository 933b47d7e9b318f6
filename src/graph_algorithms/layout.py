from __future__ import annotations

import logging
import math
import random
import threading
from collections import defaultdict

from social_graph.decay import utc_now
from social_graph.errors import RenderCancelled
from social_graph.models import Layout, Snapshot

from .config import LayoutConfig, load_layout_config


class LayoutEngine:
    """Force-directed placement seeded from the previous layout.

    Math notes:
    - Repulsion between every node pair: k_r / max(d, d_min)^2.
    - Spring along every edge: k_s * (w / W_max) * (d - L), attractive when
      stretched beyond the ideal length L.
    - Weak gravity towards the current centroid keeps isolated nodes bounded.
    - Displacement per iteration is force * step_size, capped by a
      temperature that shrinks by ``damping`` every iteration. Total travel
      of any node is therefore bounded by max_step / (1 - damping), and by a
      tenth of that when every node is warm-started from a prior layout.
    """

    def __init__(self, config: LayoutConfig | None = None) -> None:
        self.config = config or load_layout_config()
        self._logger = logging.getLogger("graph-render")

    def layout(
        self,
        snapshot: Snapshot,
        previous: Layout | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Layout:
        if snapshot.is_empty:
            return Layout.empty(snapshot.guild_id, snapshot)

        at = snapshot.taken_at or utc_now()
        node_ids = sorted(snapshot.node_ids())
        index = {user_id: i for i, user_id in enumerate(node_ids)}

        springs: list[tuple[int, int, float]] = []
        adjacency: dict[str, list[tuple[str, float]]] = defaultdict(list)
        for edge in snapshot.edges:
            if edge.user_a not in index or edge.user_b not in index:
                continue
            weight = edge.weight_at(at, snapshot.decay_half_life)
            springs.append((index[edge.user_a], index[edge.user_b], weight / snapshot.weight_cap))
            adjacency[edge.user_a].append((edge.user_b, weight))
            adjacency[edge.user_b].append((edge.user_a, weight))

        seeded, warm = self._seed_positions(snapshot, node_ids, adjacency, previous)
        xs = [seeded[user_id][0] for user_id in node_ids]
        ys = [seeded[user_id][1] for user_id in node_ids]

        iterations, converged = self._relax(xs, ys, springs, warm, cancel_event)
        if not converged:
            self._logger.debug(
                "layout did not converge guild=%s nodes=%d iterations=%d",
                snapshot.guild_id,
                len(node_ids),
                iterations,
            )

        center, scale, positions = self._normalize(node_ids, xs, ys)
        return Layout(
            guild_id=snapshot.guild_id,
            positions=positions,
            clusters=self._clusters(node_ids, adjacency, previous),
            center=center,
            scale=scale,
            iterations=iterations,
            converged=converged,
            snapshot_version=snapshot.version,
            snapshot=snapshot,
        )

    def _jitter(self, guild_id: str, user_id: str) -> tuple[float, float]:
        # Seeded per node so the same graph always lays out the same way.
        rng = random.Random(f"{guild_id}:{user_id}")
        spread = self.config.seed_jitter
        return rng.uniform(-spread, spread), rng.uniform(-spread, spread)

    def _seed_positions(
        self,
        snapshot: Snapshot,
        node_ids: list[str],
        adjacency: dict[str, list[tuple[str, float]]],
        previous: Layout | None,
    ) -> tuple[dict[str, tuple[float, float]], bool]:
        positions: dict[str, tuple[float, float]] = {}
        if previous is not None:
            for user_id in node_ids:
                point = previous.world_position(user_id)
                if point is not None:
                    positions[user_id] = point
        # Positions persisted with the graph stand in for a missing previous layout.
        for record in snapshot.nodes:
            if record.user_id not in positions and record.position is not None:
                positions[record.user_id] = record.position
        warm = len(positions) == len(node_ids)

        pending = [user_id for user_id in node_ids if user_id not in positions]
        # Best connected nodes first so their neighbors can be placed around them.
        pending.sort(key=lambda user_id: (-sum(weight for _, weight in adjacency.get(user_id, ())), user_id))
        while pending:
            placed_any = False
            for user_id in list(pending):
                anchors = [positions[other] for other, _ in adjacency.get(user_id, ()) if other in positions]
                if not anchors:
                    continue
                base = (
                    sum(point[0] for point in anchors) / len(anchors),
                    sum(point[1] for point in anchors) / len(anchors),
                )
                positions[user_id] = self._offset(snapshot.guild_id, user_id, base)
                pending.remove(user_id)
                placed_any = True
            if placed_any:
                continue
            # Nothing left touches a placed node: start a new component at the centroid.
            user_id = pending.pop(0)
            positions[user_id] = self._offset(snapshot.guild_id, user_id, self._centroid(positions))
        return positions, warm

    def _offset(self, guild_id: str, user_id: str, base: tuple[float, float]) -> tuple[float, float]:
        dx, dy = self._jitter(guild_id, user_id)
        return base[0] + dx, base[1] + dy

    @staticmethod
    def _centroid(positions: dict[str, tuple[float, float]]) -> tuple[float, float]:
        if not positions:
            return 0.0, 0.0
        return (
            sum(point[0] for point in positions.values()) / len(positions),
            sum(point[1] for point in positions.values()) / len(positions),
        )

    def _relax(
        self,
        xs: list[float],
        ys: list[float],
        springs: list[tuple[int, int, float]],
        warm: bool,
        cancel_event: threading.Event | None,
    ) -> tuple[int, bool]:
        cfg = self.config
        count = len(xs)
        temperature = cfg.max_step * (cfg.warm_start_factor if warm else 1.0)
        min_distance = max(1e-9, cfg.min_distance)

        for iteration in range(1, max(1, cfg.max_iterations) + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise RenderCancelled("layout cancelled")

            fx = [0.0] * count
            fy = [0.0] * count

            for i in range(count):
                for j in range(i + 1, count):
                    dx = xs[i] - xs[j]
                    dy = ys[i] - ys[j]
                    dist = math.hypot(dx, dy)
                    if dist < 1e-12:
                        # Coincident nodes: push apart along a fixed direction.
                        dx, dy, dist = 1.0, 0.0, 1.0
                    force = cfg.repulsion / max(dist, min_distance) ** 2
                    ux, uy = dx / dist, dy / dist
                    fx[i] += force * ux
                    fy[i] += force * uy
                    fx[j] -= force * ux
                    fy[j] -= force * uy

            for i, j, strength in springs:
                dx = xs[j] - xs[i]
                dy = ys[j] - ys[i]
                dist = math.hypot(dx, dy)
                if dist < 1e-12:
                    continue
                force = cfg.spring * strength * (dist - cfg.ideal_edge_length)
                ux, uy = dx / dist, dy / dist
                fx[i] += force * ux
                fy[i] += force * uy
                fx[j] -= force * ux
                fy[j] -= force * uy

            cx = sum(xs) / count
            cy = sum(ys) / count
            largest = 0.0
            for i in range(count):
                sx = (fx[i] - cfg.gravity * (xs[i] - cx)) * cfg.step_size
                sy = (fy[i] - cfg.gravity * (ys[i] - cy)) * cfg.step_size
                length = math.hypot(sx, sy)
                if length > temperature:
                    sx *= temperature / length
                    sy *= temperature / length
                    length = temperature
                xs[i] += sx
                ys[i] += sy
                largest = max(largest, length)

            if largest < cfg.convergence_epsilon:
                return iteration, True
            temperature *= cfg.damping

        return max(1, cfg.max_iterations), False

    @staticmethod
    def _normalize(
        node_ids: list[str],
        xs: list[float],
        ys: list[float],
    ) -> tuple[tuple[float, float], float, dict[str, tuple[float, float]]]:
        cx = (min(xs) + max(xs)) / 2.0
        cy = (min(ys) + max(ys)) / 2.0
        extent = max(max(abs(x - cx) for x in xs), max(abs(y - cy) for y in ys))
        scale = extent if extent > 1e-9 else 1.0
        positions = {
            user_id: ((xs[i] - cx) / scale, (ys[i] - cy) / scale)
            for i, user_id in enumerate(node_ids)
        }
        return (cx, cy), scale, positions

    def _clusters(
        self,
        node_ids: list[str],
        adjacency: dict[str, list[tuple[str, float]]],
        previous: Layout | None,
    ) -> dict[str, int]:
        parent = {user_id: user_id for user_id in node_ids}

        def find(user_id: str) -> str:
            while parent[user_id] != user_id:
                parent[user_id] = parent[parent[user_id]]
                user_id = parent[user_id]
            return user_id

        for user_id, links in adjacency.items():
            for other, weight in links:
                if weight < self.config.negligible_weight:
                    continue
                root_a, root_b = find(user_id), find(other)
                if root_a != root_b:
                    # Smallest id becomes the root.
                    if root_b < root_a:
                        root_a, root_b = root_b, root_a
                    parent[root_b] = root_a

        components: dict[str, list[str]] = defaultdict(list)
        for user_id in node_ids:
            components[find(user_id)].append(user_id)

        # Largest components claim their previous ids first.
        ordered = sorted(components.values(), key=lambda members: (-len(members), members[0]))
        prior = dict(previous.clusters) if previous is not None else {}
        if not prior:
            by_first_member = sorted(ordered, key=lambda members: members[0])
            return {
                user_id: cluster_id
                for cluster_id, members in enumerate(by_first_member)
                for user_id in members
            }

        taken: set[int] = set()
        next_id = max(prior.values()) + 1
        clusters: dict[str, int] = {}
        for members in ordered:
            votes: dict[int, int] = defaultdict(int)
            for user_id in members:
                if user_id in prior:
                    votes[prior[user_id]] += 1
            choice = None
            for cluster_id, _ in sorted(votes.items(), key=lambda item: (-item[1], item[0])):
                if cluster_id not in taken:
                    choice = cluster_id
                    break
            if choice is None:
                choice = next_id
                next_id += 1
            taken.add(choice)
            for user_id in members:
                clusters[user_id] = choice
        return clusters

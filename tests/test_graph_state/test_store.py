from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from graph_state.config import GraphConfig
from graph_state.store import InMemoryGraphStore
from social_graph.errors import InvalidEvent
from social_graph.models import ChatEvent, GraphLifecycle, Layout
from social_graph.wire_models import GuildGraphValue

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_config(**overrides) -> GraphConfig:
    values = dict(
        decay_half_life_seconds=1e12,
        weight_cap=10.0,
        prune_epsilon=0.05,
        retention_seconds=30 * 24 * 3600.0,
        prune_interval_seconds=300.0,
        mention_weight=1.0,
        reply_weight=2.0,
        reaction_weight=0.1,
        ambient_weight=0.5,
        ambient_max_speakers=3,
        ambient_window_seconds=120.0,
        channel_history_size=16,
        ignore_bots=True,
    )
    values.update(overrides)
    return GraphConfig(**values)


def mention(guild: str, speaker: str, target: str, seconds: float = 0.0, channel: str = "general") -> ChatEvent:
    return ChatEvent(
        guild_id=guild,
        speaker_id=speaker,
        channel_id=channel,
        timestamp=T0 + timedelta(seconds=seconds),
        mentions=[target],
    )


def test_unknown_guild_is_created_on_apply() -> None:
    store = InMemoryGraphStore(make_config())

    summary = asyncio.run(store.apply("g1", mention("g1", "alice", "bob")))
    snapshot = asyncio.run(store.snapshot("g1"))

    assert summary.node_count == 2
    assert summary.edge_count == 1
    assert snapshot.node_ids() == ["alice", "bob"]
    assert [(edge.user_a, edge.user_b, edge.weight) for edge in snapshot.edges] == [("alice", "bob", 1.0)]
    assert snapshot.version == 1


def test_snapshot_of_unknown_guild_is_empty_and_creates_nothing() -> None:
    store = InMemoryGraphStore(make_config())

    snapshot = asyncio.run(store.snapshot("nobody"))

    assert snapshot.is_empty
    assert snapshot.edges == ()
    assert asyncio.run(store.guild_sizes()) == []


def test_snapshots_without_intervening_apply_are_equal() -> None:
    store = InMemoryGraphStore(make_config())

    async def scenario():
        await store.apply("g1", mention("g1", "alice", "bob"))
        first = await store.snapshot("g1")
        layout = Layout(guild_id="g1", positions={"alice": (0.0, 0.0), "bob": (1.0, 0.0)}, clusters={})
        await store.remember_render(first, layout, {("alice", "bob"): "acquainted (one-sided)"})
        second = await store.snapshot("g1")
        await store.apply("g1", mention("g1", "bob", "alice", 5))
        third = await store.snapshot("g1")
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert first == second
    assert second.nodes[0].position == (0.0, 0.0)
    assert second.edges[0].label == "acquainted (one-sided)"
    assert third != second
    assert third.edges[0].label is None


def test_snapshot_is_detached_from_later_mutations() -> None:
    store = InMemoryGraphStore(make_config())

    async def scenario():
        await store.apply("g1", mention("g1", "alice", "bob"))
        before = await store.snapshot("g1")
        await store.apply("g1", mention("g1", "alice", "carol", 1))
        return before

    before = asyncio.run(scenario())

    assert before.node_ids() == ["alice", "bob"]
    assert len(before.edges) == 1


def test_apply_rejects_event_for_another_guild() -> None:
    store = InMemoryGraphStore(make_config())

    with pytest.raises(InvalidEvent) as exc_info:
        asyncio.run(store.apply("g1", mention("g2", "alice", "bob")))

    assert exc_info.value.reason == InvalidEvent.GUILD_MISMATCH


def test_remove_moves_graph_to_removed_and_next_apply_starts_fresh() -> None:
    store = InMemoryGraphStore(make_config())

    async def scenario():
        await store.apply("g1", mention("g1", "alice", "bob"))
        handle = await store.get_or_create("g1")
        removed = await store.remove("g1")
        await store.apply("g1", mention("g1", "carol", "dave", 10))
        fresh = await store.snapshot("g1")
        return handle, removed, fresh

    handle, removed, fresh = asyncio.run(scenario())

    assert removed
    assert handle.state is GraphLifecycle.REMOVED
    assert handle.nodes == {}
    assert fresh.node_ids() == ["carol", "dave"]
    assert fresh.version == 1


def test_remove_of_unknown_or_uninitialized_guild() -> None:
    store = InMemoryGraphStore(make_config())

    async def scenario():
        missing = await store.remove("nobody")
        handle = await store.get_or_create("quiet")
        dropped = await store.remove("quiet")
        return missing, handle, dropped

    missing, handle, dropped = asyncio.run(scenario())

    assert missing is False
    assert dropped is True
    # No direct transition from uninitialized to removed.
    assert handle.state is GraphLifecycle.UNINITIALIZED


def test_remove_channel_forgets_ambient_history() -> None:
    store = InMemoryGraphStore(make_config())
    quiet = ChatEvent(guild_id="g1", speaker_id="alice", channel_id="general", timestamp=T0)
    reply = ChatEvent(guild_id="g1", speaker_id="bob", channel_id="general", timestamp=T0 + timedelta(seconds=5))

    async def scenario():
        with pytest.raises(InvalidEvent):
            await store.apply("g1", quiet)
        removed = await store.remove_channel("g1", "general")
        with pytest.raises(InvalidEvent):
            await store.apply("g1", reply)
        return removed

    assert asyncio.run(scenario()) is True


def test_weight_cap_change_clamps_existing_edges() -> None:
    store = InMemoryGraphStore(make_config())

    async def scenario():
        for i in range(4):
            await store.apply("g1", mention("g1", "alice", "bob", i))
        settings = await store.set_weight_cap("g1", 2.5)
        snapshot = await store.snapshot("g1")
        return settings, snapshot

    settings, snapshot = asyncio.run(scenario())

    assert settings.weight_cap == 2.5
    assert snapshot.weight_cap == 2.5
    assert snapshot.edges[0].weight == 2.5

    with pytest.raises(ValueError):
        asyncio.run(store.set_weight_cap("g1", 0))


def test_decay_half_life_change_applies_to_reads() -> None:
    store = InMemoryGraphStore(make_config())

    async def scenario():
        await store.apply("g1", mention("g1", "alice", "bob"))
        await store.set_decay_half_life("g1", 60.0)
        return await store.snapshot("g1")

    snapshot = asyncio.run(scenario())
    edge = snapshot.edges[0]

    assert snapshot.decay_half_life == 60.0
    assert edge.weight_at(T0 + timedelta(seconds=60), snapshot.decay_half_life) == pytest.approx(0.36787944)

    with pytest.raises(ValueError):
        asyncio.run(store.set_decay_half_life("g1", -5))


def test_concurrent_applies_are_serialized_per_guild() -> None:
    store = InMemoryGraphStore(make_config(weight_cap=1_000.0))

    async def scenario():
        events = []
        for i in range(100):
            events.append(store.apply("g1", mention("g1", "alice", "bob", i)))
            events.append(store.apply("g2", mention("g2", "bob", "alice", i)))
        await asyncio.gather(*events)
        return await store.snapshot("g1"), await store.snapshot("g2")

    first, second = asyncio.run(scenario())

    assert first.edges[0].count_ab == 100
    assert first.edges[0].weight == pytest.approx(100.0)
    assert second.edges[0].count_ba == 100
    assert first.version == 100
    assert second.version == 100


def test_guild_sizes_are_sorted_by_edge_count() -> None:
    store = InMemoryGraphStore(make_config())

    async def scenario():
        await store.apply("small", mention("small", "a", "b"))
        for target in ("b", "c", "d"):
            await store.apply("big", mention("big", "a", target))
        return await store.guild_sizes()

    sizes = asyncio.run(scenario())

    assert [item["guild_id"] for item in sizes] == ["big", "small"]
    assert sizes[0]["edge_count"] == 3
    assert sizes[0]["node_count"] == 4


def test_restore_rebuilds_graph_from_persistence_format() -> None:
    source = InMemoryGraphStore(make_config())

    async def build():
        await source.apply("g1", mention("g1", "alice", "bob"))
        await source.apply("g1", mention("g1", "carol", "alice", 3))
        return await source.snapshot("g1")

    original = asyncio.run(build())
    payload = GuildGraphValue.from_domain(original, saved_at=T0).model_dump_json(by_alias=True)

    target = InMemoryGraphStore(make_config())
    restored = asyncio.run(target.restore(GuildGraphValue.model_validate_json(payload).to_domain()))
    copy = asyncio.run(target.snapshot("g1"))

    assert restored
    assert copy == original
    assert asyncio.run(target.get_or_create("g1")).state is GraphLifecycle.ACTIVE


def test_restore_never_overwrites_a_live_guild() -> None:
    store = InMemoryGraphStore(make_config())

    async def scenario():
        await store.apply("g1", mention("g1", "alice", "bob"))
        stale = await store.snapshot("g1")
        await store.apply("g1", mention("g1", "alice", "carol", 1))
        return await store.restore(stale), await store.snapshot("g1")

    restored, current = asyncio.run(scenario())

    assert restored is False
    assert len(current.edges) == 2


def test_remember_render_does_not_resurrect_removed_guild() -> None:
    store = InMemoryGraphStore(make_config())

    async def scenario():
        await store.apply("g1", mention("g1", "alice", "bob"))
        snapshot = await store.snapshot("g1")
        await store.remove("g1")
        layout = Layout(guild_id="g1", positions={"alice": (0.0, 0.0)}, clusters={})
        stored = await store.remember_render(snapshot, layout, {})
        return stored, await store.guild_sizes()

    stored, sizes = asyncio.run(scenario())

    assert stored is False
    assert sizes == []


def test_remember_render_ignores_guild_recreated_after_reset() -> None:
    store = InMemoryGraphStore(make_config())

    async def scenario():
        await store.apply("g1", mention("g1", "alice", "bob"))
        old = await store.snapshot("g1")
        await store.remove("g1")
        await store.apply("g1", mention("g1", "alice", "carol", seconds=5))
        layout = Layout(guild_id="g1", positions={"alice": (-1.0, 1.0), "bob": (1.0, -1.0)}, clusters={})
        stored = await store.remember_render(old, layout, {("alice", "bob"): "close (mutual)"})
        fresh = await store.snapshot("g1")
        previous, stale = await store.previous_layout("g1")
        return stored, old, fresh, previous, stale

    stored, old, fresh, previous, stale = asyncio.run(scenario())

    assert stored is False
    assert fresh.generation != old.generation
    assert all(node.position is None for node in fresh.nodes)
    assert previous is None
    assert stale is True


def test_graph_inspection_and_metrics() -> None:
    store = InMemoryGraphStore(make_config())
    asyncio.run(store.apply("g1", mention("g1", "alice", "bob")))

    graph = asyncio.run(store.get_guild_graph("g1", at=T0))
    metrics = asyncio.run(store.get_metrics())

    assert graph["node_count"] == 2
    assert graph["edges"][0]["current_weight"] == 1.0
    assert {node["degree"] for node in graph["nodes"]} == {1}
    assert asyncio.run(store.get_guild_graph("missing")) is None
    assert metrics["guild_count"] == 1
    assert "memory_current_bytes" in metrics

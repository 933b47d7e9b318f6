from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from graph_algorithms.classifier import RelationshipClassifier
from graph_algorithms.config import ClassificationRule, ClassifierConfig, parse_classifier_rules
from graph_state.config import GraphConfig
from graph_state.store import InMemoryGraphStore
from social_graph.models import ChatEvent, EdgeStats

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
DAY = 24 * 3600.0


def make_classifier() -> RelationshipClassifier:
    return RelationshipClassifier(
        ClassifierConfig(
            rules=[
                ClassificationRule("close", 6.0, 14 * DAY),
                ClassificationRule("frequent", 3.0),
                ClassificationRule("acquainted", 0.5),
            ],
            fallback_category="stranger",
            symmetry_threshold=0.5,
        )
    )


def make_store() -> InMemoryGraphStore:
    return InMemoryGraphStore(
        GraphConfig(
            decay_half_life_seconds=7 * DAY,
            weight_cap=10.0,
            prune_epsilon=0.05,
            retention_seconds=30 * DAY,
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
    )


def test_rules_are_evaluated_in_order() -> None:
    classifier = make_classifier()

    assert classifier.classify(EdgeStats(9.0, 60.0, 5, 5)).category == "close"
    assert classifier.classify(EdgeStats(4.0, 60.0, 5, 5)).category == "frequent"
    assert classifier.classify(EdgeStats(1.0, 60.0, 1, 0)).category == "acquainted"


def test_age_limit_demotes_old_strong_edges() -> None:
    classifier = make_classifier()

    assert classifier.classify(EdgeStats(8.0, 30 * DAY, 4, 4)).category == "frequent"


def test_symmetry_selects_qualifier() -> None:
    classifier = make_classifier()

    assert str(classifier.classify(EdgeStats(4.0, 0.0, 10, 1))) == "frequent (one-sided)"
    assert str(classifier.classify(EdgeStats(4.0, 0.0, 10, 5))) == "frequent (mutual)"
    assert str(classifier.classify(EdgeStats(4.0, 0.0, 0, 0))) == "frequent (one-sided)"


def test_fallback_category_has_no_qualifier() -> None:
    label = make_classifier().classify(EdgeStats(0.1, 0.0, 3, 3))

    assert label.category == "stranger"
    assert label.qualifier is None
    assert str(label) == "stranger"


def test_identical_statistics_give_identical_labels() -> None:
    classifier = make_classifier()
    stats = EdgeStats(3.0, 120.0, 2, 1)

    labels = {classifier.classify(stats) for _ in range(10)}
    assert labels == {classifier.classify(EdgeStats(3.0, 120.0, 2, 1))}
    assert len(labels) == 1


def test_single_mention_is_acquainted() -> None:
    store = make_store()
    snapshot = asyncio.run(
        _apply_and_snapshot(store, [ChatEvent("g1", "alice", "general", T0, mentions=["bob"])])
    )

    edge = snapshot.edges[0]
    label = make_classifier().classify(edge.stats_at(T0, snapshot.decay_half_life))

    assert label.category == "acquainted"


def test_sustained_two_way_conversation_becomes_close_and_mutual() -> None:
    store = make_store()
    events = []
    for i in range(1000):
        speaker, target = ("alice", "bob") if i % 2 == 0 else ("bob", "alice")
        events.append(ChatEvent("g1", speaker, "general", T0 + timedelta(seconds=i), mentions=[target]))

    snapshot = asyncio.run(_apply_and_snapshot(store, events))
    edge = snapshot.edges[0]
    at = T0 + timedelta(seconds=1000)
    label = make_classifier().classify(edge.stats_at(at, snapshot.decay_half_life))

    assert edge.weight == 10.0
    assert (edge.count_ab, edge.count_ba) == (500, 500)
    assert str(label) == "close (mutual)"


def test_parse_classifier_rules() -> None:
    rules = parse_classifier_rules("close:6:1209600, frequent:3,acquainted:0.5")

    assert rules == [
        ClassificationRule("close", 6.0, 1209600.0),
        ClassificationRule("frequent", 3.0),
        ClassificationRule("acquainted", 0.5),
    ]
    with pytest.raises(ValueError):
        parse_classifier_rules("close")
    with pytest.raises(ValueError):
        parse_classifier_rules(":1.0")


async def _apply_and_snapshot(store: InMemoryGraphStore, events: list[ChatEvent]):
    for event in events:
        await store.apply(event.guild_id, event)
    return await store.snapshot("g1")

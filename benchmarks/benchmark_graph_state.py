from __future__ import annotations

import asyncio
import random
import time
from datetime import timedelta

from graph_state.store import InMemoryGraphStore
from social_graph.decay import utc_now
from social_graph.errors import InvalidEvent
from social_graph.models import ChatEvent


def make_event(i: int, started, members: list[str], channels: list[str]) -> ChatEvent:
    speaker = random.choice(members)
    roll = random.random()
    mentions: list[str] = []
    reply_to = None
    if roll < 0.3:
        mentions = random.sample(members, 2)
    elif roll < 0.5:
        reply_to = random.choice(members)
    return ChatEvent(
        guild_id=f"guild-{i % 8}",
        speaker_id=speaker,
        channel_id=random.choice(channels),
        timestamp=started + timedelta(seconds=i),
        mentions=mentions,
        reply_to_speaker_id=reply_to,
    )


async def run_benchmark(iterations: int = 20000) -> None:
    random.seed(42)
    store = InMemoryGraphStore()
    members = [f"user-{i}" for i in range(400)]
    channels = [f"channel-{i}" for i in range(12)]

    started = time.perf_counter()
    now = utc_now() - timedelta(seconds=iterations)
    rejected = 0

    for i in range(iterations):
        event = make_event(i, now, members, channels)
        try:
            await store.apply(event.guild_id, event)
        except InvalidEvent:
            rejected += 1

    elapsed = time.perf_counter() - started
    events_per_second = iterations / elapsed if elapsed > 0 else 0.0
    metrics = await store.get_metrics()

    print(f"iterations={iterations}")
    print(f"rejected={rejected}")
    print(f"elapsed_sec={elapsed:.4f}")
    print(f"events_per_second={events_per_second:.2f}")
    print(f"guild_count={metrics['guild_count']}")
    print(f"node_count={metrics['node_count']}")
    print(f"edge_count={metrics['edge_count']}")
    print(f"memory_current_bytes={metrics['memory_current_bytes']}")
    print(f"memory_peak_bytes={metrics['memory_peak_bytes']}")
    print(f"memory_rss_kb={metrics['memory_rss_kb']}")


if __name__ == "__main__":
    asyncio.run(run_benchmark())

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from confluent_kafka import Consumer, Producer
from pydantic import ValidationError

from social_graph.errors import InvalidEvent
from social_graph.wire_models import ChatEventValue, GuildLifecycleValue

from .config import RuntimeConfig, load_runtime_config
from .store import InMemoryGraphStore

if TYPE_CHECKING:
    from graph_algorithms.service import RenderService
    from storage_service.persistence import PersistenceManager


class GraphStreamWorker:
    """Consumes chat events and guild lifecycle events, publishes graph changes."""

    def __init__(
        self,
        store: InMemoryGraphStore,
        config: RuntimeConfig | None = None,
        consumer: Any | None = None,
        producer: Any | None = None,
        persistence: PersistenceManager | None = None,
        renders: RenderService | None = None,
    ) -> None:
        self._store = store
        self._config = config or load_runtime_config()
        self._persistence = persistence
        self._renders = renders
        self._logger = logging.getLogger("graph-state-worker")
        self._running = False
        self._task: asyncio.Task | None = None
        self._consumer = consumer
        self._producer = producer

    def _ensure_clients(self) -> None:
        if self._consumer is None:
            self._consumer = Consumer(
                {
                    "bootstrap.servers": self._config.bootstrap_servers,
                    "group.id": self._config.group_id,
                    "auto.offset.reset": self._config.auto_offset_reset,
                    "enable.auto.commit": True,
                }
            )
        if self._producer is None:
            self._producer = Producer({"bootstrap.servers": self._config.bootstrap_servers})

    async def handle_chat_event(self, raw: bytes) -> dict[str, Any] | None:
        value = ChatEventValue.model_validate_json(raw.decode("utf-8"))
        event = value.to_domain()
        try:
            summary = await self._store.apply(event.guild_id, event)
        except InvalidEvent:
            # Already counted by the store; rejected events are routine.
            return None

        if self._persistence is not None:
            await self._persistence.record_interaction(summary)

        change_event = summary.to_change_event()
        self._producer.produce(
            topic=self._config.graph_changes_topic,
            key=summary.guild_id.encode("utf-8"),
            value=json.dumps(change_event).encode("utf-8"),
        )
        self._producer.poll(0)
        return change_event

    async def handle_lifecycle_event(self, raw: bytes) -> None:
        value = GuildLifecycleValue.model_validate_json(raw.decode("utf-8"))
        if value.event == "channel_delete":
            if value.channel_id:
                await self._store.remove_channel(value.guild_id, value.channel_id)
            return

        if self._renders is not None:
            self._renders.cancel(value.guild_id)
        await self._store.remove(value.guild_id)
        if self._persistence is not None:
            await self._persistence.forget(value.guild_id)
        self._logger.info("guild lifecycle event guild=%s event=%s", value.guild_id, value.event)

    async def _consume_loop(self) -> None:
        topics = [self._config.chat_events_topic, self._config.lifecycle_topic]
        self._consumer.subscribe(topics)
        self._logger.info("graph stream worker subscribed topics=%s", ",".join(topics))

        while self._running:
            messages = await asyncio.to_thread(
                self._consumer.consume, num_messages=self._config.batch_size, timeout=1.0
            )
            valid = [msg for msg in messages if msg is not None and msg.error() is None]
            if not valid:
                await asyncio.sleep(0)
                continue

            for msg in valid:
                try:
                    if msg.topic() == self._config.lifecycle_topic:
                        await self.handle_lifecycle_event(msg.value())
                    else:
                        await self.handle_chat_event(msg.value())
                except ValidationError as exc:
                    self._logger.warning("dropping malformed message topic=%s errors=%d", msg.topic(), exc.error_count())
                except Exception:
                    self._logger.exception("failed to process graph stream message")

        self._producer.flush(5)
        self._consumer.close()

    async def start(self) -> None:
        if self._running:
            return
        self._ensure_clients()
        self._running = True
        self._task = asyncio.create_task(self._consume_loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            await self._task
            self._task = None

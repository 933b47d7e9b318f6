from __future__ import annotations

import logging
from collections import deque

from social_graph.decay import decayed_weight
from social_graph.errors import InvalidEvent
from social_graph.models import (
    ChatEvent,
    ChatEventKind,
    EdgeChange,
    GraphLifecycle,
    InteractionEvent,
    MutationSummary,
    SourceKind,
)

from .config import GraphConfig
from .models import GuildGraph


class InteractionRecorder:
    """Turns raw chat events into weighted edge updates on a guild graph.

    Addressees are inferred in priority order:
    1. explicit mentions,
    2. the author of the replied-to message when nothing is mentioned,
    3. ambient proximity: up to K distinct recent speakers in the same channel
       within a window of T seconds, sharing the ambient contribution by
       inverse recency rank (1, 1/2, 1/3, ... normalized).

    Reactions are explicit single-target interactions and never feed ambient
    history. Edges decay lazily: ``w' = w * exp(-dt / tau)`` is applied right
    before a contribution is added, then clamped to the guild's weight cap.

    The caller must hold ``graph.lock``.
    """

    def __init__(self, config: GraphConfig) -> None:
        self.config = config
        self._logger = logging.getLogger("graph-state-recorder")

    def record(self, graph: GuildGraph, event: ChatEvent) -> MutationSummary:
        interaction = self.infer(graph, event)
        return self.apply(graph, interaction)

    def infer(self, graph: GuildGraph, event: ChatEvent) -> InteractionEvent:
        speaker = (event.speaker_id or "").strip()
        if not speaker:
            raise InvalidEvent(InvalidEvent.MISSING_SPEAKER, f"guild={event.guild_id} channel={event.channel_id}")
        if event.guild_id != graph.guild_id:
            raise InvalidEvent(InvalidEvent.GUILD_MISMATCH, f"event={event.guild_id} graph={graph.guild_id}")
        if event.speaker_is_bot and self.config.ignore_bots:
            raise InvalidEvent(InvalidEvent.BOT_SPEAKER, f"speaker={speaker}")

        source, addressees = self._explicit_addressees(speaker, event)
        if event.kind is ChatEventKind.MESSAGE:
            if not addressees:
                source = SourceKind.AMBIENT
                addressees = self._ambient_addressees(graph, speaker, event)
            self._remember_speaker(graph, speaker, event)

        if not addressees:
            raise InvalidEvent(InvalidEvent.NO_ADDRESSEE, f"speaker={speaker} channel={event.channel_id}")

        return InteractionEvent(
            guild_id=graph.guild_id,
            speaker_id=speaker,
            channel_id=event.channel_id,
            timestamp=event.timestamp,
            source=source,
            addressees=addressees,
        )

    def _explicit_addressees(self, speaker: str, event: ChatEvent) -> tuple[SourceKind, dict[str, float]]:
        reply_to = (event.reply_to_speaker_id or "").strip()

        if event.kind is ChatEventKind.REACTION:
            if reply_to and reply_to != speaker:
                return SourceKind.REACTION, {reply_to: self.config.reaction_weight}
            return SourceKind.REACTION, {}

        mentioned: dict[str, float] = {}
        for user_id in event.mentions:
            user_id = user_id.strip()
            if user_id and user_id != speaker:
                mentioned[user_id] = self.config.mention_weight
        if mentioned:
            return SourceKind.MENTION, mentioned

        if reply_to and reply_to != speaker:
            return SourceKind.REPLY, {reply_to: self.config.reply_weight}
        return SourceKind.MENTION, {}

    def _ambient_addressees(self, graph: GuildGraph, speaker: str, event: ChatEvent) -> dict[str, float]:
        history = graph.channel_history.get(event.channel_id)
        if not history or self.config.ambient_max_speakers <= 0:
            return {}

        recent: list[str] = []
        # Newest entries sit at the right end.
        for other, spoke_at in reversed(history):
            age = (event.timestamp - spoke_at).total_seconds()
            if age > self.config.ambient_window_seconds:
                break
            if age < 0 or other == speaker or other in recent:
                continue
            recent.append(other)
            if len(recent) >= self.config.ambient_max_speakers:
                break

        if not recent:
            return {}
        ranks = [1.0 / (index + 1) for index in range(len(recent))]
        total = sum(ranks)
        return {other: self.config.ambient_weight * rank / total for other, rank in zip(recent, ranks)}

    def _remember_speaker(self, graph: GuildGraph, speaker: str, event: ChatEvent) -> None:
        history = graph.channel_history.get(event.channel_id)
        if history is None:
            history = deque(maxlen=max(1, self.config.channel_history_size))
            graph.channel_history[event.channel_id] = history
        if history and event.timestamp < history[-1][1]:
            # Late arrival; ambient order is defined by arrival.
            history.append((speaker, history[-1][1]))
            return
        history.append((speaker, event.timestamp))

    def apply(self, graph: GuildGraph, interaction: InteractionEvent) -> MutationSummary:
        speaker = interaction.speaker_id
        targets = {user_id: weight for user_id, weight in interaction.addressees.items() if user_id != speaker}
        if not targets:
            raise InvalidEvent(InvalidEvent.NO_ADDRESSEE, f"speaker={speaker}")

        now = interaction.timestamp
        cap = graph.settings.weight_cap
        half_life = graph.settings.decay_half_life

        summary = MutationSummary(
            guild_id=graph.guild_id,
            speaker_id=speaker,
            channel_id=interaction.channel_id,
            source=interaction.source,
            timestamp=now,
        )

        if graph.upsert_node(speaker, now, activity=1.0):
            summary.created_nodes.append(speaker)

        for addressee in sorted(targets):
            contribution = max(0.0, float(targets[addressee]))
            if graph.upsert_node(addressee, now):
                summary.created_nodes.append(addressee)

            edge, created = graph.get_or_create_edge(speaker, addressee, now)
            old_weight = decayed_weight(edge.weight, edge.last_update, now, half_life)
            edge.weight = min(cap, old_weight + contribution)
            if now > edge.last_update:
                edge.last_update = now
            if speaker == edge.user_a:
                edge.count_ab += 1
            else:
                edge.count_ba += 1
            edge.label = None

            summary.edge_changes.append(
                EdgeChange(
                    user_a=edge.user_a,
                    user_b=edge.user_b,
                    old_weight=old_weight,
                    new_weight=edge.weight,
                    created=created,
                )
            )

        if graph.state is GraphLifecycle.UNINITIALIZED:
            graph.transition(GraphLifecycle.ACTIVE)
        graph.mark_changed()

        summary.node_count = len(graph.nodes)
        summary.edge_count = len(graph.edges)
        self._logger.debug(
            "recorded guild=%s speaker=%s source=%s edges=%d",
            graph.guild_id,
            speaker,
            interaction.source.value,
            len(summary.edge_changes),
        )
        return summary

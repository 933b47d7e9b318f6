from .decay import decay_factor, decayed_weight, elapsed_seconds, utc_now
from .errors import InvalidEvent, PersistenceFailure, RenderCancelled
from .models import (
    ChatEvent,
    ChatEventKind,
    Edge,
    EdgeChange,
    EdgeRecord,
    EdgeStats,
    GraphLifecycle,
    InteractionEvent,
    Label,
    LabeledEdge,
    Layout,
    MutationSummary,
    Node,
    NodeRecord,
    PruneReport,
    RenderResult,
    Snapshot,
    SourceKind,
)
from .wire_models import (
    ChatEventValue,
    DecayHalfLifeValue,
    EdgeValue,
    GuildGraphValue,
    GuildLifecycleValue,
    NodeValue,
    RenderResultValue,
    WeightCapValue,
)

__all__ = [
    "ChatEvent",
    "ChatEventKind",
    "ChatEventValue",
    "DecayHalfLifeValue",
    "Edge",
    "EdgeChange",
    "EdgeRecord",
    "EdgeStats",
    "EdgeValue",
    "GraphLifecycle",
    "GuildGraphValue",
    "GuildLifecycleValue",
    "InteractionEvent",
    "InvalidEvent",
    "Label",
    "LabeledEdge",
    "Layout",
    "MutationSummary",
    "Node",
    "NodeRecord",
    "NodeValue",
    "PersistenceFailure",
    "PruneReport",
    "RenderCancelled",
    "RenderResult",
    "RenderResultValue",
    "Snapshot",
    "SourceKind",
    "WeightCapValue",
    "decay_factor",
    "decayed_weight",
    "elapsed_seconds",
    "utc_now",
]

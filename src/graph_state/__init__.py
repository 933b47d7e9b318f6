from .config import GraphConfig, RuntimeConfig, load_graph_config, load_runtime_config
from .models import GuildGraph, GuildSettings
from .pruner import PruneScheduler
from .recorder import InteractionRecorder
from .store import InMemoryGraphStore

__all__ = [
    "GraphConfig",
    "GuildGraph",
    "GuildSettings",
    "InMemoryGraphStore",
    "InteractionRecorder",
    "PruneScheduler",
    "RuntimeConfig",
    "load_graph_config",
    "load_runtime_config",
]

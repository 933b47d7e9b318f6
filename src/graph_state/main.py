from __future__ import annotations

import asyncio
import logging
import signal

from graph_algorithms.service import RenderService
from social_graph.errors import PersistenceFailure
from storage_service.config import load_config as load_storage_config
from storage_service.persistence import PersistenceManager, build_repository

from .config import load_runtime_config
from .pruner import PruneScheduler
from .store import InMemoryGraphStore
from .stream_worker import GraphStreamWorker


async def run() -> None:
    logger = logging.getLogger("graph-state")
    store = InMemoryGraphStore()
    storage_cfg = load_storage_config()

    persistence = None
    try:
        repository = build_repository(storage_cfg)
    except PersistenceFailure:
        logger.exception("persistence backend unavailable, running in memory only")
        repository = None
    if repository is not None:
        persistence = PersistenceManager(
            repository,
            interaction_log=storage_cfg.interaction_log_enabled,
            max_pending=storage_cfg.interaction_buffer_limit,
        )
        await persistence.restore(store)
        await persistence.start(store, storage_cfg.flush_interval_seconds)

    pruner = PruneScheduler(store)
    worker = GraphStreamWorker(store, load_runtime_config(), persistence=persistence, renders=RenderService(store))

    stopped = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stopped.set)

    await pruner.start()
    await worker.start()
    logger.info("graph state service started")
    try:
        await stopped.wait()
    finally:
        await worker.stop()
        await pruner.stop()
        if persistence is not None:
            await persistence.stop(store)
        logger.info("graph state service stopped")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    asyncio.run(run())


if __name__ == "__main__":
    main()

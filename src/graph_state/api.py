from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from graph_algorithms.service import RenderService
from social_graph.decay import utc_now
from social_graph.errors import InvalidEvent, PersistenceFailure, RenderCancelled
from social_graph.wire_models import (
    ChatEventValue,
    DecayHalfLifeValue,
    GuildGraphValue,
    RenderResultValue,
    WeightCapValue,
)
from storage_service.config import load_config as load_storage_config
from storage_service.persistence import PersistenceManager, build_repository

from .config import load_runtime_config
from .pruner import PruneScheduler
from .store import InMemoryGraphStore
from .stream_worker import GraphStreamWorker

logger = logging.getLogger("graph-state-api")

app = FastAPI(title="Social Graph Service")
runtime_cfg = load_runtime_config()
store = InMemoryGraphStore()
renders = RenderService(store)
pruner = PruneScheduler(store)
persistence: PersistenceManager | None = None
worker: GraphStreamWorker | None = None


@app.on_event("startup")
async def startup() -> None:
    global persistence, worker

    storage_cfg = load_storage_config()
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

    await pruner.start()
    if runtime_cfg.stream_enabled:
        worker = GraphStreamWorker(store, runtime_cfg, persistence=persistence, renders=renders)
        await worker.start()


@app.on_event("shutdown")
async def shutdown() -> None:
    if worker is not None:
        await worker.stop()
    await pruner.stop()
    if persistence is not None:
        await persistence.stop(store)


def _invalid(exc: InvalidEvent) -> HTTPException:
    return HTTPException(status_code=422, detail={"reason": exc.reason, "detail": exc.detail})


@app.post("/guilds/{guild_id}/events")
async def post_event(guild_id: str, payload: ChatEventValue) -> dict[str, Any]:
    try:
        summary = await store.apply(guild_id, payload.to_domain())
    except InvalidEvent as exc:
        raise _invalid(exc) from exc
    if persistence is not None:
        await persistence.record_interaction(summary)
    return summary.to_change_event()


@app.get("/guilds/{guild_id}/render", response_model=RenderResultValue)
async def render_guild(guild_id: str) -> RenderResultValue:
    try:
        result = await renders.render(guild_id)
    except RenderCancelled as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return RenderResultValue.from_domain(result)


@app.get("/guilds/{guild_id}/snapshot", response_model=GuildGraphValue)
async def get_snapshot(guild_id: str) -> GuildGraphValue:
    snapshot = await store.snapshot(guild_id)
    return GuildGraphValue.from_domain(snapshot, saved_at=snapshot.taken_at or utc_now())


@app.get("/guilds/{guild_id}/graph")
async def get_guild_graph(guild_id: str) -> dict[str, Any]:
    graph = await store.get_guild_graph(guild_id)
    if graph is None:
        raise HTTPException(status_code=404, detail=f"Guild '{guild_id}' not found")
    return graph


@app.delete("/guilds/{guild_id}")
async def reset_guild(guild_id: str) -> dict[str, Any]:
    cancelled = renders.cancel(guild_id)
    removed = await store.remove(guild_id)
    forgotten = await persistence.forget(guild_id) if persistence is not None else False
    return {"guild_id": guild_id, "removed": removed, "cancelled_renders": cancelled, "storage_deleted": forgotten}


@app.delete("/guilds/{guild_id}/channels/{channel_id}")
async def remove_channel(guild_id: str, channel_id: str) -> dict[str, Any]:
    removed = await store.remove_channel(guild_id, channel_id)
    return {"guild_id": guild_id, "channel_id": channel_id, "removed": removed}


@app.put("/guilds/{guild_id}/settings/decay-half-life")
async def put_decay_half_life(guild_id: str, payload: DecayHalfLifeValue) -> dict[str, Any]:
    try:
        settings = await store.set_decay_half_life(guild_id, payload.decay_half_life)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"guild_id": guild_id, **asdict(settings)}


@app.put("/guilds/{guild_id}/settings/weight-cap")
async def put_weight_cap(guild_id: str, payload: WeightCapValue) -> dict[str, Any]:
    try:
        settings = await store.set_weight_cap(guild_id, payload.weight_cap)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"guild_id": guild_id, **asdict(settings)}


@app.get("/guilds")
async def list_guilds() -> list[dict[str, Any]]:
    return await store.guild_sizes()


@app.post("/graph/prune")
async def prune_now() -> dict[str, Any]:
    report = await pruner.run_once()
    payload = asdict(report)
    payload["pruned_at"] = int(report.pruned_at.timestamp() * 1000)
    return payload


@app.get("/graph/metrics")
async def get_graph_metrics() -> dict[str, Any]:
    return await store.get_metrics()


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

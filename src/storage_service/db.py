from __future__ import annotations

import logging
from typing import Any

import psycopg2
from psycopg2.extras import Json, RealDictCursor, execute_values
from psycopg2.pool import ThreadedConnectionPool
from pydantic import ValidationError

from social_graph.errors import PersistenceFailure
from social_graph.wire_models import GuildGraphValue, epoch_millis_to_datetime

from .config import StorageConfig
from .metrics import PERSISTENCE_FAILURES
from .utils import decode_guild_graph, encode_guild_graph, retry

SCHEMA = """
CREATE TABLE IF NOT EXISTS guild_graphs (
    guild_id TEXT PRIMARY KEY,
    version BIGINT NOT NULL,
    saved_at TIMESTAMPTZ NOT NULL,
    graph_state JSONB NOT NULL
);
CREATE TABLE IF NOT EXISTS interaction_events (
    id BIGSERIAL PRIMARY KEY,
    guild_id TEXT NOT NULL,
    event_time TIMESTAMPTZ NOT NULL,
    speaker_id TEXT NOT NULL,
    channel_id TEXT NOT NULL,
    source TEXT NOT NULL,
    changes JSONB NOT NULL
);
CREATE INDEX IF NOT EXISTS interaction_events_guild_time ON interaction_events (guild_id, event_time);
"""

_TRANSIENT = (psycopg2.OperationalError, psycopg2.InterfaceError)


class StorageRepository:
    def __init__(self, cfg: StorageConfig) -> None:
        self._compress = cfg.compress_payloads
        self._logger = logging.getLogger("graph-persistence")
        try:
            self._pool = ThreadedConnectionPool(cfg.pg_min_conn, cfg.pg_max_conn, dsn=cfg.postgres_dsn)
        except psycopg2.Error as exc:
            raise PersistenceFailure(f"cannot connect to postgres: {exc}") from exc

    def _run(self, query: str, params: tuple | None = None, *, fetch: str | None = None):
        conn = self._pool.getconn()
        try:
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(query, params)
                    if fetch == "one":
                        return cur.fetchone()
                    if fetch == "all":
                        return cur.fetchall()
                    if fetch == "rowcount":
                        return cur.rowcount
                    return None
        finally:
            self._pool.putconn(conn)

    def ensure_schema(self) -> None:
        retry(lambda: self._run(SCHEMA), retry_on=_TRANSIENT, description="create schema")

    def save_guild(self, value: GuildGraphValue) -> None:
        payload = encode_guild_graph(value, compress=self._compress)
        retry(
            lambda: self._run(
                """
                INSERT INTO guild_graphs (guild_id, version, saved_at, graph_state)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (guild_id) DO UPDATE
                SET version = EXCLUDED.version,
                    saved_at = EXCLUDED.saved_at,
                    graph_state = EXCLUDED.graph_state
                """,
                (value.guild_id, value.version, epoch_millis_to_datetime(value.saved_at), Json(payload)),
            ),
            retry_on=_TRANSIENT,
            description=f"save guild {value.guild_id}",
        )

    def _decode(self, row: dict[str, Any]) -> GuildGraphValue:
        try:
            return decode_guild_graph(row["graph_state"])
        except (ValueError, ValidationError) as exc:
            raise PersistenceFailure(f"corrupt graph state for guild {row['guild_id']}: {exc}") from exc

    def load_all(self) -> list[GuildGraphValue]:
        rows = retry(
            lambda: self._run("SELECT guild_id, graph_state FROM guild_graphs ORDER BY guild_id", fetch="all"),
            retry_on=_TRANSIENT,
            description="load guilds",
        )
        values = []
        for row in rows or []:
            try:
                values.append(self._decode(row))
            except PersistenceFailure:
                PERSISTENCE_FAILURES.labels(operation="load").inc()
                self._logger.exception("skipping unreadable guild row guild=%s", row["guild_id"])
        return values

    def delete_guild(self, guild_id: str) -> bool:
        deleted = retry(
            lambda: self._run("DELETE FROM guild_graphs WHERE guild_id = %s", (guild_id,), fetch="rowcount"),
            retry_on=_TRANSIENT,
            description=f"delete guild {guild_id}",
        )
        return bool(deleted)

    def append_interactions(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        values = [
            (
                row["guild_id"],
                epoch_millis_to_datetime(row["timestamp"]),
                row["speaker_id"],
                row["channel_id"],
                row["source"],
                Json(row["relationship_changes"]),
            )
            for row in rows
        ]

        def op() -> None:
            conn = self._pool.getconn()
            try:
                with conn:
                    with conn.cursor() as cur:
                        execute_values(
                            cur,
                            """
                            INSERT INTO interaction_events
                                (guild_id, event_time, speaker_id, channel_id, source, changes)
                            VALUES %s
                            """,
                            values,
                        )
            finally:
                self._pool.putconn(conn)

        retry(op, retry_on=_TRANSIENT, description="append interactions")
        return len(rows)

    def close(self) -> None:
        self._pool.closeall()

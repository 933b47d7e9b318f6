from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from social_graph.errors import PersistenceFailure
from social_graph.wire_models import GuildGraphValue

from .metrics import PERSISTENCE_FAILURES
from .utils import decode_guild_graph, encode_guild_graph, retry

_SAFE_ID = re.compile(r"[A-Za-z0-9_.-]+")
INTERACTIONS_FILE = "interactions.jsonl"


class FileRepository:
    """One JSON document per guild under ``data_dir``, plus a JSON-lines interaction log."""

    def __init__(self, data_dir: str | Path, compress: bool = False) -> None:
        self._root = Path(data_dir)
        self._compress = compress
        self._logger = logging.getLogger("graph-persistence")
        self._root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, guild_id: str) -> Path:
        if not _SAFE_ID.fullmatch(guild_id) or guild_id.startswith("."):
            raise PersistenceFailure(f"guild id {guild_id!r} is not usable as a file name")
        return self._root / f"{guild_id}.json"

    def save_guild(self, value: GuildGraphValue) -> None:
        path = self._path_for(value.guild_id)
        payload = encode_guild_graph(value, compress=self._compress)

        def op() -> None:
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(json.dumps(payload, separators=(",", ":")), encoding="utf-8")
            os.replace(tmp, path)

        retry(op, description=f"save guild {value.guild_id}")

    def _read(self, path: Path) -> GuildGraphValue:
        try:
            raw = retry(lambda: path.read_text(encoding="utf-8"), description=f"read {path.name}")
            return decode_guild_graph(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            raise PersistenceFailure(f"corrupt guild file {path.name}: {exc}") from exc

    def load_all(self) -> list[GuildGraphValue]:
        values = []
        for path in sorted(self._root.glob("*.json")):
            try:
                values.append(self._read(path))
            except PersistenceFailure:
                # One unreadable guild must not keep the others from loading.
                PERSISTENCE_FAILURES.labels(operation="load").inc()
                self._logger.exception("skipping unreadable guild file path=%s", path)
        return values

    def delete_guild(self, guild_id: str) -> bool:
        path = self._path_for(guild_id)

        def op() -> bool:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            return True

        return retry(op, description=f"delete guild {guild_id}")

    def append_interactions(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        path = self._root / INTERACTIONS_FILE

        def op() -> None:
            with path.open("a", encoding="utf-8") as handle:
                for row in rows:
                    handle.write(json.dumps(row, separators=(",", ":")) + "\n")

        retry(op, description="append interactions")
        return len(rows)

    def close(self) -> None:
        return None

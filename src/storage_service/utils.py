from __future__ import annotations

import base64
import json
import time
import zlib
from typing import Any, Callable, TypeVar

from social_graph.errors import PersistenceFailure
from social_graph.wire_models import GuildGraphValue

from .metrics import STORAGE_RETRIES

T = TypeVar("T")

COMPRESSED_ENCODING = "zlib+base64"


def retry(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = (OSError,),
    description: str = "storage operation",
) -> T:
    """Run ``operation`` with exponential backoff on transient errors.

    Exhausted retries and non-transient errors both surface as
    ``PersistenceFailure`` so callers only handle one exception type.
    """
    last_error: BaseException | None = None
    for idx in range(attempts):
        try:
            return operation()
        except retry_on as exc:
            last_error = exc
            if idx == attempts - 1:
                break
            STORAGE_RETRIES.inc()
            time.sleep(base_delay * (2 ** idx))
        except PersistenceFailure:
            raise
        except Exception as exc:  # noqa: BLE001
            raise PersistenceFailure(f"{description} failed: {exc}") from exc
    raise PersistenceFailure(f"{description} failed after {attempts} attempts: {last_error}") from last_error


def compress_json_payload(payload: dict[str, Any]) -> dict[str, str]:
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    zipped = zlib.compress(raw, level=9)
    encoded = base64.b64encode(zipped).decode("ascii")
    return {"encoding": COMPRESSED_ENCODING, "payload": encoded}


def decompress_json_payload(payload: Any) -> dict[str, Any]:
    """Unwrap a compressed payload. Any malformed input raises ``ValueError``."""
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    if payload.get("encoding") != COMPRESSED_ENCODING:
        return payload
    try:
        zipped = base64.b64decode(payload["payload"].encode("ascii"))
        raw = zlib.decompress(zipped)
    except (KeyError, AttributeError, TypeError, zlib.error) as exc:
        raise ValueError(f"unreadable compressed payload: {exc!r}") from exc
    unpacked = json.loads(raw.decode("utf-8"))
    if not isinstance(unpacked, dict):
        raise ValueError(f"expected a JSON object, got {type(unpacked).__name__}")
    return unpacked


def encode_guild_graph(value: GuildGraphValue, compress: bool = False) -> dict[str, Any]:
    payload = value.model_dump(mode="json", by_alias=True)
    return compress_json_payload(payload) if compress else payload


def decode_guild_graph(payload: Any) -> GuildGraphValue:
    return GuildGraphValue.model_validate(decompress_json_payload(payload))

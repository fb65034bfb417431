from __future__ import annotations

import json
from typing import Any, Dict

from fastapi import Request

from bills_agent.core.config import MAX_BODY_BYTES
from bills_agent.core.errors import BadRequest, PayloadTooLarge
from bills_agent.core.logging import logger


async def read_body_bytes(request: Request, limit: int = MAX_BODY_BYTES) -> bytes:
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            if int(declared) > limit:
                raise PayloadTooLarge()
        except ValueError:
            raise BadRequest("Invalid Content-Length header")

    chunks = bytearray()
    async for chunk in request.stream():
        chunks.extend(chunk)
        if len(chunks) > limit:
            logger.warning("Request body exceeded %s bytes", limit)
            raise PayloadTooLarge()
    return bytes(chunks)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a valid JSON number")


async def read_json_body(request: Request) -> Dict[str, Any]:
    """Dependency: the request body as a JSON object, ``{}`` when empty."""
    raw = await read_body_bytes(request)
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw, parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as exc:
        raise BadRequest("Invalid JSON", details=str(exc)) from exc
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")
    return data

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from bills_agent.core.http import read_json_body
from bills_agent.core.logging import logger
from bills_agent.schemas import PushRegisterRequest, PushUnregisterRequest, SendUpcomingRequest, parse_body
from bills_agent.services.push import ExpoPushClient, is_valid_expo_token, send_upcoming
from bills_agent.services.store import BillStore


def build_push_router(store: BillStore, push_client: ExpoPushClient) -> APIRouter:
    router = APIRouter(prefix="/api/push", tags=["push"])

    @router.post("/register")
    async def register_token(body: Dict[str, Any] = Depends(read_json_body)):
        payload = parse_body(PushRegisterRequest, body)
        async with store.mutation():
            added = store.add_token(payload.token, payload.platform or "unknown")
        if added:
            logger.info(
                "Push token registered platform=%s expo_format=%s",
                payload.platform or "unknown",
                is_valid_expo_token(payload.token),
            )
        return {"ok": True, "token": payload.token}

    @router.post("/unregister")
    async def unregister_token(body: Dict[str, Any] = Depends(read_json_body)):
        payload = parse_body(PushUnregisterRequest, body)
        async with store.mutation():
            removed = store.remove_token(payload.token)
        if removed:
            logger.info("Push token unregistered")
        return {"ok": True}

    @router.post("/send-upcoming")
    async def send_upcoming_bills(body: Dict[str, Any] = Depends(read_json_body)):
        payload = parse_body(SendUpcomingRequest, body)
        return await send_upcoming(store, push_client, payload.month)

    return router

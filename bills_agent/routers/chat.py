from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from bills_agent.core.http import read_json_body
from bills_agent.schemas import ChatRequest, parse_body
from bills_agent.services.completions import CompletionClient
from bills_agent.services.projection import current_month_key, project, totals
from bills_agent.services.store import BillStore


def build_chat_router(store: BillStore, completions: CompletionClient) -> APIRouter:
    router = APIRouter(prefix="/api", tags=["chat"])

    @router.post("/chat")
    async def chat(body: Dict[str, Any] = Depends(read_json_body)):
        payload = parse_body(ChatRequest, body)
        month_key = payload.month or current_month_key()
        bills = project(store, month_key)
        reply = await completions.answer(payload.message, month_key, bills, totals(bills))
        return {"reply": reply}

    return router

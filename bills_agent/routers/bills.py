from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response

from bills_agent.core.errors import BadRequest, Conflict, NotFound
from bills_agent.core.http import read_json_body
from bills_agent.core.logging import logger
from bills_agent.schemas import CreateBillRequest, SetPaidRequest, UpdateBillRequest, parse_body
from bills_agent.services.projection import current_month_key, is_month_key, project, totals
from bills_agent.services.store import Bill, BillNotFoundError, BillStore, DuplicateBillError, generate_bill_id
from bills_agent.services.upcoming import select_upcoming, sorted_by_due_day


def resolve_month(month: Optional[str]) -> str:
    if not month:
        return current_month_key()
    if not is_month_key(month):
        raise BadRequest("month must be formatted as YYYY-MM", details=f"got {month!r}")
    return month


def build_bills_router(store: BillStore) -> APIRouter:
    router = APIRouter(prefix="/api", tags=["bills"])

    @router.get("/bills")
    async def list_bills(month: Optional[str] = Query(default=None)):
        month_key = resolve_month(month)
        return [bill.to_dict() for bill in project(store, month_key)]

    @router.post("/bills", status_code=201)
    async def create_bill(body: Dict[str, Any] = Depends(read_json_body)):
        payload = parse_body(CreateBillRequest, body)
        bill = Bill(
            id=payload.id or generate_bill_id(),
            name=payload.name,
            due_day=payload.due_day,
            amount=payload.amount or 0.0,
            notes=payload.notes or "",
        )
        try:
            async with store.mutation():
                store.add_bill(bill)
        except DuplicateBillError as exc:
            logger.warning("Bill create rejected duplicate id=%s", exc.bill_id)
            raise Conflict(str(exc)) from exc
        logger.info("Bill created id=%s due_day=%s", bill.id, bill.due_day)
        return bill.to_dict()

    @router.put("/bills/{bill_id}")
    async def update_bill(bill_id: str, body: Dict[str, Any] = Depends(read_json_body)):
        payload = parse_body(UpdateBillRequest, body)
        try:
            async with store.mutation():
                bill = store.update_bill(bill_id, payload.changes())
        except BillNotFoundError as exc:
            raise NotFound("Bill not found") from exc
        logger.info("Bill updated id=%s fields=%s", bill_id, sorted(payload.changes()))
        return bill.to_dict()

    @router.delete("/bills/{bill_id}", status_code=204)
    async def delete_bill(bill_id: str):
        try:
            async with store.mutation():
                store.remove_bill(bill_id)
        except BillNotFoundError as exc:
            raise NotFound("Bill not found") from exc
        logger.info("Bill deleted id=%s", bill_id)
        return Response(status_code=204)

    @router.post("/bills/{bill_id}/paid")
    async def set_bill_paid(bill_id: str, body: Dict[str, Any] = Depends(read_json_body)):
        payload = parse_body(SetPaidRequest, body)
        month_key = payload.month or current_month_key()
        try:
            async with store.mutation():
                is_paid = store.set_paid(bill_id, month_key, payload.is_paid)
        except BillNotFoundError as exc:
            raise NotFound("Bill not found") from exc
        logger.info("Bill paid flag id=%s month=%s is_paid=%s", bill_id, month_key, is_paid)
        return {"id": bill_id, "month": month_key, "isPaid": is_paid}

    @router.get("/summary")
    async def month_summary(month: Optional[str] = Query(default=None)):
        month_key = resolve_month(month)
        bills = project(store, month_key)
        upcoming = sorted_by_due_day(select_upcoming(bills, date.today()))
        return {
            "month": month_key,
            "totals": totals(bills).to_dict(),
            "upcoming": [bill.to_dict() for bill in upcoming],
        }

    return router

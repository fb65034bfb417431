from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import httpx

from bills_agent.core.config import Settings
from bills_agent.core.errors import UpstreamFailure
from bills_agent.core.logging import logger
from bills_agent.services.projection import ProjectedBill, current_month_key, project
from bills_agent.services.store import BillStore, PushRegistration
from bills_agent.services.upcoming import select_upcoming

EXPO_TOKEN_PREFIX = "ExponentPushToken["
NOTIFICATION_TITLE = "Bills due soon"


class PushDeliveryError(RuntimeError):
    pass


def is_valid_expo_token(token: Any) -> bool:
    return isinstance(token, str) and token.startswith(EXPO_TOKEN_PREFIX)


def deliverable_tokens(registrations: Sequence[PushRegistration]) -> List[str]:
    return [entry.token for entry in registrations if is_valid_expo_token(entry.token)]


def notification_body(bills: Sequence[ProjectedBill]) -> str:
    return "\n".join(f"{bill.name} is due on day {bill.due_day} ({bill.amount:.2f})" for bill in bills)


def build_notifications(tokens: Sequence[str], month: str, bills: Sequence[ProjectedBill]) -> List[Dict[str, Any]]:
    body = notification_body(bills)
    bill_ids = [bill.id for bill in bills]
    return [
        {
            "to": token,
            "sound": "default",
            "title": NOTIFICATION_TITLE,
            "body": body,
            "data": {"month": month, "bills": list(bill_ids)},
        }
        for token in tokens
    ]


class ExpoPushClient:
    def __init__(
        self,
        settings: Settings,
        timeout_seconds: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = settings.expo_push_url
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def send(self, messages: List[Dict[str, Any]]) -> Any:
        """Send a batch of notifications; returns Expo's push tickets."""
        if not messages:
            return []
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                resp = await client.post(self.url, headers=self._headers, json=messages)
        except httpx.HTTPError as exc:
            raise PushDeliveryError(str(exc) or type(exc).__name__) from exc

        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.status_code >= 400:
            logger.error(
                "Expo push error status=%s url=%s response=%s",
                resp.status_code,
                self.url,
                resp.text[:3000],
            )
            raise PushDeliveryError(_failure_message(resp, data))

        if isinstance(data, dict) and isinstance(data.get("data"), list):
            return data["data"]
        return data


def _failure_message(resp: httpx.Response, data: Any) -> str:
    if isinstance(data, dict) and isinstance(data.get("errors"), list):
        messages = [str(err.get("message")) for err in data["errors"] if isinstance(err, dict) and err.get("message")]
        if messages:
            return ", ".join(messages)
    return resp.reason_phrase or "Expo push request failed"


async def send_upcoming(
    store: BillStore,
    client: ExpoPushClient,
    month: Optional[str] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    today = today or date.today()
    month = month or current_month_key(today)
    upcoming = select_upcoming(project(store, month), today)
    if not upcoming:
        return {"sent": 0, "reason": "no-upcoming"}

    tokens = deliverable_tokens(store.push_tokens)
    if not tokens:
        return {"sent": 0, "reason": "no-tokens"}

    notifications = build_notifications(tokens, month, upcoming)
    try:
        tickets = await client.send(notifications)
    except PushDeliveryError as exc:
        logger.warning("Push delivery failed month=%s tokens=%s: %s", month, len(tokens), exc)
        raise UpstreamFailure("Failed to send push notifications", details=str(exc)) from exc

    logger.info("Push sent month=%s bills=%s tokens=%s", month, len(upcoming), len(tokens))
    return {"sent": len(notifications), "tickets": tickets}


async def send_scheduled_reminders(store: BillStore, client: ExpoPushClient) -> None:
    try:
        result = await send_upcoming(store, client)
    except UpstreamFailure as exc:
        logger.error("Scheduled push reminders failed: %s", exc.details or exc.error)
        return
    except Exception:
        logger.exception("Scheduled push reminders crashed")
        return
    logger.info("Scheduled push reminders result sent=%s reason=%s", result["sent"], result.get("reason", "-"))

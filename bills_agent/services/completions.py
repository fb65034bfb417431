from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import httpx

from bills_agent.core.circuit_breaker import CircuitBreaker, CircuitOpenError
from bills_agent.core.config import Settings
from bills_agent.core.errors import ServiceUnavailable, UpstreamFailure
from bills_agent.core.logging import logger
from bills_agent.core.retry import async_retry
from bills_agent.services.projection import BillTotals, ProjectedBill

UNAVAILABLE_REPLY = (
    "The assistant service is unavailable because the OpenAI API key is not configured on the server."
)
EMPTY_REPLY = "I couldn't generate a response just now."


def build_system_prompt(month: str) -> str:
    return (
        "You are BillsGPT, a helpful assistant that answers questions about a user's recurring bills. "
        f"Today's month key is {month}. Be concise but helpful. If the user asks about totals, "
        "compute them from the provided data. If something is unknown, say so."
    )


def describe_bill(bill: ProjectedBill) -> str:
    return (
        f"{bill.name} (id: {bill.id}) - due on day {bill.due_day}, amount {bill.amount:.2f}. "
        f"Notes: {bill.notes or 'none'}. Paid: {'yes' if bill.is_paid else 'no'}."
    )


def build_user_prompt(message: str, month: str, bills: Sequence[ProjectedBill], totals: BillTotals) -> str:
    context = "\n".join(describe_bill(bill) for bill in bills) or "No bills on file."
    return (
        f"Here is the list of bills for {month} with payment status and notes:\n{context}\n\n"
        f"Totals: total due {totals.total:.2f}, paid {totals.paid:.2f}, "
        f"remaining {totals.remaining:.2f}.\n\n"
        f"User question: {message}"
    )


def build_messages(
    message: str, month: str, bills: Sequence[ProjectedBill], totals: BillTotals
) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": build_system_prompt(month)},
        {"role": "user", "content": build_user_prompt(message, month, bills, totals)},
    ]


def _upstream_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"OpenAI request failed with status {response.status_code}"


def _first_reply(data: Any) -> str:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content.strip() if isinstance(content, str) else ""


class CompletionClient:
    def __init__(
        self,
        settings: Settings,
        retries: int = 2,
        backoff_seconds: float = 0.5,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._breaker = CircuitBreaker("OpenAI", on_state_change=self._on_breaker_change)
        self._retries = retries
        self._backoff = backoff_seconds
        self._timeout = timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.settings.openai_api_key)

    @property
    def url(self) -> str:
        return f"{self.settings.openai_base_url}/chat/completions"

    def _on_breaker_change(self, old: str, new: str) -> None:
        logger.warning("OpenAI circuit breaker transition %s -> %s", old, new)

    async def answer(
        self, message: str, month: str, bills: Sequence[ProjectedBill], totals: BillTotals
    ) -> str:
        if not self.configured:
            raise ServiceUnavailable(
                "OpenAI API key not configured",
                extra={"reply": UNAVAILABLE_REPLY},
            )
        try:
            self._breaker.ensure_allowed()
        except CircuitOpenError as exc:
            raise ServiceUnavailable("Assistant temporarily unavailable", details=str(exc)) from exc

        payload = {
            "model": self.settings.openai_model,
            "temperature": 0.2,
            "messages": build_messages(message, month, bills, totals),
        }

        try:
            response = await async_retry(
                lambda: self._post(payload),
                retries=self._retries,
                backoff_seconds=self._backoff,
                retry_exceptions=(httpx.TransportError,),
                on_retry=lambda attempt, exc: logger.warning(
                    "OpenAI chat retry (attempt %s/%s): %s", attempt, self._retries + 1, exc
                ),
            )
        except httpx.TransportError as exc:
            self._breaker.record_failure()
            logger.error("OpenAI chat transport failure: %s", exc)
            raise UpstreamFailure("Failed to contact OpenAI", details=str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            if response.status_code >= 500:
                self._breaker.record_failure()
            error_message = _upstream_error_message(response)
            logger.warning("OpenAI chat error status=%s message=%s", response.status_code, error_message)
            raise UpstreamFailure(error_message, status_code=response.status_code)

        self._breaker.record_success()
        try:
            data = response.json()
        except ValueError:
            data = None
        return _first_reply(data) or EMPTY_REPLY

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.settings.openai_api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            return await client.post(self.url, headers=headers, json=payload)

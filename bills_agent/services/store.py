from __future__ import annotations

import asyncio
import json
import os
import tempfile
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Set

from bills_agent.core.logging import logger

BILL_FIELDS = ("name", "due_day", "amount", "notes")


class StoreCorruptError(RuntimeError):
    """The store file exists but cannot be read back as a store document."""


class BillNotFoundError(KeyError):
    def __init__(self, bill_id: str) -> None:
        super().__init__(bill_id)
        self.bill_id = bill_id


class DuplicateBillError(ValueError):
    def __init__(self, bill_id: str) -> None:
        super().__init__(f'Bill with id "{bill_id}" already exists')
        self.bill_id = bill_id


@dataclass
class Bill:
    id: str
    name: str
    due_day: int
    amount: float = 0.0
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "dueDay": self.due_day,
            "amount": self.amount,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Bill":
        bill_id = raw.get("id")
        name = raw.get("name")
        if not isinstance(bill_id, str) or not bill_id or not isinstance(name, str):
            raise ValueError(f"bill record missing id or name: {raw!r}")
        return cls(
            id=bill_id,
            name=name,
            due_day=int(raw.get("dueDay", 1)),
            amount=float(raw.get("amount") or 0),
            notes=str(raw.get("notes") or ""),
        )


@dataclass
class PushRegistration:
    token: str
    platform: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {"token": self.token, "platform": self.platform}


def generate_bill_id() -> str:
    return str(uuid.uuid4())


@dataclass
class BillStore:
    """Bills, per-month payment marks and push tokens, persisted as one JSON file.

    Every mutation must run inside ``mutation()``: it holds the store lock for
    the whole change and the write that follows it, so overlapping requests
    apply one after another.
    """

    path: Path
    bills: List[Bill] = field(default_factory=list)
    payments: Dict[str, Set[str]] = field(default_factory=dict)
    push_tokens: List[PushRegistration] = field(default_factory=list)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path)

    # -- persistence -------------------------------------------------------

    async def load(self) -> None:
        document = await asyncio.to_thread(self._read_document)
        if document is None:
            self._reset()
            await self.persist()
            logger.info("Store initialized path=%s", self.path)
            return
        self._apply_document(document)
        logger.info(
            "Store loaded path=%s bills=%s months=%s tokens=%s",
            self.path,
            len(self.bills),
            len(self.payments),
            len(self.push_tokens),
        )

    async def persist(self) -> None:
        document = self.to_document()
        await asyncio.to_thread(self._write_document, document)

    @asynccontextmanager
    async def mutation(self) -> AsyncIterator["BillStore"]:
        async with self._lock:
            yield self
            await self.persist()

    def to_document(self) -> Dict[str, Any]:
        return {
            "bills": [bill.to_dict() for bill in self.bills],
            "payments": {
                month: {bill_id: True for bill_id in sorted(paid)}
                for month, paid in self.payments.items()
            },
            "pushTokens": [entry.to_dict() for entry in self.push_tokens],
        }

    def _reset(self) -> None:
        self.bills = []
        self.payments = {}
        self.push_tokens = []

    def _read_document(self) -> Optional[Dict[str, Any]]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreCorruptError(f"Store file {self.path} is not valid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise StoreCorruptError(f"Store file {self.path} must contain a JSON object")
        return document

    def _apply_document(self, document: Mapping[str, Any]) -> None:
        try:
            bills = [Bill.from_dict(item) for item in document.get("bills") or []]
            payments: Dict[str, Set[str]] = {}
            for month, marks in (document.get("payments") or {}).items():
                paid = {bill_id for bill_id, flag in dict(marks).items() if flag}
                if paid:
                    payments[month] = paid
            tokens = [
                PushRegistration(token=str(item["token"]), platform=str(item.get("platform") or "unknown"))
                for item in document.get("pushTokens") or []
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise StoreCorruptError(f"Store file {self.path} has an invalid layout: {exc}") from exc
        self.bills = bills
        self.payments = payments
        self.push_tokens = tokens

    def _write_document(self, document: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    # -- bills -------------------------------------------------------------

    def get_bill(self, bill_id: str) -> Optional[Bill]:
        for bill in self.bills:
            if bill.id == bill_id:
                return bill
        return None

    def require_bill(self, bill_id: str) -> Bill:
        bill = self.get_bill(bill_id)
        if bill is None:
            raise BillNotFoundError(bill_id)
        return bill

    def add_bill(self, bill: Bill) -> Bill:
        if self.get_bill(bill.id) is not None:
            raise DuplicateBillError(bill.id)
        self.bills.append(bill)
        return bill

    def update_bill(self, bill_id: str, changes: Mapping[str, Any]) -> Bill:
        bill = self.require_bill(bill_id)
        for key, value in changes.items():
            if key not in BILL_FIELDS:
                raise ValueError(f"unknown bill field: {key}")
            setattr(bill, key, value)
        return bill

    def remove_bill(self, bill_id: str) -> Bill:
        bill = self.require_bill(bill_id)
        self.bills.remove(bill)
        for month in list(self.payments):
            paid = self.payments[month]
            paid.discard(bill_id)
            if not paid:
                del self.payments[month]
        return bill

    # -- payment marks -----------------------------------------------------

    def is_paid(self, bill_id: str, month: str) -> bool:
        return bill_id in self.payments.get(month, ())

    def set_paid(self, bill_id: str, month: str, is_paid: bool) -> bool:
        self.require_bill(bill_id)
        if is_paid:
            self.payments.setdefault(month, set()).add(bill_id)
        else:
            paid = self.payments.get(month)
            if paid is not None:
                paid.discard(bill_id)
                if not paid:
                    del self.payments[month]
        return self.is_paid(bill_id, month)

    # -- push tokens -------------------------------------------------------

    def add_token(self, token: str, platform: str = "unknown") -> bool:
        if any(entry.token == token for entry in self.push_tokens):
            return False
        self.push_tokens.append(PushRegistration(token=token, platform=platform))
        return True

    def remove_token(self, token: str) -> bool:
        remaining = [entry for entry in self.push_tokens if entry.token != token]
        removed = len(remaining) != len(self.push_tokens)
        self.push_tokens = remaining
        return removed

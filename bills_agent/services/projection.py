from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from bills_agent.services.store import Bill, BillStore

MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def current_month_key(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{today.year:04d}-{today.month:02d}"


def is_month_key(value: str) -> bool:
    return bool(MONTH_KEY_RE.match(value))


@dataclass(frozen=True)
class ProjectedBill:
    id: str
    name: str
    due_day: int
    amount: float
    notes: str
    is_paid: bool

    @classmethod
    def from_bill(cls, bill: Bill, is_paid: bool) -> "ProjectedBill":
        return cls(
            id=bill.id,
            name=bill.name,
            due_day=bill.due_day,
            amount=bill.amount,
            notes=bill.notes,
            is_paid=is_paid,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "dueDay": self.due_day,
            "amount": self.amount,
            "notes": self.notes,
            "isPaid": self.is_paid,
        }


@dataclass(frozen=True)
class BillTotals:
    total: float
    paid: float
    remaining: float

    def to_dict(self) -> Dict[str, float]:
        return {"total": self.total, "paid": self.paid, "remaining": self.remaining}


def project(store: BillStore, month: str) -> List[ProjectedBill]:
    """Annotate every stored bill with its paid flag for ``month``, in store order."""
    paid = store.payments.get(month, set())
    return [ProjectedBill.from_bill(bill, bill.id in paid) for bill in store.bills]


def totals(bills: Iterable[ProjectedBill]) -> BillTotals:
    bills = list(bills)
    total = math.fsum(bill.amount for bill in bills)
    paid = math.fsum(bill.amount for bill in bills if bill.is_paid)
    return BillTotals(total=total, paid=paid, remaining=total - paid)

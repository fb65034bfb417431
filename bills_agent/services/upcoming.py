from __future__ import annotations

import calendar
from datetime import date
from typing import Iterable, List

from bills_agent.services.projection import ProjectedBill

UPCOMING_WINDOW_DAYS = 7


def due_date_in_month(due_day: int, reference: date) -> date:
    # Days past the end of the month mean the last day of that month.
    last_day = calendar.monthrange(reference.year, reference.month)[1]
    day = min(max(int(due_day), 1), last_day)
    return date(reference.year, reference.month, day)


def is_upcoming(bill: ProjectedBill, reference: date, window_days: int = UPCOMING_WINDOW_DAYS) -> bool:
    if bill.is_paid:
        return False
    delta = (due_date_in_month(bill.due_day, reference) - reference).days
    return 0 <= delta <= window_days


def select_upcoming(
    bills: Iterable[ProjectedBill],
    reference: date,
    window_days: int = UPCOMING_WINDOW_DAYS,
) -> List[ProjectedBill]:
    """Unpaid bills whose due date in ``reference``'s month is 0..window days away."""
    return [bill for bill in bills if is_upcoming(bill, reference, window_days)]


def sorted_by_due_day(bills: Iterable[ProjectedBill]) -> List[ProjectedBill]:
    return sorted(bills, key=lambda bill: bill.due_day)

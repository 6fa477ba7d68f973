"""Derived loan state.

Overdue is never stored: status and fine are recomputed from a ledger
snapshot whenever they are read. Everything here is pure.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from lending.clock import overdue_days, utcnow, ensure_aware
from lending.config import FINE_PER_DAY
from lending.models import LoanTransaction


class LoanStatus(str, Enum):
    ISSUED = "issued"
    OVERDUE = "overdue"
    RETURNED = "returned"


def fine_for(due: datetime, as_of: datetime, fine_per_day: int = FINE_PER_DAY) -> int:
    return overdue_days(due, as_of) * fine_per_day


def compute_status(tx: LoanTransaction, now: Optional[datetime] = None) -> LoanStatus:
    if tx.returned_at is not None:
        return LoanStatus.RETURNED
    now = now or utcnow()
    if ensure_aware(now) > ensure_aware(tx.due_date):
        return LoanStatus.OVERDUE
    return LoanStatus.ISSUED


def compute_fine(
    tx: LoanTransaction,
    now: Optional[datetime] = None,
    fine_per_day: int = FINE_PER_DAY,
) -> int:
    """Fine accrued by `tx`.

    Open loans accrue up to `now`; returned loans are priced at their return
    instant, which reproduces the fine stored when they were closed.
    """
    end = tx.returned_at if tx.returned_at is not None else (now or utcnow())
    return fine_for(tx.due_date, end, fine_per_day)

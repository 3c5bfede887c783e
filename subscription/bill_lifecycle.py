"""
Bill Lifecycle Calculator

Pure functions that derive the display phase of a bill from its raw server
status and the billing-cycle dates. The server decides when a bill becomes
Overdue; the display phase escalates on its own as soon as the renewal date
passes, so the user sees the jeopardy before the next refresh.

    raw status             display phase
    --------------------   ------------------------------------------------
    Pending Verification   PendingVerification
    Overdue                Overdue
    Paid                   Paid
    Upcoming               Upcoming
    Due                    Due          while now <= due_date
                           GracePeriod  while due_date < now <= renewal_date
                           Overdue      once now > renewal_date

Nothing here raises on well-typed input.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import Optional, Iterable, Dict

from subscription.models import (
    BillEntry,
    BillStatus,
    HistoryItem,
    SubscriptionSnapshot,
)


class BillPhase(str, Enum):
    """Display phase of a bill"""
    UPCOMING = "Upcoming"
    DUE = "Due"
    GRACE_PERIOD = "GracePeriod"
    OVERDUE = "Overdue"
    PENDING_VERIFICATION = "PendingVerification"
    PAID = "Paid"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat a naive datetime as UTC so it compares with parsed timestamps"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_bill_phase(
    bill: BillEntry,
    renewal_date: Optional[datetime],
    now: Optional[datetime] = None
) -> BillPhase:
    """
    Compute the display phase of a bill.

    Args:
        bill: The bill history entry
        renewal_date: Start of the next billing cycle, if known
        now: Evaluation time (defaults to the current UTC time)

    Returns:
        The display phase. Without a renewal date a late Due bill stays in
        GracePeriod and escalation is left to the server.
    """
    if bill.status == BillStatus.PENDING_VERIFICATION:
        return BillPhase.PENDING_VERIFICATION
    if bill.status == BillStatus.OVERDUE:
        return BillPhase.OVERDUE
    if bill.status == BillStatus.PAID:
        return BillPhase.PAID
    if bill.status == BillStatus.UPCOMING:
        return BillPhase.UPCOMING

    now = as_utc(now) or utc_now()
    renewal_date = as_utc(renewal_date)
    if now <= as_utc(bill.due_date):
        return BillPhase.DUE
    if renewal_date is None or now <= renewal_date:
        return BillPhase.GRACE_PERIOD
    return BillPhase.OVERDUE


@dataclass(frozen=True)
class CurrentBills:
    """The bills a user currently has to act on or wait for"""
    pending_bill: Optional[BillEntry] = None
    due_bill: Optional[BillEntry] = None
    upcoming_bill: Optional[BillEntry] = None

    def phases(
        self,
        renewal_date: Optional[datetime],
        now: Optional[datetime] = None
    ) -> Dict[str, BillPhase]:
        """Display phase for each current bill, keyed by bill id"""
        now = as_utc(now) or utc_now()
        return {
            bill.id: compute_bill_phase(bill, renewal_date, now)
            for bill in (self.pending_bill, self.due_bill, self.upcoming_bill)
            if bill is not None
        }


def find_current_bill(history: Iterable[HistoryItem]) -> CurrentBills:
    """
    Scan the history once for the current bills.

    The first Pending Verification bill, the first Due or Overdue bill and
    the first Upcoming bill are returned. The backend keeps at most one of
    each, so "first" is also "only" for a well-formed history.
    """
    pending_bill = None
    due_bill = None
    upcoming_bill = None

    for entry in history:
        if not isinstance(entry, BillEntry):
            continue
        if entry.status == BillStatus.PENDING_VERIFICATION:
            if pending_bill is None:
                pending_bill = entry
        elif entry.status in (BillStatus.DUE, BillStatus.OVERDUE):
            if due_bill is None:
                due_bill = entry
        elif entry.status == BillStatus.UPCOMING:
            if upcoming_bill is None:
                upcoming_bill = entry

    return CurrentBills(
        pending_bill=pending_bill,
        due_bill=due_bill,
        upcoming_bill=upcoming_bill,
    )


@dataclass(frozen=True)
class CycleProgress:
    """How far the current billing cycle has run, with a short label"""
    percentage: int
    status_text: str


def billing_cycle_progress(
    snapshot: SubscriptionSnapshot,
    now: Optional[datetime] = None
) -> CycleProgress:
    """
    Summarise the current billing cycle for display.

    The percentage is the share of the cycle elapsed, clamped to 0-100.
    An overdue bill pins it to 100.
    """
    if not snapshot.start_date or not snapshot.renewal_date:
        return CycleProgress(percentage=0, status_text="N/A")

    now = as_utc(now) or utc_now()
    total = (snapshot.renewal_date - snapshot.start_date).total_seconds()
    elapsed = (now - snapshot.start_date).total_seconds()
    percentage = (elapsed / total) * 100 if total > 0 else 100
    percentage = max(0, min(100, round(percentage)))

    current = find_current_bill(snapshot.history)
    due_phase = (
        compute_bill_phase(current.due_bill, snapshot.renewal_date, now)
        if current.due_bill else None
    )

    if due_phase == BillPhase.OVERDUE:
        return CycleProgress(percentage=100, status_text="Overdue")

    if current.pending_bill:
        return CycleProgress(percentage=percentage, status_text="Verifying")

    if due_phase == BillPhase.GRACE_PERIOD:
        return CycleProgress(percentage=percentage, status_text="Grace Period")

    if due_phase == BillPhase.DUE:
        days_left = max(0, math.ceil((current.due_bill.due_date - now) / timedelta(days=1)))
        text = f"{days_left}d to Pay" if days_left > 0 else "Due Today"
        return CycleProgress(percentage=percentage, status_text=text)

    return CycleProgress(percentage=percentage, status_text="All Paid")

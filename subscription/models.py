"""
Subscription Data Models

Defines the snapshot of one user's subscription and billing history as the
backend reports it. Snapshots are fetched, never built locally, so parsing
is strict: a payload that is missing required fields or breaks a snapshot
invariant raises IntegrityError instead of producing a partial object.
"""

from enum import Enum
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any, Tuple, Union
from datetime import datetime, timezone

from subscription.exceptions import IntegrityError


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states"""
    NONE = "none"
    PENDING_INSTALLATION = "pending_installation"
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    PENDING_CHANGE = "pending_change"
    DECLINED = "declined"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class BillStatus(str, Enum):
    """Raw bill status as stored by the backend"""
    UPCOMING = "Upcoming"
    DUE = "Due"
    OVERDUE = "Overdue"
    PENDING_VERIFICATION = "Pending Verification"
    PAID = "Paid"


class HistoryType(str, Enum):
    """History entry kinds"""
    BILL = "bill"
    PAYMENT_SUCCESS = "payment_success"
    SUBSCRIBED = "subscribed"
    CANCELLED = "cancelled"
    PLAN_CHANGE_REQUESTED = "plan_change_requested"
    PLAN_CHANGE_CANCELLED = "plan_change_cancelled"
    ACTIVATED = "activated"
    SUBMITTED_PAYMENT = "submitted_payment"


class PaymentMethod(str, Enum):
    """Payment methods accepted for applications and bills"""
    GCASH = "GCash"
    CASH_ON_DELIVERY = "Cash on Delivery"
    CASH = "Cash"

    @property
    def requires_proof(self) -> bool:
        """Out-of-band transfers need an uploaded receipt; cash does not"""
        return self == PaymentMethod.GCASH


CENTS = Decimal("0.01")


def parse_timestamp(value: Any, field_name: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise IntegrityError(f"Invalid timestamp for '{field_name}': {value!r}")
    else:
        raise IntegrityError(f"Invalid timestamp for '{field_name}': {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_amount(value: Any, field_name: str) -> Decimal:
    """Parse a monetary amount to two fractional digits"""
    if isinstance(value, bool) or value is None:
        raise IntegrityError(f"Invalid amount for '{field_name}': {value!r}")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise IntegrityError(f"Invalid amount for '{field_name}': {value!r}")
    if not amount.is_finite():
        raise IntegrityError(f"Invalid amount for '{field_name}': {value!r}")
    return amount.quantize(CENTS)


def _require(data: Dict[str, Any], key: str, context: str) -> Any:
    if key not in data or data[key] is None:
        raise IntegrityError(f"{context} is missing required field '{key}'")
    return data[key]


def _entry_id(data: Dict[str, Any]) -> Optional[str]:
    value = data.get("id", data.get("_id"))
    return str(value) if value is not None else None


@dataclass(frozen=True)
class Plan:
    """A subscription plan offered by the provider"""
    id: str
    name: str
    price: Decimal
    features: Tuple[str, ...] = ()
    price_label: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to the backend's plan shape"""
        return {
            '_id': self.id,
            'name': self.name,
            'price': float(self.price),
            'features': list(self.features),
            'priceLabel': self.price_label,
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'Plan':
        """Create from a backend plan object"""
        if not isinstance(data, dict):
            raise IntegrityError(f"Plan must be an object, got {type(data).__name__}")
        plan_id = _entry_id(data)
        if plan_id is None:
            raise IntegrityError("Plan is missing required field 'id'")
        features = data.get('features') or []
        if not isinstance(features, list):
            raise IntegrityError("Plan 'features' must be a list")
        return cls(
            id=plan_id,
            name=str(_require(data, 'name', 'Plan')),
            price=parse_amount(_require(data, 'price', 'Plan'), 'price'),
            features=tuple(str(f) for f in features),
            price_label=data.get('priceLabel'),
        )


@dataclass(frozen=True)
class HistoryEntry:
    """A non-bill event in the subscription history"""
    type: HistoryType
    id: Optional[str] = None
    date: Optional[datetime] = None
    plan_name: Optional[str] = None
    amount: Optional[Decimal] = None
    details: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'id': self.id,
            'date': format_timestamp(self.date),
            'planName': self.plan_name,
            'amount': float(self.amount) if self.amount is not None else None,
            'details': self.details,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], entry_type: HistoryType) -> 'HistoryEntry':
        amount = data.get('amount')
        return cls(
            type=entry_type,
            id=_entry_id(data),
            date=parse_timestamp(data.get('date') or data.get('createdAt'), 'date'),
            plan_name=data.get('planName'),
            amount=parse_amount(amount, 'amount') if amount is not None else None,
            details=data.get('details'),
        )


@dataclass(frozen=True)
class BillEntry:
    """One billing-cycle charge"""
    id: str
    plan_name: Optional[str]
    amount: Decimal
    due_date: datetime
    status: BillStatus
    receipt_number: Optional[str] = None

    @property
    def type(self) -> HistoryType:
        return HistoryType.BILL

    def to_dict(self) -> dict:
        return {
            'type': HistoryType.BILL.value,
            'id': self.id,
            'planName': self.plan_name,
            'amount': float(self.amount),
            'dueDate': format_timestamp(self.due_date),
            'status': self.status.value,
            'receiptNumber': self.receipt_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BillEntry':
        bill_id = _entry_id(data)
        if bill_id is None:
            raise IntegrityError("Bill entry is missing required field 'id'")
        raw_status = _require(data, 'status', f"Bill {bill_id}")
        try:
            status = BillStatus(raw_status)
        except ValueError:
            raise IntegrityError(f"Bill {bill_id} has unknown status {raw_status!r}")
        return cls(
            id=bill_id,
            plan_name=data.get('planName'),
            amount=parse_amount(_require(data, 'amount', f"Bill {bill_id}"), 'amount'),
            due_date=parse_timestamp(_require(data, 'dueDate', f"Bill {bill_id}"), 'dueDate'),
            status=status,
            receipt_number=data.get('receiptNumber'),
        )


HistoryItem = Union[BillEntry, HistoryEntry]


def parse_history_entry(data: Any) -> HistoryItem:
    """Dispatch a raw history entry on its 'type' tag"""
    if not isinstance(data, dict):
        raise IntegrityError(f"History entry must be an object, got {type(data).__name__}")
    raw_type = _require(data, 'type', 'History entry')
    try:
        entry_type = HistoryType(raw_type)
    except ValueError:
        raise IntegrityError(f"Unknown history entry type {raw_type!r}")

    if entry_type == HistoryType.BILL:
        return BillEntry.from_dict(data)
    return HistoryEntry.from_dict(data, entry_type)


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """
    Complete subscription and billing record for one user.

    Invariants checked on parse:
    - at most one bill is Pending Verification
    - scheduled_plan_change is set if and only if status is pending_change
    """
    status: SubscriptionStatus
    active_plan: Optional[Plan] = None
    scheduled_plan_change: Optional[Plan] = None
    start_date: Optional[datetime] = None
    renewal_date: Optional[datetime] = None
    cancellation_effective_date: Optional[datetime] = None
    decline_reason: Optional[str] = None
    data_usage: Optional[Dict[str, Any]] = None
    history: Tuple[HistoryItem, ...] = field(default_factory=tuple)

    @property
    def bills(self) -> List[BillEntry]:
        """Bill entries in history order"""
        return [entry for entry in self.history if isinstance(entry, BillEntry)]

    @property
    def visible_decline_reason(self) -> Optional[str]:
        """The decline reason, only while the application stands declined"""
        if self.status == SubscriptionStatus.DECLINED:
            return self.decline_reason
        return None

    def find_bill(self, bill_id: str) -> Optional[BillEntry]:
        for bill in self.bills:
            if bill.id == bill_id:
                return bill
        return None

    def to_dict(self) -> dict:
        """Convert to the backend's subscriptionData shape"""
        return {
            'status': self.status.value,
            'planId': self.active_plan.to_dict() if self.active_plan else None,
            'scheduledPlanChange': self.scheduled_plan_change.to_dict() if self.scheduled_plan_change else None,
            'startDate': format_timestamp(self.start_date),
            'renewalDate': format_timestamp(self.renewal_date),
            'cancellationEffectiveDate': format_timestamp(self.cancellation_effective_date),
            'declineReason': self.decline_reason,
            'dataUsage': self.data_usage,
            'history': [entry.to_dict() for entry in self.history],
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'SubscriptionSnapshot':
        """
        Create from a backend subscriptionData object.

        Raises:
            IntegrityError: if required fields are missing or malformed, or
                an invariant does not hold.
        """
        if not isinstance(data, dict):
            raise IntegrityError(f"Subscription data must be an object, got {type(data).__name__}")

        raw_status = _require(data, 'status', 'Subscription')
        try:
            status = SubscriptionStatus(raw_status)
        except ValueError:
            raise IntegrityError(f"Unknown subscription status {raw_status!r}")

        raw_plan = data.get('planId') or data.get('activePlan')
        raw_scheduled = data.get('scheduledPlanChange') or data.get('pendingPlanId')

        raw_history = data.get('history') or []
        if not isinstance(raw_history, list):
            raise IntegrityError("Subscription 'history' must be a list")

        data_usage = data.get('dataUsage')
        if data_usage is not None and not isinstance(data_usage, dict):
            raise IntegrityError("Subscription 'dataUsage' must be an object")

        snapshot = cls(
            status=status,
            active_plan=Plan.from_dict(raw_plan) if raw_plan else None,
            scheduled_plan_change=Plan.from_dict(raw_scheduled) if raw_scheduled else None,
            start_date=parse_timestamp(data.get('startDate'), 'startDate'),
            renewal_date=parse_timestamp(data.get('renewalDate'), 'renewalDate'),
            cancellation_effective_date=parse_timestamp(
                data.get('cancellationEffectiveDate'), 'cancellationEffectiveDate'
            ),
            decline_reason=data.get('declineReason'),
            data_usage=data_usage,
            history=tuple(parse_history_entry(item) for item in raw_history),
        )
        snapshot.check_invariants()
        return snapshot

    def check_invariants(self) -> None:
        pending_change = self.status == SubscriptionStatus.PENDING_CHANGE
        if pending_change and self.scheduled_plan_change is None:
            raise IntegrityError("Status is pending_change but no plan change is scheduled")
        if not pending_change and self.scheduled_plan_change is not None:
            raise IntegrityError(
                f"A plan change is scheduled but status is {self.status.value}"
            )

        pending = [b for b in self.bills if b.status == BillStatus.PENDING_VERIFICATION]
        if len(pending) > 1:
            raise IntegrityError(
                f"{len(pending)} bills are pending verification, at most one is allowed"
            )

"""Sample backend payloads for tests"""

from typing import Optional, List, Dict, Any


PLAN_BASIC = {
    "_id": "plan-basic",
    "name": "Fiber 50",
    "price": 999,
    "features": ["50 Mbps", "Unlimited data"],
    "priceLabel": "₱999/mo",
}

PLAN_PREMIUM = {
    "_id": "plan-premium",
    "name": "Fiber 200",
    "price": 1799.5,
    "features": ["200 Mbps", "Unlimited data", "Free router"],
    "priceLabel": "₱1,799.50/mo",
}

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 32
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 32


def make_bill(
    bill_id: str = "bill-1",
    status: str = "Due",
    due_date: str = "2024-01-10T00:00:00Z",
    amount: float = 999.0,
    plan_name: str = "Fiber 50",
    receipt_number: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "type": "bill",
        "id": bill_id,
        "planName": plan_name,
        "amount": amount,
        "dueDate": due_date,
        "status": status,
        "receiptNumber": receipt_number,
    }


def make_event(event_type: str, date: str = "2023-12-25T00:00:00Z", **extra) -> Dict[str, Any]:
    entry = {"type": event_type, "_id": f"evt-{event_type}", "date": date}
    entry.update(extra)
    return entry


def make_payload(
    status: str = "active",
    plan: Optional[Dict[str, Any]] = PLAN_BASIC,
    scheduled: Optional[Dict[str, Any]] = None,
    start_date: Optional[str] = "2023-12-25T00:00:00Z",
    renewal_date: Optional[str] = "2024-01-25T00:00:00Z",
    history: Optional[List[Dict[str, Any]]] = None,
    **extra
) -> Dict[str, Any]:
    payload = {
        "status": status,
        "planId": plan,
        "scheduledPlanChange": scheduled,
        "startDate": start_date,
        "renewalDate": renewal_date,
        "history": history if history is not None else [
            make_event("subscribed"),
            make_event("activated", date="2023-12-27T00:00:00Z"),
            make_bill(),
        ],
    }
    payload.update(extra)
    return payload


def details(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Wrap a payload the way GET /subscriptions/details returns it"""
    return {"subscriptionData": payload if payload is not None else {}}

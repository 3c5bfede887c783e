"""
Action Gateway - the mutating operations screens call

Every operation:
1. checks the requested transition is legal from the current snapshot's
   status (a UX guard; the server re-validates)
2. makes exactly one backend call
3. on success reconciles the snapshot
4. on failure re-raises and leaves the published snapshot untouched

Lifecycle:

    none --subscribe--> pending_installation --> pending_verification --> active
    pending_verification --(verification failed)--> declined
    active --change_plan--> pending_change --cancel_plan_change--> active
    active --(unpaid past renewal)--> suspended --(paid)--> active
    active/suspended/pending_* --cancel_subscription--> cancelled
    cancelled --reactivate_subscription--> active
    declined/cancelled --clear_subscription--> none

Concurrent mutations are not queued; the server arbitrates and a refused
second mutation surfaces as an ordinary ServerRejection.
"""

from typing import Optional, Union, Dict, Any, List, FrozenSet

from subscription.auth_session import AuthSession
from subscription.bill_lifecycle import find_current_bill
from subscription.exceptions import ValidationError, IntegrityError
from subscription.models import (
    Plan,
    PaymentMethod,
    SubscriptionStatus,
    BillStatus,
)
from subscription.payment_workflow import PaymentSubmissionWorkflow
from subscription.proof_source import ProofOfPaymentSource
from subscription.reconciliation import ReconciliationEngine
from utils.logger import logger


_S = SubscriptionStatus
_BILL_PAYABLE = frozenset({_S.ACTIVE, _S.SUSPENDED})

# Statuses each operation may start from
LEGAL_TRANSITIONS: Dict[str, FrozenSet[SubscriptionStatus]] = {
    'subscribe_to_plan': frozenset({_S.NONE, _S.DECLINED, _S.CANCELLED}),
    'change_plan': frozenset({_S.ACTIVE}),
    'cancel_plan_change': frozenset({_S.PENDING_CHANGE}),
    'cancel_subscription': frozenset({
        _S.ACTIVE, _S.SUSPENDED, _S.PENDING_INSTALLATION, _S.PENDING_VERIFICATION,
    }),
    'reactivate_subscription': frozenset({_S.CANCELLED}),
    'clear_subscription': frozenset({_S.DECLINED, _S.CANCELLED}),
    'pay_bill': _BILL_PAYABLE,
    'submit_proof': _BILL_PAYABLE,
    'initiate_payment': _BILL_PAYABLE,
}


PlanLike = Union[Plan, Dict[str, Any]]


class ActionGateway:
    """Entry point for every subscription and billing mutation"""

    SUBSCRIBE_PATH = "/subscriptions/subscribe"
    CHANGE_PLAN_PATH = "/subscriptions/change-plan"
    CANCEL_CHANGE_PATH = "/subscriptions/cancel-change"
    CANCEL_PATH = "/subscriptions/cancel"
    REACTIVATE_PATH = "/subscriptions/reactivate"
    CLEAR_PATH = "/subscriptions/clear-inactive"
    PLANS_PATH = "/plans"
    INITIATE_PAYMENT_PATH = "/billing/initiate-payment"

    def __init__(
        self,
        auth_session: AuthSession,
        engine: ReconciliationEngine,
        payments: Optional[PaymentSubmissionWorkflow] = None
    ):
        self._auth = auth_session
        self._engine = engine
        self._payments = payments or PaymentSubmissionWorkflow(auth_session, engine)

    # ========== Guards ==========

    def can_perform(self, action: str) -> bool:
        """Check whether an operation is legal from the current status"""
        return self._engine.status in LEGAL_TRANSITIONS[action]

    def _guard(self, action: str) -> None:
        status = self._engine.status
        if status not in LEGAL_TRANSITIONS[action]:
            raise ValidationError(
                f"Cannot {action.replace('_', ' ')} while subscription is {status.value}"
            )

    def _guard_bill_payment(self, action: str, bill_id: str) -> None:
        self._guard(action)
        if not bill_id:
            raise ValidationError("bill id required")

        snapshot = self._engine.snapshot
        pending = find_current_bill(snapshot.history).pending_bill
        if pending is not None:
            raise ValidationError(
                f"A payment for bill {pending.id} is already pending verification"
            )

        bill = snapshot.find_bill(bill_id)
        if bill is not None and bill.status == BillStatus.PAID:
            raise ValidationError(f"Bill {bill_id} is already paid")

    @staticmethod
    def _plan_payload(plan: PlanLike) -> Dict[str, Any]:
        if isinstance(plan, Plan):
            return plan.to_dict()
        if isinstance(plan, dict) and plan:
            return plan
        raise ValidationError("plan required")

    async def _mutate(
        self,
        action: str,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None
    ) -> Any:
        response = await self._auth.authorized_request(method, path, body)
        logger.info(f"{action} accepted by server")
        await self._engine.refresh()
        return response

    # ========== Subscription lifecycle ==========

    async def subscribe_to_plan(
        self,
        plan: PlanLike,
        payment_method: Union[PaymentMethod, str],
        proof: Optional[ProofOfPaymentSource],
        installation_address: Any
    ) -> None:
        """
        Apply for a new subscription.

        The server places the application in pending_installation, or in
        pending_verification for prepaid applications.
        """
        self._guard('subscribe_to_plan')
        plan_payload = self._plan_payload(plan)

        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(f"Unsupported payment method: {payment_method!r}")

        if not installation_address:
            raise ValidationError("installation address required")
        if method.requires_proof and proof is None:
            raise ValidationError("proof required")

        encoded_proof = await self._payments.encode_source(proof) if proof is not None else None

        await self._mutate('subscribe_to_plan', "POST", self.SUBSCRIBE_PATH, {
            "plan": plan_payload,
            "paymentMethod": method.value,
            "installationAddress": installation_address,
            "proofOfPayment": encoded_proof,
        })

    async def change_plan(self, plan: PlanLike) -> None:
        """Request a plan change; it stays pending until approved"""
        self._guard('change_plan')
        plan_payload = self._plan_payload(plan)

        active_plan = self._engine.snapshot.active_plan
        requested_id = plan.id if isinstance(plan, Plan) else plan.get('_id', plan.get('id'))
        if requested_id is None or requested_id == "":
            raise ValidationError("plan required")
        if active_plan is not None and active_plan.id == str(requested_id):
            raise ValidationError(f"Already subscribed to {active_plan.name}")

        await self._mutate('change_plan', "POST", self.CHANGE_PLAN_PATH, {"plan": plan_payload})

    async def cancel_plan_change(self) -> None:
        """Withdraw a pending plan change request"""
        self._guard('cancel_plan_change')
        await self._mutate('cancel_plan_change', "POST", self.CANCEL_CHANGE_PATH)

    async def cancel_subscription(self) -> None:
        """Cancel now or at the end of the cycle, as the server decides"""
        self._guard('cancel_subscription')
        await self._mutate('cancel_subscription', "POST", self.CANCEL_PATH)

    async def reactivate_subscription(self) -> None:
        """Revive a cancelled subscription within the reactivation window"""
        self._guard('reactivate_subscription')
        await self._mutate('reactivate_subscription', "POST", self.REACTIVATE_PATH)

    async def clear_subscription(self) -> None:
        """Purge an inactive subscription so the user can apply afresh"""
        self._guard('clear_subscription')
        await self._auth.authorized_request("DELETE", self.CLEAR_PATH)
        logger.info("clear_subscription accepted by server")
        self._engine.reset()

    # ========== Billing ==========

    async def pay_bill(self, bill_id: str, proof: Optional[ProofOfPaymentSource] = None) -> None:
        """
        Pay a bill. When the server returns the updated subscriptionData
        inline it is adopted directly; otherwise a full refresh runs.
        """
        self._guard_bill_payment('pay_bill', bill_id)
        response = await self._payments.pay_bill(bill_id, proof)

        inline = response.get("subscriptionData") if isinstance(response, dict) else None
        if inline:
            try:
                self._engine.adopt_server_payload(inline)
                return
            except IntegrityError as e:
                logger.warning(f"Inline subscription data unusable, refreshing instead: {e}")
        await self._engine.refresh()

    async def submit_proof(self, bill_id: str, image_source: Optional[ProofOfPaymentSource]) -> None:
        """Submit proof of an out-of-band payment for verification"""
        self._guard_bill_payment('submit_proof', bill_id)
        await self._payments.submit_proof(bill_id, image_source)

    async def initiate_payment(
        self,
        bill_id: str,
        payment_method: str,
        customer: Optional[Dict[str, Any]] = None,
        success_redirect_url: Optional[str] = None,
        failure_redirect_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Start a hosted checkout for a bill.

        Returns:
            The server body; 'redirectUrl' points at the checkout page.
            The snapshot is reconciled later, once the checkout completes.
        """
        self._guard_bill_payment('initiate_payment', bill_id)
        response = await self._auth.authorized_request("POST", self.INITIATE_PAYMENT_PATH, {
            "billId": bill_id,
            "paymentMethod": payment_method,
            "customer": customer,
            "successRedirectUrl": success_redirect_url,
            "failureRedirectUrl": failure_redirect_url,
        })
        if not isinstance(response, dict):
            raise IntegrityError("Payment initiation response must be an object")
        return response

    # ========== Catalog ==========

    async def list_plans(self) -> List[Plan]:
        """Fetch the plans currently offered"""
        response = await self._auth.authorized_request("GET", self.PLANS_PATH)
        if isinstance(response, dict):
            response = response.get("plans", [])
        if not isinstance(response, list):
            raise IntegrityError("Plan catalog response must be a list")
        return [Plan.from_dict(item) for item in response]

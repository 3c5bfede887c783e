"""
Composition root

Builds one engine per signed-in app session and hands its parts to the
screens that need them. Nothing here is global: the app owns the
BillingEngine instance and passes it down.
"""

from dataclasses import dataclass
from typing import Optional

from config import Settings, settings as default_settings
from subscription.action_gateway import ActionGateway
from subscription.auth_session import AuthSession
from subscription.cache_store import SnapshotCache
from subscription.payment_workflow import PaymentSubmissionWorkflow
from subscription.phase_monitor import BillPhaseMonitor
from subscription.reconciliation import ReconciliationEngine


@dataclass
class BillingEngine:
    """The wired-up subscription engine"""
    reconciliation: ReconciliationEngine
    payments: PaymentSubmissionWorkflow
    actions: ActionGateway
    phase_monitor: BillPhaseMonitor
    cache: SnapshotCache

    async def start(self) -> None:
        """Reconcile for the signed-in user and start the phase re-check"""
        await self.phase_monitor.start()
        await self.reconciliation.on_sign_in()

    async def stop(self) -> None:
        await self.phase_monitor.stop()


def build_billing_engine(
    auth_session: AuthSession,
    app_settings: Optional[Settings] = None
) -> BillingEngine:
    """
    Wire the engine components together.

    Args:
        auth_session: Authenticated backend access
        app_settings: Settings to use (defaults to the global settings)
    """
    app_settings = app_settings or default_settings

    cache = SnapshotCache(
        app_settings.cache_path,
        encryption_key=app_settings.CACHE_ENCRYPTION_KEY,
    )
    reconciliation = ReconciliationEngine(auth_session, cache)
    payments = PaymentSubmissionWorkflow(auth_session, reconciliation)
    actions = ActionGateway(auth_session, reconciliation, payments)
    phase_monitor = BillPhaseMonitor(
        reconciliation,
        interval=app_settings.PHASE_RECHECK_INTERVAL_SECONDS,
    )

    return BillingEngine(
        reconciliation=reconciliation,
        payments=payments,
        actions=actions,
        phase_monitor=phase_monitor,
        cache=cache,
    )

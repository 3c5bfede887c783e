"""
Subscription & Billing Lifecycle Engine

Tracks a customer's service subscription and its bills from application
through installation, verification, activation, recurring billing, plan
changes, proof-of-payment submission, suspension, cancellation and
reactivation.

Architecture:
- The backend is the source of truth; the engine never builds a snapshot
  locally, it fetches one and derives display state from it
- ReconciliationEngine owns the snapshot and a single-slot offline cache
- ActionGateway is the only entry point for mutations; each one is guarded
  by the current status, makes one backend call, then reconciles
- BillLifecycleCalculator splits a Due bill into Due / GracePeriod /
  Overdue for display
"""

from subscription.models import (
    SubscriptionStatus,
    BillStatus,
    HistoryType,
    PaymentMethod,
    Plan,
    HistoryEntry,
    BillEntry,
    SubscriptionSnapshot,
)
from subscription.exceptions import (
    BillingError,
    ValidationError,
    TransientError,
    ServerRejection,
    IntegrityError,
    ProcessingError,
)
from subscription.bill_lifecycle import (
    BillPhase,
    CurrentBills,
    CycleProgress,
    compute_bill_phase,
    find_current_bill,
    billing_cycle_progress,
)
from subscription.auth_session import AuthSession, HttpAuthSession
from subscription.proof_source import ProofOfPaymentSource, BytesProofSource, FileProofSource
from subscription.cache_store import SnapshotCache
from subscription.reconciliation import ReconciliationEngine, ReconciliationResult, SnapshotSource
from subscription.payment_workflow import PaymentSubmissionWorkflow, encode_proof
from subscription.action_gateway import ActionGateway, LEGAL_TRANSITIONS
from subscription.phase_monitor import BillPhaseMonitor
from subscription.engine import BillingEngine, build_billing_engine

__all__ = [
    # Data model
    'SubscriptionStatus',
    'BillStatus',
    'HistoryType',
    'PaymentMethod',
    'Plan',
    'HistoryEntry',
    'BillEntry',
    'SubscriptionSnapshot',
    # Errors
    'BillingError',
    'ValidationError',
    'TransientError',
    'ServerRejection',
    'IntegrityError',
    'ProcessingError',
    # Bill lifecycle
    'BillPhase',
    'CurrentBills',
    'CycleProgress',
    'compute_bill_phase',
    'find_current_bill',
    'billing_cycle_progress',
    # Collaborators
    'AuthSession',
    'HttpAuthSession',
    'ProofOfPaymentSource',
    'BytesProofSource',
    'FileProofSource',
    # Engine
    'SnapshotCache',
    'ReconciliationEngine',
    'ReconciliationResult',
    'SnapshotSource',
    'PaymentSubmissionWorkflow',
    'encode_proof',
    'ActionGateway',
    'LEGAL_TRANSITIONS',
    'BillPhaseMonitor',
    'BillingEngine',
    'build_billing_engine',
]

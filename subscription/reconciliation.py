"""
Reconciliation Engine - owner of the canonical subscription snapshot

Replaces the locally held snapshot with the server's current truth and
keeps the single-slot cache in step with it:

- refresh() fetches /subscriptions/details once, even when several callers
  ask at the same time (concurrent callers share the in-flight request)
- a network or server failure degrades to the cached snapshot, marked stale
- a malformed payload is an IntegrityError: logged, never cached, re-raised
- every adopted snapshot is published to subscribed listeners
- reset() detaches an in-flight refresh, so a late response cannot bring
  back a snapshot after sign-out or clear

No other component writes the snapshot or the cache.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Callable, List, Any

from subscription.auth_session import AuthSession
from subscription.cache_store import SnapshotCache
from subscription.exceptions import TransientError, ServerRejection, IntegrityError
from subscription.models import SubscriptionSnapshot, SubscriptionStatus
from utils.logger import logger


class SnapshotSource(str, Enum):
    """Where the adopted snapshot came from"""
    SERVER = "server"
    CACHE = "cache"
    NONE = "none"


@dataclass(frozen=True)
class ReconciliationResult:
    """The snapshot adopted by a reconciliation and how fresh it is"""
    snapshot: Optional[SubscriptionSnapshot]
    source: SnapshotSource
    is_stale: bool = False

    @property
    def status(self) -> SubscriptionStatus:
        if self.snapshot is None:
            return SubscriptionStatus.NONE
        return self.snapshot.status


Listener = Callable[[ReconciliationResult], None]

EMPTY_RESULT = ReconciliationResult(snapshot=None, source=SnapshotSource.NONE)


class ReconciliationEngine:
    """
    Produces the up-to-date SubscriptionSnapshot for the signed-in user.

    Screens read `current`, `snapshot` and `is_loading`, and subscribe() to
    be told when a new snapshot is adopted.
    """

    DETAILS_PATH = "/subscriptions/details"

    def __init__(self, auth_session: AuthSession, cache: SnapshotCache):
        self._auth = auth_session
        self._cache = cache
        self._result: ReconciliationResult = EMPTY_RESULT
        self._is_loading = True
        self._inflight: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []
        # Bumped by reset(); a refresh started under an older value is discarded
        self._generation = 0

    # ========== State ==========

    @property
    def current(self) -> ReconciliationResult:
        return self._result

    @property
    def snapshot(self) -> Optional[SubscriptionSnapshot]:
        return self._result.snapshot

    @property
    def status(self) -> SubscriptionStatus:
        return self._result.status

    @property
    def is_stale(self) -> bool:
        return self._result.is_stale

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    # ========== Observers ==========

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for adopted snapshots.

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, result: ReconciliationResult) -> None:
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception:
                logger.exception("Subscription listener failed")

    # ========== Reconciliation ==========

    async def refresh(self, show_loader: bool = False) -> ReconciliationResult:
        """
        Reconcile with the server.

        Args:
            show_loader: Raise the loading flag while the request runs

        Returns:
            The adopted result

        Raises:
            IntegrityError: if the server payload is malformed
        """
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Refresh already in flight, joining it")
            return await asyncio.shield(self._inflight)

        if show_loader:
            self._is_loading = True

        self._inflight = asyncio.ensure_future(self._reconcile(self._generation))
        return await asyncio.shield(self._inflight)

    async def _reconcile(self, generation: int) -> ReconciliationResult:
        try:
            user_id = self._auth.current_user_id()
            if not user_id:
                self._cache.clear()
                return self._adopt(EMPTY_RESULT)

            try:
                response = await self._auth.authorized_request("GET", self.DETAILS_PATH)
                snapshot = self.parse_details(response)
            except (TransientError, ServerRejection) as e:
                if self._is_superseded(generation):
                    return self._result
                logger.warning(f"Subscription refresh failed, using offline data: {e}")
                return self._fall_back_to_cache()
            except IntegrityError as e:
                logger.error(f"Subscription payload rejected: {e}")
                raise

            if self._is_superseded(generation):
                return self._result
            return self._adopt_from_server(snapshot)
        finally:
            if generation == self._generation:
                self._is_loading = False

    def _is_superseded(self, generation: int) -> bool:
        if generation == self._generation:
            return False
        logger.info("Discarding refresh started before the subscription was reset")
        return True

    @staticmethod
    def parse_details(response: Any) -> Optional[SubscriptionSnapshot]:
        """
        Parse a {subscriptionData: ...} body. An empty or absent
        subscriptionData means the user has no subscription.
        """
        if not isinstance(response, dict):
            raise IntegrityError("Subscription details response must be an object")
        payload = response.get("subscriptionData")
        if not payload:
            return None
        return SubscriptionSnapshot.from_dict(payload)

    def adopt_server_payload(self, payload: Any) -> ReconciliationResult:
        """
        Adopt a subscriptionData object the server returned inline with a
        mutation, skipping a second round trip.

        Raises:
            IntegrityError: if the payload is malformed; nothing is adopted
        """
        snapshot = SubscriptionSnapshot.from_dict(payload)
        return self._adopt_from_server(snapshot)

    def reset(self) -> ReconciliationResult:
        """
        Drop the snapshot and the cache, back to "no subscription".

        A refresh still in flight is detached: its result is neither cached
        nor published, and the next refresh() makes a fresh request.
        """
        self._generation += 1
        self._inflight = None
        self._cache.clear()
        return self._adopt(EMPTY_RESULT)

    def _adopt_from_server(self, snapshot: Optional[SubscriptionSnapshot]) -> ReconciliationResult:
        if snapshot is None:
            self._cache.clear()
            logger.info("No subscription on record")
            return self._adopt(ReconciliationResult(snapshot=None, source=SnapshotSource.SERVER))

        self._cache.save(snapshot)
        logger.info(f"Subscription reconciled: status={snapshot.status.value}")
        return self._adopt(ReconciliationResult(snapshot=snapshot, source=SnapshotSource.SERVER))

    def _fall_back_to_cache(self) -> ReconciliationResult:
        cached = self._cache.load()
        if cached is None:
            return self._adopt(EMPTY_RESULT)
        return self._adopt(
            ReconciliationResult(snapshot=cached, source=SnapshotSource.CACHE, is_stale=True)
        )

    def _adopt(self, result: ReconciliationResult) -> ReconciliationResult:
        self._result = result
        self._is_loading = False
        self._publish(result)
        return result

    # ========== Session hooks ==========

    async def on_sign_in(self) -> ReconciliationResult:
        return await self.refresh(show_loader=True)

    def on_sign_out(self) -> ReconciliationResult:
        return self.reset()

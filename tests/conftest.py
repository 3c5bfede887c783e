#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
import asyncio
import copy
import tempfile
import sys
import os
from pathlib import Path
from typing import Optional, Any, Dict, Tuple, List

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from subscription.auth_session import AuthSession
from subscription.cache_store import SnapshotCache
from subscription.reconciliation import ReconciliationEngine
from subscription.payment_workflow import PaymentSubmissionWorkflow
from subscription.action_gateway import ActionGateway
from tests.factories import make_payload, details


# ============================================================================
# ASYNCIO CONFIGURATION
# ============================================================================
# Note: pytest-asyncio is configured with asyncio_mode = "auto" in pyproject.toml
# The event loop is automatically managed per-function by default


# ============================================================================
# TEMPORARY DIRECTORIES
# ============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ============================================================================
# FAKE BACKEND
# ============================================================================

class FakeAuthSession(AuthSession):
    """
    Scripted AuthSession.

    Responses are registered per (method, path). A response may be a value
    (returned as a deep copy), an exception instance (raised), or a
    callable taking the request body and returning either of those.
    """

    def __init__(self, user_id: Optional[str] = "user-1"):
        self.user_id = user_id
        self.calls: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []
        self.responses: Dict[Tuple[str, str], Any] = {}
        self.gate: Optional[asyncio.Event] = None
        self.held: Dict[Tuple[str, str], asyncio.Event] = {}

    def current_user_id(self) -> Optional[str]:
        return self.user_id

    def respond(self, method: str, path: str, result: Any) -> None:
        self.responses[(method, path)] = result

    def hold(self, method: str, path: str) -> asyncio.Event:
        """Park requests to one route until the returned event is set"""
        event = asyncio.Event()
        self.held[(method, path)] = event
        return event

    def calls_to(self, method: str, path: str) -> List[Optional[Dict[str, Any]]]:
        return [body for m, p, body in self.calls if m == method and p == path]

    async def wait_for_calls(self, method: str, path: str, count: int) -> None:
        """Let the event loop run until a route has been called count times"""
        for _ in range(100):
            if len(self.calls_to(method, path)) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"{method} {path} was not called {count} times")

    async def authorized_request(self, method, path, body=None):
        self.calls.append((method, path, copy.deepcopy(body)))
        if self.gate is not None:
            await self.gate.wait()
        held = self.held.get((method, path))
        if held is not None:
            await held.wait()

        result = self.responses.get((method, path), {})
        if callable(result):
            result = result(body)
        if isinstance(result, BaseException):
            raise result
        return copy.deepcopy(result)


@pytest.fixture
def session():
    """Signed-in fake session whose backend reports an active subscription"""
    fake = FakeAuthSession()
    fake.respond("GET", ReconciliationEngine.DETAILS_PATH, details(make_payload()))
    return fake


@pytest.fixture
def cache(temp_dir):
    """Plain JSON snapshot cache in a temporary directory"""
    return SnapshotCache(temp_dir / "cachedSubscription.json")


@pytest.fixture
def engine(session, cache):
    return ReconciliationEngine(session, cache)


@pytest.fixture
def payments(session, engine):
    return PaymentSubmissionWorkflow(session, engine)


@pytest.fixture
def gateway(session, engine, payments):
    return ActionGateway(session, engine, payments)


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require network)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (may take several seconds)"
    )

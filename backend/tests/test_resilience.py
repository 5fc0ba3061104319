"""
Tests for transient storage failure handling and per-application locks.

Test Coverage:
1. Transient errors are rolled back and retried, then surface as TransientError
2. Engine errors and non-transient database errors are never retried
3. Lock registry entries exist only while in use
"""
import threading
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from lead_auction.services.auction import (
    ApplicationLocks, AuthorizationError, TransientError,
)
from lead_auction.services.auction.resilience import with_transient_retry


def _operational_error():
    return OperationalError("SELECT 1", {}, Exception("server closed the connection unexpectedly"))


class FlakyService:
    """Minimal owner of a retried method."""

    def __init__(self, failures, retry_attempts=3):
        self.db = MagicMock()
        self.retry_attempts = retry_attempts
        self.retry_backoff_ms = 0
        self.failures = list(failures)
        self.calls = 0

    @with_transient_retry
    def operation(self, value):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return value * 2


# =============================================================================
# TEST: RETRIES
# =============================================================================

class TestTransientRetry:
    """Tests for with_transient_retry."""

    def test_succeeds_after_transient_failures(self):
        service = FlakyService([_operational_error(), _operational_error()])

        assert service.operation(21) == 42
        assert service.calls == 3
        assert service.db.rollback.call_count == 2

    def test_gives_up_with_transient_error(self):
        service = FlakyService([_operational_error()] * 5)

        with pytest.raises(TransientError) as exc_info:
            service.operation(1)

        assert service.calls == 3
        assert exc_info.value.details == {"operation": "operation", "attempts": 3}
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_engine_errors_not_retried(self):
        service = FlakyService([AuthorizationError("nope")])

        with pytest.raises(AuthorizationError):
            service.operation(1)
        assert service.calls == 1
        service.db.rollback.assert_not_called()

    def test_integrity_errors_not_retried(self):
        service = FlakyService([IntegrityError("INSERT", {}, Exception("duplicate key"))])

        with pytest.raises(IntegrityError):
            service.operation(1)
        assert service.calls == 1

    def test_single_attempt(self):
        service = FlakyService([_operational_error()], retry_attempts=1)

        with pytest.raises(TransientError):
            service.operation(1)
        assert service.calls == 1


# =============================================================================
# TEST: LOCK REGISTRY
# =============================================================================

class TestApplicationLocks:
    """Tests for ApplicationLocks."""

    def test_entries_released_after_use(self):
        locks = ApplicationLocks()
        with locks.hold("app-1"):
            with locks.hold("app-2"):
                assert len(locks) == 2
        assert len(locks) == 0

    def test_entry_released_on_exception(self):
        locks = ApplicationLocks()
        with pytest.raises(ValueError):
            with locks.hold("app-1"):
                raise ValueError("boom")
        assert len(locks) == 0

    def test_same_application_is_serialized(self):
        locks = ApplicationLocks()
        inside = []
        overlaps = []
        guard = threading.Lock()

        def worker():
            for _ in range(50):
                with locks.hold("app-1"):
                    with guard:
                        inside.append(1)
                        if len(inside) > 1:
                            overlaps.append(True)
                    with guard:
                        inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert overlaps == []
        assert len(locks) == 0

    def test_different_applications_do_not_block(self):
        locks = ApplicationLocks()
        entered = threading.Event()

        def other():
            with locks.hold("app-2"):
                entered.set()

        with locks.hold("app-1"):
            thread = threading.Thread(target=other)
            thread.start()
            assert entered.wait(timeout=5)
            thread.join(timeout=5)

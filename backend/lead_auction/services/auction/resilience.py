"""
Transient storage failure handling.

Operations are all-or-nothing per application, so a failed attempt leaves
nothing behind and can simply be run again.
"""
import functools
import logging
import time

from sqlalchemy.exc import DBAPIError, OperationalError

from ...config import TRANSIENT_RETRY_ATTEMPTS, TRANSIENT_RETRY_BACKOFF_MS
from .errors import TransientError

logger = logging.getLogger(__name__)


def _is_transient(exc: DBAPIError) -> bool:
    return isinstance(exc, OperationalError) or bool(exc.connection_invalidated)


def with_transient_retry(method):
    """
    Retry a service method on transient storage errors.

    The owning object provides ``db``, ``retry_attempts`` and
    ``retry_backoff_ms``. Engine errors (validation, conflicts,
    authorization) pass straight through and are never retried.
    """
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        attempts = max(1, getattr(self, "retry_attempts", TRANSIENT_RETRY_ATTEMPTS))
        backoff_ms = getattr(self, "retry_backoff_ms", TRANSIENT_RETRY_BACKOFF_MS)

        for attempt in range(1, attempts + 1):
            try:
                return method(self, *args, **kwargs)
            except DBAPIError as exc:
                if not _is_transient(exc):
                    raise
                self.db.rollback()
                if attempt == attempts:
                    logger.error(f"{method.__name__} failed after {attempts} attempts: {exc}")
                    raise TransientError(
                        "Storage temporarily unavailable, retry later",
                        {"operation": method.__name__, "attempts": attempts},
                    ) from exc
                logger.warning(f"{method.__name__} attempt {attempt}/{attempts} hit a transient error: {exc}")
                time.sleep(backoff_ms * attempt / 1000)

    return wrapper

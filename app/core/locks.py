"""
Concurrency control utilities.

Two complementary mechanisms:

1. **Optimistic Locking** (check_version)
   - Version-based conflict detection on a single row
   - The losing writer gets StaleRecordError (kind=Conflict) and refetches
   - Used by every request lifecycle transition and escrow movement

2. **Distributed Locks** (DistributedLock)
   - Redis-based mutual exclusion across processes
   - TTL prevents deadlocks from crashed workers
   - Used for singleton periodic work such as the reconciliation sweep

Usage:
    from core.locks import check_version

    with transaction.atomic():
        service_request = check_version(ServiceRequest, request_id, expected_version=3)
        service_request.accept(helper)
        service_request.save()  # version auto-increments

    from core.locks import DistributedLock

    with DistributedLock("reconciliation:sweep", ttl=600, blocking=False):
        ReconciliationService.run()
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from django_redis import get_redis_connection

from core.exceptions import LockAcquisitionError, NotFoundError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)


# =============================================================================
# Optimistic Locking
# =============================================================================


def check_version(
    model_class: type[T],
    pk: Any,
    expected_version: int,
) -> T:
    """
    Atomically check version and lock a record for update.

    Combines the version check with select_for_update so two writers that
    read the same version cannot both commit.

    Args:
        model_class: Django model class (must have 'version' field)
        pk: Primary key of the record
        expected_version: Version the caller read

    Returns:
        The locked model instance

    Raises:
        StaleRecordError: If the version moved on (concurrent modification)
        NotFoundError: If the record doesn't exist

    Note:
        Call inside transaction.atomic(); the row lock is held until the
        outer transaction ends. The model's save() must bump version with
        F("version") + 1.
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )

        if instance is not None:
            return instance

        model_name = model_class.__name__
        current_version = (
            model_class.objects.filter(pk=pk)
            .values_list("version", flat=True)
            .first()
        )
        if current_version is None:
            raise NotFoundError(
                f"{model_name} {pk} not found",
                error_code=f"{model_name.upper()}_NOT_FOUND",
                details={"pk": str(pk)},
            )

        raise StaleRecordError(
            f"{model_name} {pk} has been modified "
            f"(expected version {expected_version}, current {current_version})",
            details={
                "pk": str(pk),
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Token-based ownership means a worker can only release a lock it
    acquired itself.

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until the lock is available
        timeout: Maximum wait time in seconds (only if blocking=True)

    Example:
        try:
            with DistributedLock("reconciliation:sweep", ttl=600, blocking=False):
                run_sweep()
        except LockAcquisitionError:
            logger.info("Sweep already running elsewhere")
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Raises:
            LockAcquisitionError: If the lock is held elsewhere (non-blocking)
                or the wait timed out (blocking)
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            deadline = time.monotonic() + self.timeout
            while time.monotonic() < deadline:
                if self._try_acquire(redis):
                    return True
                time.sleep(0.05)

            self._token = None
            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis):
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """Release the lock if we hold it. Safe to call more than once."""
        if self._token is None:
            return False

        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


__all__ = [
    "DistributedLock",
    "check_version",
]

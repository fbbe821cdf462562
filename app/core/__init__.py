"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by the domain apps. No business rules live
here.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Optimistic locking version counter

Services (import from core.services):
    - BaseService: Logger, transaction and required-field helpers

Exceptions (import from core.exceptions):
    - BaseApplicationError and the error taxonomy (kind + HTTP status)

Concurrency (import from core.locks):
    - check_version: Optimistic version check with row lock
    - DistributedLock: Redis lock for singleton work

Resilience (import from core.circuit_breaker):
    - CircuitBreaker, CircuitOpenError

API (import from core.exception_handler):
    - api_exception_handler: DRF handler emitting the error envelope

Note:
    Models and model mixins are NOT imported here to avoid
    AppRegistryNotReady errors. Import them directly from their modules.
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    InvalidTransitionError,
    LockAcquisitionError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    StaleRecordError,
    ValidationError,
)
from .services import BaseService

__all__ = [
    "BaseService",
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidTransitionError",
    "RateLimitError",
    "ExternalServiceError",
]

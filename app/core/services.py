"""
Base service layer patterns for business logic encapsulation.

Services encapsulate business logic separate from views and models.
Views handle HTTP concerns, models handle data, services handle logic.

Error Handling:
    Service methods raise subclasses of core.exceptions.BaseApplicationError.
    The API exception handler maps each one to its HTTP status and the
    {"error": {...}} envelope, so views stay thin:

        def accept(self, request, pk=None):
            service_request = RequestLifecycleService.accept(pk, request.user)
            return Response(ServiceRequestSerializer(service_request).data)

Usage:
    from core.services import BaseService

    class RequestLifecycleService(BaseService):
        @classmethod
        def create(cls, requester, **details):
            cls.validate_required(
                service_category=details.get("service_category"),
                service_location=details.get("service_location"),
            )
            with cls.atomic():
                service_request = ServiceRequest.objects.create(...)

            cls.get_logger().info(
                "Service request created",
                extra={"request_id": str(service_request.id)},
            )
            return service_request

Related:
    - core.exceptions: Error taxonomy raised by services
    - core.locks: Optimistic and distributed locking helpers
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.db import transaction

from core.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Generator


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management
    - Required-field validation

    Design Notes:
        - Use @staticmethod or @classmethod (no instance state)
        - Services should be stateless
        - Raise core.exceptions errors for every failure path
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are
        wrapped in a transaction. If any operation fails, all
        changes are rolled back.

        Example:
            with cls.atomic():
                payment.hold(reference)
                payment.save()
                ledger.record_entry(...)
                # If the ledger write fails, the hold is rolled back too
        """
        with transaction.atomic():
            yield

    @classmethod
    def validate_required(cls, **kwargs) -> None:
        """
        Validate that required fields are provided.

        Raises:
            ValidationError: If any field is None or a blank string.
                details maps each missing field to an error list.

        Example:
            cls.validate_required(service_category=category, description=text)
        """
        errors = {}
        for field_name, value in kwargs.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                errors[field_name] = ["This field is required."]

        if errors:
            raise ValidationError(
                "Required fields missing",
                error_code="REQUIRED_FIELDS_MISSING",
                details=errors,
            )

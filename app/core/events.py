"""
Domain event emission.

Core services announce what happened (request.accepted, payment.released,
dispute.raised, ...) on a single Django signal. Delivery happens after the
surrounding transaction commits and uses send_robust, so a failing
receiver is logged and never rolls back or interrupts the transition
that produced the event.

Usage:
    from core.events import emit

    emit("request.accepted", request_id=str(service_request.id), helper_id=helper.pk)

    # Receivers (see notifications.handlers)
    from core.events import domain_event

    @receiver(domain_event)
    def on_domain_event(sender, event, payload, **kwargs):
        ...
"""

from __future__ import annotations

import logging
import uuid

from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

# Receivers get: sender=None, event=<name>, payload=<dict>
# Every payload carries a unique event_id for receiver-side deduplication
domain_event = Signal()


def _deliver(event: str, payload: dict) -> None:
    responses = domain_event.send_robust(sender=None, event=event, payload=payload)
    for receiver, result in responses:
        if isinstance(result, Exception):
            logger.error(
                "Domain event receiver failed",
                extra={
                    "event": event,
                    "receiver": getattr(receiver, "__qualname__", repr(receiver)),
                },
                exc_info=result,
            )


def emit(event: str, **payload) -> None:
    """Send ``event`` to all receivers once the current transaction commits."""
    payload.setdefault("event_id", str(uuid.uuid4()))
    logger.debug("Domain event queued", extra={"event": event, "event_id": payload["event_id"]})
    transaction.on_commit(lambda: _deliver(event, payload))

"""
Webhook handling for card processor and regional gateway events.

Webhooks are verified, stored idempotently, and processed asynchronously
via Celery tasks.

Usage:
    # In urls.py
    from payments.webhooks import regional_webhook, stripe_webhook
"""

from payments.webhooks.handlers import dispatch_webhook, register_handler
from payments.webhooks.views import regional_webhook, stripe_webhook

__all__ = [
    "dispatch_webhook",
    "register_handler",
    "regional_webhook",
    "stripe_webhook",
]

"""
Tests for the payments app.

- test_gateways.py: Card, regional and manual gateways
- test_payment_service.py: Intents, confirm and verify
- test_escrow_service.py: Hold, release, refund and dispute resolution
- test_settlement_service.py: Split and dashboards
- test_reconciliation_service.py: Divergence detection
- test_tasks.py / test_views.py: Celery tasks and API endpoints
"""

"""
Authentication application.

Email-based users carrying one marketplace role (requester, helper or
platform admin), JWT login, and the role permissions the API checks.

Usage:
    from authentication.models import User
    from authentication.permissions import IsPlatformAdmin
"""

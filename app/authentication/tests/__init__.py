"""
Tests for the authentication app.

- test_managers.py: User creation and superusers
- test_models.py: Role properties and display names
- test_views.py: Registration, JWT login, /me and role permissions
"""

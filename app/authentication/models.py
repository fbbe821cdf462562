"""
Authentication models.

This module defines the marketplace user:
- User: Email-based account carrying the actor role that gates every
  request and payment action (requester, helper, admin)

Related files:
    - managers.py: Custom user manager for email-based creation
    - serializers.py: Registration and profile serializers

Security:
    - User passwords hashed with Django's PBKDF2
    - Role is read-only through the API; only admins change it (Django admin)
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        full_name: Display name shown to the other party on a request
        phone_number: Contact number shared with an assigned helper
        role: Actor role (requester, helper, admin)
        email_verified: Whether the user's email has been verified
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified

    Usage:
        requester = User.objects.create_user(
            email="asha@example.com",
            password="securepassword",
        )
        helper = User.objects.create_user(
            email="ravi@example.com",
            password="securepassword",
            role=User.Role.HELPER,
        )
    """

    class Role(models.TextChoices):
        REQUESTER = "requester", "Requester"
        HELPER = "helper", "Helper"
        ADMIN = "admin", "Admin"

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )

    full_name = models.CharField(
        max_length=150,
        blank=True,
        help_text="Display name",
    )

    phone_number = models.CharField(
        max_length=32,
        blank=True,
        help_text="Contact phone number",
    )

    role = models.CharField(
        max_length=16,
        choices=Role.choices,
        default=Role.REQUESTER,
        db_index=True,
        help_text="Actor role used for action gating",
    )

    email_verified = models.BooleanField(
        default=False,
        help_text="Whether the user's email has been verified",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    def get_full_name(self):
        return self.full_name or self.email

    def get_short_name(self):
        if self.full_name:
            return self.full_name.split()[0]
        return self.email.split("@")[0]

    @property
    def is_requester(self) -> bool:
        return self.role == self.Role.REQUESTER

    @property
    def is_helper(self) -> bool:
        return self.role == self.Role.HELPER

    @property
    def is_admin_role(self) -> bool:
        return self.role == self.Role.ADMIN

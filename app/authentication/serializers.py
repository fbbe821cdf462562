"""
Serializers for authentication models.

Security:
    - Password fields are write-only
    - role is never writable through the API
"""

from rest_framework import serializers

from authentication.models import User


class UserSerializer(serializers.ModelSerializer):
    """Current-user and participant representation."""

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "full_name",
            "phone_number",
            "role",
            "email_verified",
            "date_joined",
        ]
        read_only_fields = ["id", "email", "role", "email_verified", "date_joined"]


class ParticipantSerializer(serializers.ModelSerializer):
    """Minimal user shape embedded in requests and payments."""

    class Meta:
        model = User
        fields = ["id", "full_name", "role"]
        read_only_fields = fields


class RegisterSerializer(serializers.Serializer):
    """
    Serializer for email/password registration.

    New accounts choose requester or helper. Admin accounts are only
    created through createsuperuser or the Django admin.
    """

    email = serializers.EmailField(required=True)
    full_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    phone_number = serializers.CharField(max_length=32, required=False, allow_blank=True)
    role = serializers.ChoiceField(
        choices=[User.Role.REQUESTER, User.Role.HELPER],
        default=User.Role.REQUESTER,
    )
    password1 = serializers.CharField(
        write_only=True,
        min_length=8,
        style={"input_type": "password"},
        help_text="Password must be at least 8 characters.",
    )
    password2 = serializers.CharField(
        write_only=True,
        style={"input_type": "password"},
        help_text="Confirm your password.",
    )

    def validate_email(self, value):
        email = value.lower().strip()
        if User.objects.filter(email__iexact=email).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return email

    def validate(self, attrs):
        if attrs["password1"] != attrs["password2"]:
            raise serializers.ValidationError({"password2": "Passwords do not match."})
        return attrs

    def create(self, validated_data):
        return User.objects.create_user(
            email=validated_data["email"],
            password=validated_data["password1"],
            full_name=validated_data.get("full_name", ""),
            phone_number=validated_data.get("phone_number", ""),
            role=validated_data["role"],
        )

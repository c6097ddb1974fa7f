"""
Serializers for user accounts.
"""

from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from .models import Profile

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    """Public view of a user; the password hash is never exposed."""

    name = serializers.CharField(source='first_name', max_length=150)
    avatar = serializers.CharField(
        source='profile.avatar',
        max_length=500,
        required=False,
        allow_blank=True
    )

    class Meta:
        model = User
        fields = ['id', 'name', 'email', 'avatar', 'date_joined']
        read_only_fields = ['id', 'email', 'date_joined']

    def validate_name(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("Name is required")
        return value.strip()

    def update(self, instance, validated_data):
        profile_data = validated_data.pop('profile', {})
        instance = super().update(instance, validated_data)
        if 'avatar' in profile_data:
            profile, _ = Profile.objects.get_or_create(user=instance)
            profile.avatar = profile_data['avatar']
            profile.save()
            instance.profile = profile
        return instance


class RegisterSerializer(serializers.Serializer):
    """
    Serializer for account registration.

    Emails are stored lower-cased and must be unique regardless of case.
    """

    name = serializers.CharField(max_length=150)
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)

    def validate_name(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("Name is required")
        return value.strip()

    def validate_email(self, value):
        email = value.strip().lower()
        if User.objects.filter(email__iexact=email).exists():
            raise serializers.ValidationError("An account with this email already exists")
        return email

    def validate_password(self, value):
        validate_password(value)
        return value

    def create(self, validated_data):
        return User.objects.create_user(
            username=validated_data['email'],
            email=validated_data['email'],
            password=validated_data['password'],
            first_name=validated_data['name'],
        )


class LoginSerializer(serializers.Serializer):
    """Serializer for email + password login."""

    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)

    def validate_email(self, value):
        return value.strip().lower()

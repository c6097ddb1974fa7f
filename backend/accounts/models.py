"""
Profile data kept alongside Django's built-in user.
"""

from django.conf import settings
from django.db import models


class Profile(models.Model):
    """
    Per-user profile fields that ``auth.User`` does not carry.

    Attributes:
        user: The account this profile belongs to
        avatar: Avatar image URL; empty means clients show the user's initials
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='profile'
    )
    avatar = models.CharField(max_length=500, blank=True, default='', help_text="Avatar image URL")

    def __str__(self):
        return f"Profile of {self.user}"

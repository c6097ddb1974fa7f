"""
Unit Tests for account registration, login and profile endpoints.
"""

from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.utils import timezone
from rest_framework import status
from rest_framework.authtoken.models import Token
from rest_framework.test import APITestCase

from tasks.models import Task

from .models import Profile

User = get_user_model()


class RegisterAPITests(APITestCase):
    """Tests for POST /api/auth/register/."""

    def setUp(self):
        cache.clear()

    def test_register(self):
        """Registration returns the user and an API token."""
        response = self.client.post('/api/auth/register/', {
            'name': ' Ada Lovelace ',
            'email': 'Ada@Example.com',
            'password': 'correct-horse',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['user']['email'], 'ada@example.com')
        self.assertEqual(response.data['user']['name'], 'Ada Lovelace')
        self.assertNotIn('password', response.data['user'])

        user = User.objects.get(email='ada@example.com')
        self.assertTrue(user.check_password('correct-horse'))
        self.assertEqual(Token.objects.get(user=user).key, response.data['token'])

    def test_duplicate_email_rejected_regardless_of_case(self):
        User.objects.create_user(username='ada@example.com', email='ada@example.com', password='password123')

        response = self.client.post('/api/auth/register/', {
            'name': 'Ada',
            'email': 'ADA@example.com',
            'password': 'password123',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('email', response.data['errors'])
        self.assertEqual(User.objects.count(), 1)

    def test_short_password_rejected(self):
        response = self.client.post('/api/auth/register/', {
            'name': 'Ada',
            'email': 'ada@example.com',
            'password': 'short',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('password', response.data['errors'])

    def test_missing_name_rejected(self):
        response = self.client.post('/api/auth/register/', {
            'email': 'ada@example.com',
            'password': 'password123',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])


class LoginAPITests(APITestCase):
    """Tests for login and logout."""

    def setUp(self):
        cache.clear()
        self.user = User.objects.create_user(
            username='ada@example.com',
            email='ada@example.com',
            password='password123',
            first_name='Ada'
        )

    def test_login(self):
        response = self.client.post('/api/auth/login/', {
            'email': 'ADA@example.com',
            'password': 'password123',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['user']['name'], 'Ada')
        self.assertTrue(response.data['token'])

    def test_wrong_password(self):
        response = self.client.post('/api/auth/login/', {
            'email': 'ada@example.com',
            'password': 'wrong-password',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], 'ERR_INVALID_CREDENTIALS')
        self.assertNotIn('token', response.data)

    def test_token_authenticates_requests(self):
        token = self.client.post('/api/auth/login/', {
            'email': 'ada@example.com',
            'password': 'password123',
        }, format='json').data['token']

        self.client.credentials(HTTP_AUTHORIZATION=f'Token {token}')
        response = self.client.get('/api/auth/me/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['email'], 'ada@example.com')

    def test_logout_revokes_token(self):
        token = Token.objects.create(user=self.user)
        self.client.credentials(HTTP_AUTHORIZATION=f'Token {token.key}')

        response = self.client.post('/api/auth/logout/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Token.objects.filter(user=self.user).exists())

        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertTrue(User.objects.filter(pk=self.user.pk).exists())


class MeAPITests(APITestCase):
    """Tests for the current-user endpoint."""

    def setUp(self):
        cache.clear()
        self.user = User.objects.create_user(
            username='ada@example.com',
            email='ada@example.com',
            password='password123',
            first_name='Ada'
        )
        self.client.force_authenticate(user=self.user)

    def test_requires_authentication(self):
        self.client.force_authenticate(user=None)
        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_update_name(self):
        response = self.client.patch('/api/auth/me/', {'name': 'Countess'}, format='json')
        self.user.refresh_from_db()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['name'], 'Countess')
        self.assertEqual(self.user.first_name, 'Countess')

    def test_new_user_has_empty_avatar(self):
        response = self.client.get('/api/auth/me/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['avatar'], '')

    def test_update_avatar(self):
        """The profile update accepts an avatar alongside the name."""
        response = self.client.patch(
            '/api/auth/me/',
            {'avatar': 'https://example.com/ada.png'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['avatar'], 'https://example.com/ada.png')
        self.assertEqual(response.data['name'], 'Ada')
        self.assertEqual(Profile.objects.get(user=self.user).avatar, 'https://example.com/ada.png')

    def test_update_name_and_avatar_together(self):
        response = self.client.patch(
            '/api/auth/me/',
            {'name': 'Countess', 'avatar': 'https://example.com/c.png'},
            format='json'
        )
        self.user.refresh_from_db()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.user.first_name, 'Countess')
        self.assertEqual(self.user.profile.avatar, 'https://example.com/c.png')

    def test_email_is_read_only(self):
        self.client.patch('/api/auth/me/', {'email': 'other@example.com'}, format='json')
        self.user.refresh_from_db()
        self.assertEqual(self.user.email, 'ada@example.com')

    def test_blank_name_rejected(self):
        response = self.client.patch('/api/auth/me/', {'name': '  '}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_account_removes_tasks(self):
        """Deleting the account deletes every task it owns."""
        now = timezone.now()
        Task.objects.create(
            owner=self.user,
            title='Pay rent',
            start_at=now,
            deadline=now + timedelta(days=1),
        )
        other = User.objects.create_user(username='bob@example.com', password='password123')
        Task.objects.create(owner=other, title='Keep me', start_at=now, deadline=now + timedelta(days=1))

        response = self.client.delete('/api/auth/me/')

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(User.objects.filter(username='ada@example.com').exists())
        self.assertEqual(list(Task.objects.values_list('title', flat=True)), ['Keep me'])

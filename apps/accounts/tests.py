"""
Tests for accounts: access policy, credentials, user management and audit
"""
from datetime import timedelta
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.db.models import ProtectedError
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from apps.tickets.models import Ticket
from core.exceptions import (
    AccountDisabled,
    AuthenticationError,
    ConflictError,
    Forbidden,
    InvalidCredentials,
    ValidationError,
)
from .models import AuditLog, ImmutableRecordError
from .policy import (
    ALL_PERMISSIONS,
    Permission,
    has_permission,
    permissions_for,
    require,
    require_owner_or_admin,
)
from .services import AuditService, CredentialService, UserService

User = get_user_model()


def make_user(username, role=User.Role.VENDOR, password='secret123', **extra):
    return User.objects.create_user(
        username=username,
        password=password,
        name=extra.pop('name', username.title()),
        role=role,
        **extra
    )


def auth_headers(user):
    refresh = RefreshToken.for_user(user)
    return {'HTTP_AUTHORIZATION': f'Bearer {refresh.access_token}'}


class AccessPolicyTestCase(TestCase):
    """Role to permission table and helpers"""

    def setUp(self):
        self.admin = make_user('admin', role=User.Role.ADMIN)
        self.vendor = make_user('vendor')
        self.controller = make_user('gate', role=User.Role.CONTROLLER)

    def test_admin_has_every_permission(self):
        self.assertEqual(permissions_for('admin'), ALL_PERMISSIONS)

    def test_vendor_permissions(self):
        self.assertEqual(
            permissions_for('vendor'),
            {
                Permission.TICKETS_CREATE,
                Permission.TICKETS_READ_OWN,
                Permission.TICKETS_SCAN,
                Permission.TICKETS_MARK_SENT,
                Permission.STATS_READ_OWN,
            },
        )

    def test_controller_can_only_scan(self):
        self.assertEqual(permissions_for('controller'), {Permission.TICKETS_SCAN})

    def test_unknown_role_has_nothing(self):
        self.assertEqual(permissions_for('guest'), frozenset())

    def test_inactive_user_has_no_permissions(self):
        self.vendor.is_active = False
        self.assertFalse(has_permission(self.vendor, Permission.TICKETS_CREATE))

    def test_require_raises_forbidden(self):
        with self.assertRaises(Forbidden):
            require(self.controller, Permission.TICKETS_CREATE)

        require(self.vendor, Permission.TICKETS_CREATE)

    def test_owner_or_admin(self):
        require_owner_or_admin(self.vendor, self.vendor.pk)
        require_owner_or_admin(self.admin, self.vendor.pk)

        other = make_user('other')
        with self.assertRaises(Forbidden):
            require_owner_or_admin(other, self.vendor.pk)

    def test_admin_role_grants_staff_flag(self):
        self.assertTrue(self.admin.is_staff)
        self.assertFalse(self.vendor.is_staff)


class AuditServiceTestCase(TestCase):

    def setUp(self):
        self.user = make_user('vendor')

    def test_record_creates_entry(self):
        entry = AuditService.record('LOGIN', user=self.user, entity_type='auth', details={'a': 1})

        self.assertIsNotNone(entry)
        self.assertEqual(AuditLog.objects.filter(action='LOGIN', user=self.user).count(), 1)

    def test_entries_are_append_only(self):
        entry = AuditService.record('LOGIN', user=self.user)

        entry.action = 'CHANGED'
        with self.assertRaises(ImmutableRecordError):
            entry.save()
        with self.assertRaises(ImmutableRecordError):
            entry.delete()

        self.assertEqual(AuditLog.objects.get(pk=entry.pk).action, 'LOGIN')

    def test_write_failure_is_swallowed(self):
        with patch('apps.accounts.services.AuditLog.objects.create', side_effect=DatabaseError('down')):
            result = AuditService.record('LOGIN', user=self.user)

        self.assertIsNone(result)


class CredentialServiceTestCase(TestCase):

    def setUp(self):
        self.user = make_user('vendor', password='vend123')

    def test_login_success(self):
        result = CredentialService.login('vendor', 'vend123')

        self.assertEqual(result['user'], self.user)
        self.assertEqual(result['refresh']['role'], 'vendor')
        self.assertEqual(OutstandingToken.objects.filter(user=self.user).count(), 1)

        self.user.refresh_from_db()
        self.assertIsNotNone(self.user.last_login)
        self.assertTrue(AuditLog.objects.filter(action='LOGIN', user=self.user).exists())

    def test_login_wrong_password(self):
        with self.assertRaises(InvalidCredentials):
            CredentialService.login('vendor', 'nope')

        self.assertTrue(AuditLog.objects.filter(action='LOGIN_FAILED').exists())

    def test_login_unknown_user(self):
        with self.assertRaises(InvalidCredentials):
            CredentialService.login('ghost', 'vend123')

    def test_login_inactive_user(self):
        self.user.is_active = False
        self.user.save()

        with self.assertRaises(AccountDisabled):
            CredentialService.login('vendor', 'vend123')

    def test_verify(self):
        result = CredentialService.login('vendor', 'vend123')

        payload = CredentialService.verify(str(result['access']))
        self.assertEqual(str(payload['user_id']), str(self.user.pk))

        with self.assertRaises(AuthenticationError):
            CredentialService.verify('not-a-token')

    def test_refresh_issues_new_access_token(self):
        result = CredentialService.login('vendor', 'vend123')

        refreshed = CredentialService.refresh(str(result['refresh']))
        self.assertEqual(refreshed['user'], self.user)
        self.assertEqual(refreshed['access']['username'], 'vendor')

    def test_revoked_refresh_token_is_rejected(self):
        result = CredentialService.login('vendor', 'vend123')

        revoked = CredentialService.revoke_all(self.user)
        self.assertEqual(revoked, 1)

        with self.assertRaises(AuthenticationError):
            CredentialService.refresh(str(result['refresh']))

    def test_revoke_one_only_revokes_that_token(self):
        first = CredentialService.login('vendor', 'vend123')
        second = CredentialService.login('vendor', 'vend123')

        self.assertTrue(CredentialService.revoke_one(self.user, str(first['refresh'])))

        with self.assertRaises(AuthenticationError):
            CredentialService.refresh(str(first['refresh']))
        CredentialService.refresh(str(second['refresh']))

    def test_revoke_one_rejects_foreign_token(self):
        other = make_user('other', password='other123')
        result = CredentialService.login('other', 'other123')

        with self.assertRaises(Forbidden):
            CredentialService.revoke_one(self.user, str(result['refresh']))
        self.assertFalse(BlacklistedToken.objects.filter(token__user=other).exists())

    def test_refresh_rejected_for_inactive_user(self):
        result = CredentialService.login('vendor', 'vend123')
        User.objects.filter(pk=self.user.pk).update(is_active=False)

        with self.assertRaises(AuthenticationError):
            CredentialService.refresh(str(result['refresh']))

    def test_clean_expired_keeps_live_revocations(self):
        now = timezone.now()
        OutstandingToken.objects.create(
            user=self.user, jti='expired-jti', token='expired',
            created_at=now - timedelta(days=10), expires_at=now - timedelta(days=3),
        )
        live = OutstandingToken.objects.create(
            user=self.user, jti='live-jti', token='live',
            created_at=now, expires_at=now + timedelta(days=7),
        )
        BlacklistedToken.objects.create(token=live)

        CredentialService.clean_expired()

        self.assertFalse(OutstandingToken.objects.filter(jti='expired-jti').exists())
        self.assertTrue(BlacklistedToken.objects.filter(token=live).exists())


class UserServiceTestCase(TestCase):

    def setUp(self):
        self.admin = make_user('admin', role=User.Role.ADMIN, password='admin123')
        self.vendor = make_user('vendor', password='vend123')

    def test_create_user(self):
        user = UserService.create_user(
            {'username': 'seller', 'password': 'pass123', 'name': 'Seller', 'role': 'vendor'},
            self.admin,
        )

        self.assertEqual(user.role, 'vendor')
        self.assertTrue(user.check_password('pass123'))
        self.assertTrue(AuditLog.objects.filter(action='USER_CREATE', entity_id=str(user.pk)).exists())

    def test_create_user_reports_every_violation(self):
        with self.assertRaises(ValidationError) as ctx:
            UserService.create_user({'username': 'ab', 'password': '123', 'name': 'A'}, self.admin)

        self.assertEqual(set(ctx.exception.details), {'username', 'password', 'name'})

    def test_create_user_duplicate_username(self):
        with self.assertRaises(ConflictError):
            UserService.create_user(
                {'username': 'vendor', 'password': 'pass123', 'name': 'Dup'},
                self.admin,
            )

    def test_vendor_cannot_create_users(self):
        with self.assertRaises(Forbidden):
            UserService.create_user(
                {'username': 'seller', 'password': 'pass123', 'name': 'Seller'},
                self.vendor,
            )

    def test_self_update_limited_to_profile_fields(self):
        user = UserService.update_user(self.vendor.pk, {'name': 'New Name'}, self.vendor)
        self.assertEqual(user.name, 'New Name')

        with self.assertRaises(Forbidden):
            UserService.update_user(self.vendor.pk, {'role': 'admin'}, self.vendor)

    def test_cannot_deactivate_self(self):
        with self.assertRaises(ValidationError):
            UserService.deactivate(self.admin.pk, self.admin)

    def test_deactivate_revokes_tokens(self):
        login = CredentialService.login('vendor', 'vend123')

        user = UserService.deactivate(self.vendor.pk, self.admin)

        self.assertFalse(user.is_active)
        with self.assertRaises(AuthenticationError):
            CredentialService.refresh(str(login['refresh']))

    def test_purge_refused_when_user_issued_tickets(self):
        Ticket.objects.create(
            id='TKT-PURGECHECK0001', order_id='ORD-1',
            attendee_name='Amina', attendee_phone='+22501020304',
            category='vip', price=10000,
            client_name='Client', client_phone='+22501020304',
            created_by=self.vendor,
        )

        with self.assertRaises(ConflictError):
            UserService.purge(self.vendor.pk, self.admin)
        self.assertTrue(User.objects.filter(pk=self.vendor.pk).exists())

    def test_purge_user_without_tickets(self):
        UserService.purge(self.vendor.pk, self.admin)

        self.assertFalse(User.objects.filter(pk=self.vendor.pk).exists())
        self.assertTrue(AuditLog.objects.filter(action='USER_DELETE').exists())

    def test_purge_conflict_when_ticket_appears_after_check(self):
        """A ticket issued between the check and the delete still yields a conflict"""
        with patch.object(User, 'delete', side_effect=ProtectedError('protected', set())):
            with self.assertRaises(ConflictError):
                UserService.purge(self.vendor.pk, self.admin)

        self.assertTrue(User.objects.filter(pk=self.vendor.pk).exists())
        self.assertFalse(AuditLog.objects.filter(action='USER_DELETE').exists())

    def test_change_own_password_requires_current(self):
        with self.assertRaises(ValidationError):
            UserService.change_password(self.vendor.pk, 'wrong', 'newpass1', self.vendor)

        UserService.change_password(self.vendor.pk, 'vend123', 'newpass1', self.vendor)
        self.vendor.refresh_from_db()
        self.assertTrue(self.vendor.check_password('newpass1'))

    def test_admin_resets_password_without_current(self):
        UserService.change_password(self.vendor.pk, None, 'reset123', self.admin)

        self.vendor.refresh_from_db()
        self.assertTrue(self.vendor.check_password('reset123'))

    def test_search_users(self):
        results = UserService.search_users('vend', self.admin)
        self.assertEqual([u.username for u in results], ['vendor'])


class AuthAPITestCase(APITestCase):
    """HTTP tests for /api/auth/"""

    def setUp(self):
        self.user = make_user('vendor_test', password='vend123')

    def test_login_sets_cookies_and_returns_tokens(self):
        response = self.client.post(
            '/api/auth/login/',
            {'username': 'vendor_test', 'password': 'vend123'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertIn('access', response.data['data'])
        self.assertEqual(response.data['data']['user']['username'], 'vendor_test')
        self.assertIn('access_token', response.cookies)
        self.assertIn('refresh_token', response.cookies)

    def test_login_invalid_credentials(self):
        response = self.client.post(
            '/api/auth/login/',
            {'username': 'vendor_test', 'password': 'bad'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['error']['category'], 'invalid_credentials')

    def test_login_disabled_account(self):
        self.user.is_active = False
        self.user.save()

        response = self.client.post(
            '/api/auth/login/',
            {'username': 'vendor_test', 'password': 'vend123'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error']['category'], 'account_disabled')

    def test_me_requires_authentication(self):
        response = self.client.get('/api/auth/me/')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['error']['category'], 'authentication_error')

    def test_me_with_bearer_header(self):
        response = self.client.get('/api/auth/me/', **auth_headers(self.user))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['username'], 'vendor_test')
        self.assertIn('tickets.create', response.data['data']['permissions'])

    def test_cookie_session_refresh_and_logout(self):
        self.client.post(
            '/api/auth/login/',
            {'username': 'vendor_test', 'password': 'vend123'},
            format='json',
        )

        # Cookies from the login response authenticate the next calls
        me = self.client.get('/api/auth/me/')
        self.assertEqual(me.status_code, status.HTTP_200_OK)

        refreshed = self.client.post('/api/auth/refresh/', {}, format='json')
        self.assertEqual(refreshed.status_code, status.HTTP_200_OK)
        self.assertIn('access', refreshed.data['data'])

        logout = self.client.post('/api/auth/logout/', {}, format='json')
        self.assertEqual(logout.status_code, status.HTTP_200_OK)
        self.assertEqual(BlacklistedToken.objects.filter(token__user=self.user).count(), 1)

    def test_refresh_with_revoked_token(self):
        refresh = RefreshToken.for_user(self.user)
        CredentialService.revoke_all(self.user)

        response = self.client.post('/api/auth/refresh/', {'refresh': str(refresh)}, format='json')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_verify_token(self):
        token = str(RefreshToken.for_user(self.user).access_token)

        response = self.client.post('/api/auth/verify/', {'token': token}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['data']['valid'])

    def test_revoke_all(self):
        RefreshToken.for_user(self.user)
        RefreshToken.for_user(self.user)

        response = self.client.post('/api/auth/revoke-all/', {}, format='json', **auth_headers(self.user))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        # auth_headers itself issued a third refresh token
        self.assertEqual(response.data['data']['revoked'], 3)


class UserAPITestCase(APITestCase):
    """HTTP tests for /api/users/"""

    def setUp(self):
        self.admin = make_user('admin', role=User.Role.ADMIN, password='admin123')
        self.vendor = make_user('vendor', password='vend123')

    def test_vendor_cannot_list_users(self):
        response = self.client.get('/api/users/', **auth_headers(self.vendor))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error']['category'], 'authorization_error')

    def test_admin_lists_users_with_pagination(self):
        response = self.client.get('/api/users/?role=vendor', **auth_headers(self.admin))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pagination']['total'], 1)
        self.assertEqual(response.data['data'][0]['username'], 'vendor')

    def test_admin_creates_user(self):
        response = self.client.post(
            '/api/users/',
            {'username': 'gate1', 'password': 'ctrl123', 'name': 'Gate One', 'role': 'controller'},
            format='json',
            **auth_headers(self.admin)
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['role'], 'controller')

    def test_create_duplicate_username_conflict(self):
        response = self.client.post(
            '/api/users/',
            {'username': 'vendor', 'password': 'vend123', 'name': 'Again'},
            format='json',
            **auth_headers(self.admin)
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['category'], 'conflict')

    def test_delete_deactivates(self):
        response = self.client.delete(f'/api/users/{self.vendor.pk}/', **auth_headers(self.admin))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.vendor.refresh_from_db()
        self.assertFalse(self.vendor.is_active)

    def test_vendor_reads_self_but_not_others(self):
        own = self.client.get(f'/api/users/{self.vendor.pk}/', **auth_headers(self.vendor))
        other = self.client.get(f'/api/users/{self.admin.pk}/', **auth_headers(self.vendor))

        self.assertEqual(own.status_code, status.HTTP_200_OK)
        self.assertEqual(other.status_code, status.HTTP_403_FORBIDDEN)

    def test_user_stats(self):
        response = self.client.get('/api/users/stats/', **auth_headers(self.admin))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['total'], 2)
        self.assertEqual(response.data['data']['admins'], 1)
        self.assertEqual(response.data['data']['vendors'], 1)

    def test_purge_race_answers_conflict(self):
        with patch.object(User, 'delete', side_effect=ProtectedError('protected', set())):
            response = self.client.delete(f'/api/users/{self.vendor.pk}/purge/', **auth_headers(self.admin))

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['category'], 'conflict')
        self.assertTrue(User.objects.filter(pk=self.vendor.pk).exists())

    def test_change_own_password(self):
        url = f'/api/users/{self.vendor.pk}/change-password/'

        wrong = self.client.post(
            url,
            {'current_password': 'nope', 'new_password': 'fresh123'},
            format='json',
            **auth_headers(self.vendor)
        )
        response = self.client.post(
            url,
            {'current_password': 'vend123', 'new_password': 'fresh123'},
            format='json',
            **auth_headers(self.vendor)
        )

        self.assertEqual(wrong.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.cookies['access_token'].value, '')
        self.vendor.refresh_from_db()
        self.assertTrue(self.vendor.check_password('fresh123'))

    def test_admin_resets_other_password(self):
        response = self.client.post(
            f'/api/users/{self.vendor.pk}/change-password/',
            {'new_password': 'reset123'},
            format='json',
            **auth_headers(self.admin)
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertNotIn('access_token', response.cookies)
        self.vendor.refresh_from_db()
        self.assertTrue(self.vendor.check_password('reset123'))

    def test_vendor_cannot_change_other_password(self):
        response = self.client.post(
            f'/api/users/{self.admin.pk}/change-password/',
            {'current_password': 'admin123', 'new_password': 'taken123'},
            format='json',
            **auth_headers(self.vendor)
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.admin.refresh_from_db()
        self.assertTrue(self.admin.check_password('admin123'))

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import DatabaseError, transaction
from django.db.models import ProtectedError, Q
from django.utils import timezone
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import AccessToken, RefreshToken

from core.exceptions import (
    AccountDisabled,
    AuthenticationError,
    ConflictError,
    Forbidden,
    InvalidCredentials,
    NotFoundError,
    ValidationError,
)
from core.pagination import paginate
from .models import AuditLog, User
from .policy import Permission, has_permission, require

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    """Client information attached to audit and scan records"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request):
        forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
        ip_address = forwarded.split(',')[0].strip() if forwarded else request.META.get('REMOTE_ADDR')
        return cls(
            ip_address=ip_address or None,
            user_agent=request.META.get('HTTP_USER_AGENT') or None,
        )


class AuditService:
    """
    Best-effort writer for the audit trail
    """

    @staticmethod
    def record(action, user=None, entity_type=None, entity_id=None, details=None, request_meta=None):
        """
        Append an audit entry. Failures are logged and never propagated.
        """
        meta = request_meta or RequestMeta()
        try:
            # Savepoint keeps a failed insert from poisoning an enclosing transaction
            with transaction.atomic():
                return AuditLog.objects.create(
                    user=user if user is not None and user.pk else None,
                    action=action,
                    entity_type=entity_type,
                    entity_id=str(entity_id) if entity_id is not None else None,
                    details=details or {},
                    ip_address=meta.ip_address,
                    user_agent=meta.user_agent,
                )
        except DatabaseError:
            logger.exception("Failed to write audit entry %s", action)
            return None


class CredentialService:
    """
    Login, token verification, refresh and revocation
    """

    @staticmethod
    def issue_tokens(user):
        refresh = RefreshToken.for_user(user)
        refresh['username'] = user.username
        refresh['role'] = user.role
        return refresh

    @staticmethod
    def login(username, password, request_meta=None):
        """
        Authenticate a staff user and return fresh tokens.
        Returns dict with ``access``, ``refresh`` (token objects) and ``user``.
        """
        user = User.objects.filter(username=username).first()

        if user is None or not user.check_password(password):
            logger.warning("Failed login for username %r", username)
            AuditService.record(
                'LOGIN_FAILED',
                user=user,
                entity_type='auth',
                details={'username': username},
                request_meta=request_meta,
            )
            raise InvalidCredentials()

        if not user.is_active:
            logger.warning("Login attempt on disabled account %s", user.pk)
            AuditService.record(
                'LOGIN_FAILED',
                user=user,
                entity_type='auth',
                details={'username': username, 'reason': 'inactive'},
                request_meta=request_meta,
            )
            raise AccountDisabled()

        refresh = CredentialService.issue_tokens(user)

        user.last_login = timezone.now()
        User.objects.filter(pk=user.pk).update(last_login=user.last_login)

        logger.info("User %s logged in", user.pk)
        AuditService.record(
            'LOGIN',
            user=user,
            entity_type='auth',
            details={'username': user.username},
            request_meta=request_meta,
        )

        return {
            'access': refresh.access_token,
            'refresh': refresh,
            'user': user,
        }

    @staticmethod
    def verify(raw_token):
        """
        Validate an access token and return its payload
        """
        try:
            token = AccessToken(raw_token)
        except TokenError as e:
            raise AuthenticationError('Invalid or expired token') from e

        user = User.objects.filter(pk=token.get('user_id')).first()
        if user is None or not user.is_active:
            raise AuthenticationError('User not found or inactive')

        return dict(token.payload)

    @staticmethod
    def refresh(raw_refresh_token):
        """
        Exchange a refresh token for a new access token.
        Revoked (blacklisted) or expired refresh tokens are rejected.
        """
        if not raw_refresh_token:
            raise AuthenticationError('Refresh token not found')

        try:
            refresh = RefreshToken(raw_refresh_token)
        except TokenError as e:
            raise AuthenticationError('Invalid or revoked refresh token') from e

        user = User.objects.filter(pk=refresh.get('user_id')).first()
        if user is None or not user.is_active:
            raise AuthenticationError('User not found or inactive')

        access = refresh.access_token
        access['username'] = user.username
        access['role'] = user.role

        logger.info("Access token refreshed for user %s", user.pk)
        return {'access': access, 'user': user}

    @staticmethod
    def revoke_one(user, raw_refresh_token, request_meta=None):
        """
        Revoke a single refresh token belonging to ``user`` (logout).
        Returns False when the token was already unusable.
        """
        revoked = False
        if raw_refresh_token:
            try:
                refresh = RefreshToken(raw_refresh_token)
            except TokenError:
                logger.info("Logout with unusable refresh token for user %s", user.pk)
            else:
                if str(refresh.get('user_id')) != str(user.pk):
                    raise Forbidden('Refresh token belongs to another user')
                refresh.blacklist()
                revoked = True

        AuditService.record('LOGOUT', user=user, entity_type='auth', request_meta=request_meta)
        return revoked

    @staticmethod
    def revoke_all(user):
        """
        Revoke every outstanding refresh token of ``user``
        """
        count = 0
        for token in OutstandingToken.objects.filter(user=user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            if created:
                count += 1

        logger.info("Revoked %s refresh tokens for user %s", count, user.pk)
        return count

    @staticmethod
    def clean_expired():
        """
        Delete expired refresh tokens (and their blacklist rows).
        Revoked tokens that have not expired are kept so they stay revoked.
        """
        deleted, _ = OutstandingToken.objects.filter(expires_at__lt=timezone.now()).delete()
        logger.info("Cleaned %s expired refresh token rows", deleted)
        return deleted


class UserService:
    """
    Staff account management
    """
    MIN_USERNAME_LENGTH = 3
    MIN_PASSWORD_LENGTH = 6
    MIN_NAME_LENGTH = 2
    SELF_EDITABLE_FIELDS = ('name', 'phone')
    MANAGER_EDITABLE_FIELDS = ('name', 'phone', 'role', 'is_active')

    @staticmethod
    def validate(data, is_update=False):
        """
        Return a dict of field -> list of errors
        """
        errors = {}

        if not is_update:
            username = (data.get('username') or '').strip()
            if len(username) < UserService.MIN_USERNAME_LENGTH:
                errors.setdefault('username', []).append(
                    f'Username must be at least {UserService.MIN_USERNAME_LENGTH} characters'
                )
            password = data.get('password') or ''
            if len(password) < UserService.MIN_PASSWORD_LENGTH:
                errors.setdefault('password', []).append(
                    f'Password must be at least {UserService.MIN_PASSWORD_LENGTH} characters'
                )

        if not is_update or 'name' in data:
            name = (data.get('name') or '').strip()
            if len(name) < UserService.MIN_NAME_LENGTH:
                errors.setdefault('name', []).append(
                    f'Name must be at least {UserService.MIN_NAME_LENGTH} characters'
                )

        if 'role' in data and data['role'] not in User.Role.values:
            errors.setdefault('role', []).append('Invalid role')

        return errors

    @staticmethod
    def _get(user_id):
        user = User.objects.filter(pk=user_id).first()
        if user is None:
            raise NotFoundError('User not found')
        return user

    @staticmethod
    def create_user(data, current_user, request_meta=None):
        require(current_user, Permission.USERS_MANAGE)

        errors = UserService.validate(data)
        if errors:
            raise ValidationError('Invalid user data', details=errors)

        username = data['username'].strip()
        if User.objects.filter(username=username).exists():
            raise ConflictError('Username already exists')

        user = User.objects.create_user(
            username=username,
            password=data['password'],
            name=data['name'].strip(),
            phone=data.get('phone') or None,
            role=data.get('role') or User.Role.VENDOR,
        )

        logger.info("User %s created by %s", user.pk, current_user.pk)
        AuditService.record(
            'USER_CREATE',
            user=current_user,
            entity_type='user',
            entity_id=user.pk,
            details={'username': user.username, 'role': user.role},
            request_meta=request_meta,
        )
        return user

    @staticmethod
    def get_user(user_id, current_user):
        if user_id != current_user.pk:
            require(current_user, Permission.USERS_MANAGE)
        return UserService._get(user_id)

    @staticmethod
    def list_users(current_user, role=None, is_active=None, page=1, limit=50):
        require(current_user, Permission.USERS_MANAGE)

        queryset = User.objects.all().order_by('-created_at')
        if role:
            queryset = queryset.filter(role=role)
        if is_active is not None:
            queryset = queryset.filter(is_active=is_active)

        return paginate(queryset, page, limit)

    @staticmethod
    def update_user(user_id, data, current_user, request_meta=None):
        is_manager = has_permission(current_user, Permission.USERS_MANAGE)
        if user_id != current_user.pk and not is_manager:
            raise Forbidden('Access to this user is not allowed')

        allowed = UserService.MANAGER_EDITABLE_FIELDS if is_manager else UserService.SELF_EDITABLE_FIELDS
        forbidden_fields = [f for f in data if f not in allowed]
        if forbidden_fields:
            raise Forbidden(f"You cannot modify: {', '.join(sorted(forbidden_fields))}")

        if data.get('is_active') is False and user_id == current_user.pk:
            raise ValidationError('You cannot deactivate your own account')

        errors = UserService.validate(data, is_update=True)
        if errors:
            raise ValidationError('Invalid user data', details=errors)

        user = UserService._get(user_id)
        for field, value in data.items():
            if field == 'name':
                value = value.strip()
            setattr(user, field, value)
        user.save()

        if data.get('is_active') is False:
            CredentialService.revoke_all(user)

        logger.info("User %s updated by %s", user.pk, current_user.pk)
        AuditService.record(
            'USER_UPDATE',
            user=current_user,
            entity_type='user',
            entity_id=user.pk,
            details={'updates': sorted(data.keys())},
            request_meta=request_meta,
        )
        return user

    @staticmethod
    def deactivate(user_id, current_user, request_meta=None):
        """
        Soft delete: the account stays for history but can no longer log in
        """
        require(current_user, Permission.USERS_MANAGE)
        if user_id == current_user.pk:
            raise ValidationError('You cannot deactivate your own account')

        user = UserService._get(user_id)
        User.objects.filter(pk=user.pk).update(is_active=False, updated_at=timezone.now())
        user.refresh_from_db()
        CredentialService.revoke_all(user)

        logger.info("User %s deactivated by %s", user.pk, current_user.pk)
        AuditService.record(
            'USER_DEACTIVATE',
            user=current_user,
            entity_type='user',
            entity_id=user.pk,
            request_meta=request_meta,
        )
        return user

    @staticmethod
    def purge(user_id, current_user, request_meta=None):
        """
        Hard delete, allowed only while no ticket names the user as issuer
        """
        require(current_user, Permission.USERS_MANAGE)
        if user_id == current_user.pk:
            raise ValidationError('You cannot delete your own account')

        user = UserService._get(user_id)
        if user.issued_tickets.exists():
            raise ConflictError('User has issued tickets and cannot be deleted; deactivate instead')

        username = user.username
        try:
            user.delete()
        except ProtectedError as e:
            # A ticket issued after the check above
            raise ConflictError('User has issued tickets and cannot be deleted; deactivate instead') from e

        logger.info("User %s purged by %s", user_id, current_user.pk)
        AuditService.record(
            'USER_DELETE',
            user=current_user,
            entity_type='user',
            entity_id=user_id,
            details={'username': username},
            request_meta=request_meta,
        )
        return True

    @staticmethod
    def change_password(user_id, current_password, new_password, current_user, request_meta=None):
        is_manager = has_permission(current_user, Permission.USERS_MANAGE)
        if user_id != current_user.pk and not is_manager:
            raise Forbidden('Access to this user is not allowed')

        user = UserService._get(user_id)

        # Managers resetting someone else's password skip the current password check
        if not (is_manager and user_id != current_user.pk):
            if not current_password or not user.check_password(current_password):
                raise ValidationError('Current password is incorrect')

        if not new_password or len(new_password) < UserService.MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f'New password must be at least {UserService.MIN_PASSWORD_LENGTH} characters'
            )

        user.set_password(new_password)
        user.save(update_fields=['password', 'updated_at'])
        CredentialService.revoke_all(user)

        logger.info("Password changed for user %s", user.pk)
        AuditService.record(
            'PASSWORD_CHANGE',
            user=current_user,
            entity_type='user',
            entity_id=user.pk,
            request_meta=request_meta,
        )
        return True

    @staticmethod
    def search_users(query, current_user, limit=10):
        require(current_user, Permission.USERS_MANAGE)
        query = (query or '').strip()
        if not query:
            return []
        return list(
            User.objects.filter(Q(username__icontains=query) | Q(name__icontains=query))
            .order_by('name')[:limit]
        )

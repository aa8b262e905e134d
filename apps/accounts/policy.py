"""
Role to permission resolution.

Call sites check permissions from this module and never compare role strings
themselves.
"""
import logging

from rest_framework.permissions import BasePermission

from core.exceptions import Forbidden

logger = logging.getLogger(__name__)


class Permission:
    TICKETS_CREATE = 'tickets.create'
    TICKETS_READ_ALL = 'tickets.read_all'
    TICKETS_READ_OWN = 'tickets.read_own'
    TICKETS_UPDATE = 'tickets.update'
    TICKETS_DELETE = 'tickets.delete'
    TICKETS_SCAN = 'tickets.scan'
    TICKETS_MARK_SENT = 'tickets.mark_sent'
    USERS_MANAGE = 'users.manage'
    STATS_READ_ALL = 'stats.read_all'
    STATS_READ_OWN = 'stats.read_own'


ALL_PERMISSIONS = frozenset(
    value for name, value in vars(Permission).items() if name.isupper()
)

ROLE_PERMISSIONS = {
    'admin': ALL_PERMISSIONS,
    'vendor': frozenset({
        Permission.TICKETS_CREATE,
        Permission.TICKETS_READ_OWN,
        Permission.TICKETS_SCAN,
        Permission.TICKETS_MARK_SENT,
        Permission.STATS_READ_OWN,
    }),
    'controller': frozenset({
        Permission.TICKETS_SCAN,
    }),
}


def permissions_for(role):
    """Return the permission set granted to ``role`` (empty for unknown roles)"""
    return ROLE_PERMISSIONS.get(role, frozenset())


def has_permission(user, permission):
    if user is None or not getattr(user, 'is_authenticated', False):
        return False
    if not user.is_active:
        return False
    return permission in permissions_for(user.role)


def require(user, *permissions):
    """
    Raise Forbidden unless ``user`` holds every permission given
    """
    missing = [p for p in permissions if not has_permission(user, p)]
    if missing:
        logger.warning(
            "Permission denied for user %s: missing %s",
            getattr(user, 'pk', None),
            ', '.join(missing),
        )
        raise Forbidden('Insufficient permissions')


def require_owner_or_admin(user, owner_id, all_permission=Permission.TICKETS_READ_ALL):
    """
    Allow callers holding ``all_permission``; everyone else must own the resource
    """
    if has_permission(user, all_permission):
        return
    if user is not None and owner_id is not None and owner_id == user.pk:
        return
    logger.warning(
        "Ownership check failed: user %s on resource owned by %s",
        getattr(user, 'pk', None),
        owner_id,
    )
    raise Forbidden('Access to this resource is not allowed')


def sees_all(user, all_permission):
    """True when ``user``'s reads are not restricted to their own records"""
    return has_permission(user, all_permission)


def permission_required(*required):
    """
    Build a DRF permission class requiring every permission in ``required``
    """

    class RequiredPermissions(BasePermission):
        message = 'Insufficient permissions'

        def has_permission(self, request, view):
            return all(has_permission(request.user, p) for p in required)

    RequiredPermissions.__name__ = 'Requires_' + '_'.join(
        p.replace('.', '_') for p in required
    )
    return RequiredPermissions

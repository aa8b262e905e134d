"""
Error taxonomy and the API error envelope.

Every error leaving the API is rendered as
``{"success": false, "error": {"category": ..., "message": ..., "details": ...}}``.
"""
import logging
import traceback

from django.conf import settings
from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.db import IntegrityError
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class AppError(exceptions.APIException):
    """
    Base class for errors raised by the service layer
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    category = 'internal_error'
    default_detail = 'Internal server error'
    default_code = 'error'

    def __init__(self, message=None, details=None):
        super().__init__(detail=message or self.default_detail)
        self.message = str(self.detail)
        self.details = details


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    category = 'validation_error'
    default_detail = 'Validation failed'


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    category = 'authentication_error'
    default_detail = 'Authentication required'


class InvalidCredentials(AuthenticationError):
    category = 'invalid_credentials'
    default_detail = 'Invalid username or password'


class AccountDisabled(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    category = 'account_disabled'
    default_detail = 'Account is disabled'


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    category = 'authorization_error'
    default_detail = 'You do not have permission to perform this action'


Forbidden = AuthorizationError


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    category = 'not_found'
    default_detail = 'Resource not found'


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    category = 'conflict'
    default_detail = 'Resource conflict'


class BusinessRuleError(ConflictError):
    category = 'business_rule_violation'
    default_detail = 'Operation not allowed in the current state'


class StorageUnavailable(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    category = 'storage_unavailable'
    default_detail = 'Storage is temporarily unavailable'


class ArtifactUnavailable(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    category = 'artifact_unavailable'
    default_detail = 'Ticket artifact could not be rendered'


# DRF / Django exceptions mapped onto the same categories
_DRF_CATEGORIES = (
    (exceptions.ValidationError, 'validation_error'),
    (exceptions.ParseError, 'validation_error'),
    (exceptions.NotAuthenticated, 'authentication_error'),
    (exceptions.AuthenticationFailed, 'authentication_error'),
    (exceptions.PermissionDenied, 'authorization_error'),
    (exceptions.NotFound, 'not_found'),
    (exceptions.MethodNotAllowed, 'method_not_allowed'),
    (exceptions.Throttled, 'throttled'),
)


def _category_for(exc):
    if isinstance(exc, AppError):
        return exc.category
    for exc_class, category in _DRF_CATEGORIES:
        if isinstance(exc, exc_class):
            return category
    return 'error'


def _message_for(exc, data):
    if isinstance(exc, AppError):
        return exc.message
    if isinstance(exc, exceptions.ValidationError):
        return 'Validation failed'
    if isinstance(data, dict) and 'detail' in data:
        return str(data['detail'])
    return str(exc)


def _with_debug(payload, exc):
    if settings.DEBUG:
        payload['debug'] = {
            'exception': exc.__class__.__name__,
            'traceback': traceback.format_exception(type(exc), exc, exc.__traceback__),
        }
    return payload


def api_exception_handler(exc, context):
    """
    DRF exception handler producing the ``{success, error}`` envelope
    """
    if isinstance(exc, Http404):
        exc = exceptions.NotFound()
    elif isinstance(exc, DjangoPermissionDenied):
        exc = exceptions.PermissionDenied()
    elif isinstance(exc, IntegrityError):
        logger.warning("Integrity error: %s", exc)
        exc = ConflictError('Resource conflicts with existing data')

    response = exception_handler(exc, context)

    if response is None:
        view = context.get('view')
        logger.exception(
            "Unhandled error in %s",
            view.__class__.__name__ if view else 'unknown view',
            exc_info=exc,
        )
        payload = {
            'success': False,
            'error': {'category': 'internal_error', 'message': 'Internal server error'},
        }
        return Response(_with_debug(payload, exc), status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    error = {
        'category': _category_for(exc),
        'message': _message_for(exc, response.data),
    }
    if isinstance(exc, AppError):
        if exc.details is not None:
            error['details'] = exc.details
    elif isinstance(exc, exceptions.ValidationError):
        error['details'] = response.data

    response.data = _with_debug({'success': False, 'error': error}, exc)
    return response

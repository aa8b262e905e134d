from drf_yasg import openapi
from rest_framework import status as http_status
from rest_framework.response import Response

from core.exceptions import ValidationError

_TRUE = ('true', '1', 'yes')
_FALSE = ('false', '0', 'no')

ENVELOPE = openapi.Schema(
    type=openapi.TYPE_OBJECT,
    properties={
        'success': openapi.Schema(type=openapi.TYPE_BOOLEAN),
        'data': openapi.Schema(type=openapi.TYPE_OBJECT),
        'message': openapi.Schema(type=openapi.TYPE_STRING),
    }
)


def success_response(data=None, message=None, status=http_status.HTTP_200_OK, **extra):
    """
    Build the ``{success: true, data, message?}`` envelope
    """
    payload = {'success': True, 'data': data}
    if message:
        payload['message'] = message
    payload.update(extra)
    return Response(payload, status=status)


def validated(serializer_class, data, partial=False):
    """
    Run ``serializer_class`` over request data and return validated_data,
    raising the API ValidationError with field errors as details
    """
    serializer = serializer_class(data=data, partial=partial)
    if not serializer.is_valid():
        raise ValidationError('Invalid request data', details=serializer.errors)
    return serializer.validated_data


def query_bool(request, name):
    """
    Read an optional boolean query parameter; None when absent
    """
    raw = request.query_params.get(name)
    if raw is None or raw == '':
        return None
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValidationError(f'Invalid boolean for {name}', details={name: [raw]})

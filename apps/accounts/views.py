from rest_framework import status
from rest_framework.views import APIView
from rest_framework.permissions import IsAuthenticated, AllowAny
from django.conf import settings
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from core.exceptions import AuthenticationError
from core.responses import ENVELOPE, query_bool, success_response, validated
from .policy import Permission, permission_required
from .serializers import (
    ChangePasswordSerializer,
    LoginSerializer,
    RefreshSerializer,
    TokenResponseSerializer,
    UserCreateSerializer,
    UserSerializer,
    UserUpdateSerializer,
    VerifySerializer,
)
from .services import CredentialService, RequestMeta, UserService


def _cookie_kwargs():
    return {
        'path': '/',
        'domain': None,
        'secure': settings.COOKIE_SECURE,
        'httponly': settings.COOKIE_HTTPONLY,
        'samesite': settings.COOKIE_SAMESITE,
    }


def set_access_cookie(response, access_token):
    response.set_cookie(
        key=settings.COOKIE_ACCESS_TOKEN_NAME,
        value=str(access_token),
        max_age=int(settings.SIMPLE_JWT['ACCESS_TOKEN_LIFETIME'].total_seconds()),
        **_cookie_kwargs()
    )
    return response


def set_jwt_cookies(response, access_token, refresh_token):
    """
    Helper function to set JWT tokens in HTTP-only cookies
    """
    set_access_cookie(response, access_token)
    response.set_cookie(
        key=settings.COOKIE_REFRESH_TOKEN_NAME,
        value=str(refresh_token),
        max_age=int(settings.SIMPLE_JWT['REFRESH_TOKEN_LIFETIME'].total_seconds()),
        **_cookie_kwargs()
    )
    return response


def clear_jwt_cookies(response):
    """
    Helper function to clear JWT cookies (for logout)
    """
    for name in (settings.COOKIE_ACCESS_TOKEN_NAME, settings.COOKIE_REFRESH_TOKEN_NAME):
        response.set_cookie(key=name, value='', max_age=0, **_cookie_kwargs())
    return response


class LoginView(APIView):
    """
    API endpoint for staff login with username and password
    """
    permission_classes = [AllowAny]

    @swagger_auto_schema(
        operation_description="Log in with username and password. Tokens are returned and set as HTTP-only cookies.",
        request_body=LoginSerializer,
        responses={
            200: openapi.Response(description="Login successful", schema=TokenResponseSerializer),
            400: openapi.Response(description="Invalid request data"),
            401: openapi.Response(description="Invalid username or password"),
            403: openapi.Response(description="Account is disabled"),
        },
        tags=['Authentication']
    )
    def post(self, request):
        data = validated(LoginSerializer, request.data)
        result = CredentialService.login(
            data['username'],
            data['password'],
            request_meta=RequestMeta.from_request(request),
        )

        response = success_response(
            {
                'access': str(result['access']),
                'refresh': str(result['refresh']),
                'user': UserSerializer(result['user']).data,
            },
            message='Login successful',
        )
        return set_jwt_cookies(response, result['access'], result['refresh'])


class LogoutView(APIView):
    """
    API endpoint to logout user
    Revokes the refresh token and clears JWT cookies
    """
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Revoke the current refresh token (body or cookie) and clear the JWT cookies",
        request_body=RefreshSerializer,
        responses={
            200: openapi.Response(description="Logged out", schema=ENVELOPE),
            401: openapi.Response(description="Authentication required"),
        },
        security=[{'Bearer': []}],
        tags=['Authentication']
    )
    def post(self, request):
        data = validated(RefreshSerializer, request.data)
        raw_refresh = data.get('refresh') or request.COOKIES.get(settings.COOKIE_REFRESH_TOKEN_NAME)

        CredentialService.revoke_one(
            request.user,
            raw_refresh,
            request_meta=RequestMeta.from_request(request),
        )

        response = success_response(None, message='Logged out successfully')
        return clear_jwt_cookies(response)


class RefreshTokenView(APIView):
    """
    API endpoint to refresh access token
    """
    permission_classes = [AllowAny]

    @swagger_auto_schema(
        operation_description="Issue a new access token from a refresh token (body or cookie)",
        request_body=RefreshSerializer,
        responses={
            200: openapi.Response(description="Token refreshed", schema=ENVELOPE),
            401: openapi.Response(description="Invalid, expired or revoked refresh token"),
        },
        tags=['Authentication']
    )
    def post(self, request):
        data = validated(RefreshSerializer, request.data)
        raw_refresh = data.get('refresh') or request.COOKIES.get(settings.COOKIE_REFRESH_TOKEN_NAME)

        result = CredentialService.refresh(raw_refresh)

        response = success_response(
            {'access': str(result['access'])},
            message='Token refreshed successfully',
        )
        return set_access_cookie(response, result['access'])


class MeView(APIView):
    """
    Current user's profile
    """
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Profile of the authenticated user",
        responses={200: UserSerializer, 401: openapi.Response(description="Authentication required")},
        security=[{'Bearer': []}],
        tags=['Authentication']
    )
    def get(self, request):
        return success_response(UserSerializer(request.user).data)


class VerifyTokenView(APIView):
    permission_classes = [AllowAny]

    @swagger_auto_schema(
        operation_description="Validate an access token (body, cookie or Authorization header) and return its claims",
        request_body=VerifySerializer,
        responses={
            200: openapi.Response(description="Token is valid", schema=ENVELOPE),
            401: openapi.Response(description="Invalid or expired token"),
        },
        tags=['Authentication']
    )
    def post(self, request):
        data = validated(VerifySerializer, request.data)
        raw_token = data.get('token') or request.COOKIES.get(settings.COOKIE_ACCESS_TOKEN_NAME)
        if not raw_token and request.auth is not None:
            raw_token = str(request.auth)
        if not raw_token:
            raise AuthenticationError('Token not provided')

        payload = CredentialService.verify(raw_token)
        return success_response({'valid': True, 'payload': payload})


class RevokeAllTokensView(APIView):
    """
    Log out everywhere: revoke every refresh token of the caller
    """
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Revoke all refresh tokens of the authenticated user",
        responses={200: openapi.Response(description="Tokens revoked", schema=ENVELOPE)},
        security=[{'Bearer': []}],
        tags=['Authentication']
    )
    def post(self, request):
        count = CredentialService.revoke_all(request.user)
        response = success_response({'revoked': count}, message='All sessions revoked')
        return clear_jwt_cookies(response)


class UserListCreateView(APIView):
    """
    List staff accounts or create a new one (managers only)
    """
    permission_classes = [permission_required(Permission.USERS_MANAGE)]

    @swagger_auto_schema(
        operation_description="List users, filterable by role and is_active",
        manual_parameters=[
            openapi.Parameter('role', openapi.IN_QUERY, type=openapi.TYPE_STRING),
            openapi.Parameter('is_active', openapi.IN_QUERY, type=openapi.TYPE_BOOLEAN),
            openapi.Parameter('page', openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
            openapi.Parameter('limit', openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
        ],
        responses={200: openapi.Response(description="Paginated users", schema=ENVELOPE)},
        security=[{'Bearer': []}],
        tags=['Users']
    )
    def get(self, request):
        users, pagination = UserService.list_users(
            request.user,
            role=request.query_params.get('role') or None,
            is_active=query_bool(request, 'is_active'),
            page=request.query_params.get('page', 1),
            limit=request.query_params.get('limit', 50),
        )
        return success_response(UserSerializer(users, many=True).data, pagination=pagination)

    @swagger_auto_schema(
        operation_description="Create a staff account",
        request_body=UserCreateSerializer,
        responses={
            201: UserSerializer,
            400: openapi.Response(description="Invalid user data"),
            403: openapi.Response(description="Insufficient permissions"),
            409: openapi.Response(description="Username already exists"),
        },
        security=[{'Bearer': []}],
        tags=['Users']
    )
    def post(self, request):
        data = validated(UserCreateSerializer, request.data)
        user = UserService.create_user(data, request.user, request_meta=RequestMeta.from_request(request))
        return success_response(
            UserSerializer(user).data,
            message='User created successfully',
            status=status.HTTP_201_CREATED,
        )


class UserStatsView(APIView):
    permission_classes = [permission_required(Permission.USERS_MANAGE)]

    @swagger_auto_schema(
        operation_description="Account counts by role and activity",
        responses={200: openapi.Response(description="User statistics", schema=ENVELOPE)},
        security=[{'Bearer': []}],
        tags=['Users']
    )
    def get(self, request):
        from apps.stats.services import StatisticsService

        return success_response(StatisticsService.user_stats(request.user))


class UserSearchView(APIView):
    permission_classes = [permission_required(Permission.USERS_MANAGE)]

    @swagger_auto_schema(
        operation_description="Search users by username or name",
        manual_parameters=[openapi.Parameter('q', openapi.IN_QUERY, type=openapi.TYPE_STRING)],
        responses={200: UserSerializer(many=True)},
        security=[{'Bearer': []}],
        tags=['Users']
    )
    def get(self, request):
        users = UserService.search_users(request.query_params.get('q', ''), request.user)
        return success_response(UserSerializer(users, many=True).data)


class UserDetailView(APIView):
    """
    Read, update or deactivate a single account
    """
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Get a user (self, or any user for managers)",
        responses={200: UserSerializer, 403: openapi.Response(description="Forbidden"), 404: openapi.Response(description="Not found")},
        security=[{'Bearer': []}],
        tags=['Users']
    )
    def get(self, request, user_id):
        user = UserService.get_user(user_id, request.user)
        return success_response(UserSerializer(user).data)

    def _update(self, request, user_id):
        data = validated(UserUpdateSerializer, request.data, partial=True)
        user = UserService.update_user(
            user_id,
            dict(data),
            request.user,
            request_meta=RequestMeta.from_request(request),
        )
        return success_response(UserSerializer(user).data, message='User updated successfully')

    @swagger_auto_schema(
        operation_description="Update a user. Users may change their own name and phone; managers may also change role and is_active.",
        request_body=UserUpdateSerializer,
        responses={200: UserSerializer, 400: openapi.Response(description="Invalid data"), 403: openapi.Response(description="Forbidden")},
        security=[{'Bearer': []}],
        tags=['Users']
    )
    def put(self, request, user_id):
        return self._update(request, user_id)

    @swagger_auto_schema(
        operation_description="Partially update a user",
        request_body=UserUpdateSerializer,
        responses={200: UserSerializer},
        security=[{'Bearer': []}],
        tags=['Users']
    )
    def patch(self, request, user_id):
        return self._update(request, user_id)

    @swagger_auto_schema(
        operation_description="Deactivate a user (soft delete) and revoke their sessions",
        responses={200: UserSerializer, 400: openapi.Response(description="Cannot deactivate yourself")},
        security=[{'Bearer': []}],
        tags=['Users']
    )
    def delete(self, request, user_id):
        user = UserService.deactivate(
            user_id,
            request.user,
            request_meta=RequestMeta.from_request(request),
        )
        return success_response(UserSerializer(user).data, message='User deactivated successfully')


class UserPurgeView(APIView):
    permission_classes = [permission_required(Permission.USERS_MANAGE)]

    @swagger_auto_schema(
        operation_description="Permanently delete a user that never issued tickets",
        responses={
            200: openapi.Response(description="User deleted", schema=ENVELOPE),
            409: openapi.Response(description="User has issued tickets"),
        },
        security=[{'Bearer': []}],
        tags=['Users']
    )
    def delete(self, request, user_id):
        UserService.purge(
            user_id,
            request.user,
            request_meta=RequestMeta.from_request(request),
        )
        return success_response(None, message='User deleted permanently')


class ChangePasswordView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Change a password. All sessions of the account are revoked afterwards.",
        request_body=ChangePasswordSerializer,
        responses={
            200: openapi.Response(description="Password changed", schema=ENVELOPE),
            400: openapi.Response(description="Current password incorrect or new password too short"),
        },
        security=[{'Bearer': []}],
        tags=['Users']
    )
    def post(self, request, user_id):
        data = validated(ChangePasswordSerializer, request.data)
        UserService.change_password(
            user_id,
            data.get('current_password'),
            data['new_password'],
            request.user,
            request_meta=RequestMeta.from_request(request),
        )
        response = success_response(None, message='Password changed successfully')
        if user_id == request.user.pk:
            clear_jwt_cookies(response)
        return response

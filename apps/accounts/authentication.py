from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from django.conf import settings


class CookieJWTAuthentication(JWTAuthentication):
    """
    JWT authentication that reads the access token from the HTTP-only cookie
    first and falls back to the ``Authorization: Bearer`` header
    """

    def authenticate(self, request):
        candidates = []

        cookie_token = request.COOKIES.get(settings.COOKIE_ACCESS_TOKEN_NAME)
        if cookie_token:
            candidates.append(cookie_token)

        header = self.get_header(request)
        if header is not None:
            header_token = self.get_raw_token(header)
            if header_token is not None:
                candidates.append(header_token)

        for raw_token in candidates:
            try:
                validated_token = self.get_validated_token(raw_token)
            except (InvalidToken, TokenError):
                # A stale cookie should not hide a valid header token
                continue
            return self.get_user(validated_token), validated_token

        return None

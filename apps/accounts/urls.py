from django.urls import path
from .views import (
    LoginView,
    LogoutView,
    MeView,
    RefreshTokenView,
    RevokeAllTokensView,
    VerifyTokenView,
)

app_name = 'accounts'

urlpatterns = [
    path('login/', LoginView.as_view(), name='login'),
    path('logout/', LogoutView.as_view(), name='logout'),
    path('refresh/', RefreshTokenView.as_view(), name='refresh'),
    path('me/', MeView.as_view(), name='me'),
    path('verify/', VerifyTokenView.as_view(), name='verify'),
    path('revoke-all/', RevokeAllTokensView.as_view(), name='revoke-all'),
]

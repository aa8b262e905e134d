from django.urls import path
from .views import (
    ChangePasswordView,
    UserDetailView,
    UserListCreateView,
    UserPurgeView,
    UserSearchView,
    UserStatsView,
)

app_name = 'users'

urlpatterns = [
    path('', UserListCreateView.as_view(), name='list'),
    path('stats/', UserStatsView.as_view(), name='stats'),
    path('search/', UserSearchView.as_view(), name='search'),
    path('<int:user_id>/', UserDetailView.as_view(), name='detail'),
    path('<int:user_id>/purge/', UserPurgeView.as_view(), name='purge'),
    path('<int:user_id>/change-password/', ChangePasswordView.as_view(), name='change-password'),
]

from django.urls import path
from .views import (
    CategoryStatsView,
    DashboardView,
    GlobalStatsView,
    OrderListView,
    OrderStatsView,
    ScanStatsView,
    UserStatsView,
    VendorStatsView,
)

app_name = 'stats'

urlpatterns = [
    path('', GlobalStatsView.as_view(), name='global'),
    path('dashboard/', DashboardView.as_view(), name='dashboard'),
    path('vendors/', VendorStatsView.as_view(), name='vendors'),
    path('categories/', CategoryStatsView.as_view(), name='categories'),
    path('users/', UserStatsView.as_view(), name='users'),
    path('scans/', ScanStatsView.as_view(), name='scans'),
    path('orders/', OrderListView.as_view(), name='orders'),
    path('orders/<str:order_id>/', OrderStatsView.as_view(), name='order'),
]

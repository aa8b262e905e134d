from rest_framework.views import APIView
from rest_framework.permissions import IsAuthenticated
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from apps.accounts.policy import Permission, permission_required
from core.responses import ENVELOPE, success_response
from .services import StatisticsService


def _stats_schema(description, **kwargs):
    return swagger_auto_schema(
        operation_description=description,
        responses={
            200: openapi.Response(description="Statistics", schema=ENVELOPE),
            403: openapi.Response(description="Insufficient permissions"),
        },
        security=[{'Bearer': []}],
        tags=['Statistics'],
        **kwargs
    )


class GlobalStatsView(APIView):
    """
    Ticket totals, rates and revenue (own tickets for vendors)
    """
    permission_classes = [IsAuthenticated]

    @_stats_schema("Global ticket statistics")
    def get(self, request):
        return success_response(StatisticsService.global_stats(request.user))


class DashboardView(APIView):
    permission_classes = [IsAuthenticated]

    @_stats_schema("Global and category statistics, recent orders and (admins) vendor rollups")
    def get(self, request):
        return success_response(StatisticsService.dashboard(request.user))


class VendorStatsView(APIView):
    permission_classes = [permission_required(Permission.STATS_READ_ALL)]

    @_stats_schema("Per-vendor sales, sorted by revenue (admin only)")
    def get(self, request):
        return success_response(StatisticsService.vendor_stats(request.user))


class CategoryStatsView(APIView):
    permission_classes = [IsAuthenticated]

    @_stats_schema("Ticket counts and revenue per category")
    def get(self, request):
        return success_response(StatisticsService.category_stats(request.user))


class UserStatsView(APIView):
    permission_classes = [permission_required(Permission.USERS_MANAGE)]

    @_stats_schema("Account counts by role and activity (admin only)")
    def get(self, request):
        return success_response(StatisticsService.user_stats(request.user))


class ScanStatsView(APIView):
    permission_classes = [permission_required(Permission.STATS_READ_ALL)]

    @_stats_schema("Scan attempts per scanner (admin only)")
    def get(self, request):
        return success_response(StatisticsService.scan_stats(request.user))


class OrderListView(APIView):
    permission_classes = [IsAuthenticated]

    @_stats_schema(
        "Paginated order rollups, newest first",
        manual_parameters=[
            openapi.Parameter('page', openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
            openapi.Parameter('limit', openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
        ],
    )
    def get(self, request):
        orders, pagination = StatisticsService.orders(
            request.user,
            page=request.query_params.get('page', 1),
            limit=request.query_params.get('limit', 20),
        )
        return success_response(orders, pagination=pagination)


class OrderStatsView(APIView):
    permission_classes = [IsAuthenticated]

    @_stats_schema("Rollup of a single order")
    def get(self, request, order_id):
        return success_response(StatisticsService.order_stats(order_id, request.user))

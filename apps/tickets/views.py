from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from apps.accounts.policy import Permission, permission_required
from apps.accounts.services import RequestMeta
from core.responses import ENVELOPE, query_bool, success_response, validated
from .serializers import (
    MarkSentBatchSerializer,
    OrderCreateSerializer,
    ScanOutcomeSerializer,
    TicketSerializer,
)
from .services import OrderIssuanceService, ScanValidator, TicketService


class TicketListCreateView(APIView):
    """
    API endpoint to list tickets or issue a new order

    Vendors only see the tickets they issued; admins see every ticket.
    """
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="List tickets (newest first) with optional filters",
        manual_parameters=[
            openapi.Parameter('order_id', openapi.IN_QUERY, type=openapi.TYPE_STRING),
            openapi.Parameter('category', openapi.IN_QUERY, type=openapi.TYPE_STRING),
            openapi.Parameter('used', openapi.IN_QUERY, type=openapi.TYPE_BOOLEAN),
            openapi.Parameter('sent', openapi.IN_QUERY, type=openapi.TYPE_BOOLEAN),
            openapi.Parameter('created_by', openapi.IN_QUERY, type=openapi.TYPE_INTEGER, description="Admins only"),
            openapi.Parameter('search', openapi.IN_QUERY, type=openapi.TYPE_STRING),
            openapi.Parameter('page', openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
            openapi.Parameter('limit', openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
        ],
        responses={200: openapi.Response(description="Paginated tickets", schema=ENVELOPE)},
        security=[{'Bearer': []}],
        tags=['Tickets']
    )
    def get(self, request):
        params = request.query_params
        filters = {
            'order_id': params.get('order_id') or None,
            'category': params.get('category') or None,
            'used': query_bool(request, 'used'),
            'sent': query_bool(request, 'sent'),
            'created_by': params.get('created_by') or None,
            'search': params.get('search') or None,
        }
        tickets, pagination = TicketService.list_tickets(
            request.user,
            filters=filters,
            page=params.get('page', 1),
            limit=params.get('limit', 50),
        )
        data = TicketSerializer(tickets, many=True, context={'request': request}).data
        return success_response(data, pagination=pagination)

    @swagger_auto_schema(
        operation_description="Issue an order: one ticket per attendee, all created in a single transaction",
        request_body=OrderCreateSerializer,
        responses={
            201: openapi.Response(description="Order issued", schema=ENVELOPE),
            400: openapi.Response(description="Validation failed; details list every violation"),
            403: openapi.Response(description="Insufficient permissions"),
        },
        security=[{'Bearer': []}],
        tags=['Tickets']
    )
    def post(self, request):
        data = validated(OrderCreateSerializer, request.data)
        order = OrderIssuanceService.issue_order(
            data['client_name'],
            data['client_phone'],
            data['attendees'],
            request.user,
            payment_method=data.get('payment_method') or None,
            request_meta=RequestMeta.from_request(request),
        )
        return success_response(
            {
                'order_id': order.order_id,
                'client_name': order.client_name,
                'client_phone': order.client_phone,
                'payment_method': order.payment_method,
                'total': order.total,
                'count': len(order.tickets),
                'tickets': TicketSerializer(order.tickets, many=True, context={'request': request}).data,
            },
            message=f'{len(order.tickets)} ticket(s) created successfully',
            status=status.HTTP_201_CREATED,
        )


class MarkSentBatchView(APIView):
    permission_classes = [permission_required(Permission.TICKETS_MARK_SENT)]

    @swagger_auto_schema(
        operation_description="Mark several tickets as sent; failures are reported per ticket",
        request_body=MarkSentBatchSerializer,
        responses={200: openapi.Response(description="Batch result", schema=ENVELOPE)},
        security=[{'Bearer': []}],
        tags=['Tickets']
    )
    def post(self, request):
        data = validated(MarkSentBatchSerializer, request.data)
        result = TicketService.mark_sent_batch(
            data['ticket_ids'],
            request.user,
            request_meta=RequestMeta.from_request(request),
        )
        return success_response(
            result,
            message=f"{len(result['success'])} ticket(s) marked as sent",
        )


class OrderTicketsView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="All tickets of one order",
        responses={200: TicketSerializer(many=True), 404: openapi.Response(description="Order not found")},
        security=[{'Bearer': []}],
        tags=['Tickets']
    )
    def get(self, request, order_id):
        tickets = TicketService.get_order_tickets(order_id, request.user)
        return success_response(TicketSerializer(tickets, many=True, context={'request': request}).data)


class TicketDetailView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Get one ticket (owner or admin)",
        responses={
            200: TicketSerializer,
            403: openapi.Response(description="Not your ticket"),
            404: openapi.Response(description="Ticket not found"),
        },
        security=[{'Bearer': []}],
        tags=['Tickets']
    )
    def get(self, request, ticket_id):
        ticket = TicketService.get_ticket(ticket_id, request.user)
        return success_response(TicketSerializer(ticket, context={'request': request}).data)

    @swagger_auto_schema(
        operation_description="Delete an unused ticket",
        responses={
            200: openapi.Response(description="Ticket deleted", schema=ENVELOPE),
            404: openapi.Response(description="Ticket not found"),
            409: openapi.Response(description="Ticket already used"),
        },
        security=[{'Bearer': []}],
        tags=['Tickets']
    )
    def delete(self, request, ticket_id):
        TicketService.delete_ticket(ticket_id, request.user, request_meta=RequestMeta.from_request(request))
        return success_response(None, message='Ticket deleted successfully')


class ScanTicketView(APIView):
    """
    Entry validation at the gate

    Returns 200 for a valid ticket and 400 with ``success=false`` when the
    ticket is unknown or already used.
    """
    permission_classes = [permission_required(Permission.TICKETS_SCAN)]

    @swagger_auto_schema(
        operation_description="Scan a ticket. Only the first successful scan of a ticket is accepted.",
        request_body=openapi.Schema(type=openapi.TYPE_OBJECT, properties={}),
        responses={
            200: ScanOutcomeSerializer,
            400: openapi.Response(description="Ticket not found or already used", schema=ScanOutcomeSerializer),
            403: openapi.Response(description="Insufficient permissions"),
        },
        security=[{'Bearer': []}],
        tags=['Tickets']
    )
    def post(self, request, ticket_id):
        outcome = ScanValidator.scan(ticket_id, request.user, request_meta=RequestMeta.from_request(request))
        data = ScanOutcomeSerializer(outcome, context={'request': request}).data

        return Response(
            {'success': outcome.success, 'data': data, 'message': outcome.message},
            status=status.HTTP_200_OK if outcome.success else status.HTTP_400_BAD_REQUEST,
        )


class MarkSentView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Mark a ticket as delivered. Repeat calls keep the first sent_at.",
        request_body=openapi.Schema(type=openapi.TYPE_OBJECT, properties={}),
        responses={200: TicketSerializer, 404: openapi.Response(description="Ticket not found")},
        security=[{'Bearer': []}],
        tags=['Tickets']
    )
    def post(self, request, ticket_id):
        ticket = TicketService.mark_sent(ticket_id, request.user, request_meta=RequestMeta.from_request(request))
        return success_response(
            TicketSerializer(ticket, context={'request': request}).data,
            message='Ticket marked as sent',
        )


class ShareMessageView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Text message for sending the ticket through a messaging app",
        responses={200: openapi.Response(description="Message", schema=ENVELOPE)},
        security=[{'Bearer': []}],
        tags=['Tickets']
    )
    def get(self, request, ticket_id):
        message = TicketService.share_message(ticket_id, request.user)
        return success_response({'ticket_id': ticket_id, 'message': message})


class RenderTicketView(APIView):
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(
        operation_description="Render the ticket PDF again",
        request_body=openapi.Schema(type=openapi.TYPE_OBJECT, properties={}),
        responses={
            200: TicketSerializer,
            503: openapi.Response(description="Rendering failed"),
        },
        security=[{'Bearer': []}],
        tags=['Tickets']
    )
    def post(self, request, ticket_id):
        ticket = TicketService.retry_render(ticket_id, request.user)
        return success_response(
            TicketSerializer(ticket, context={'request': request}).data,
            message='Ticket rendered',
        )

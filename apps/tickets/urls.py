from django.urls import path
from .views import (
    MarkSentBatchView,
    MarkSentView,
    OrderTicketsView,
    RenderTicketView,
    ScanTicketView,
    ShareMessageView,
    TicketDetailView,
    TicketListCreateView,
)

app_name = 'tickets'

urlpatterns = [
    path('', TicketListCreateView.as_view(), name='list'),
    path('mark-sent-batch/', MarkSentBatchView.as_view(), name='mark-sent-batch'),
    path('order/<str:order_id>/', OrderTicketsView.as_view(), name='order'),
    path('<str:ticket_id>/', TicketDetailView.as_view(), name='detail'),
    path('<str:ticket_id>/scan/', ScanTicketView.as_view(), name='scan'),
    path('<str:ticket_id>/mark-sent/', MarkSentView.as_view(), name='mark-sent'),
    path('<str:ticket_id>/share-message/', ShareMessageView.as_view(), name='share-message'),
    path('<str:ticket_id>/render/', RenderTicketView.as_view(), name='render'),
]

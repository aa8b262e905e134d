"""
Ticket artifact rendering: QR payload + printable PDF.

Rendering happens after the issuing transaction commits. Files are stored
through Django's default storage under ``TICKET_ARTIFACT_DIR``.
"""
import io
import json
import logging
from dataclasses import dataclass

import qrcode
from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from reportlab.lib import colors
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

PAGE_SIZE = (600, 300)
VIP_COLOR = colors.HexColor("#b91c1c")
STANDARD_COLOR = colors.HexColor("#1d4ed8")
BACKGROUND_COLOR = colors.HexColor("#111827")
TEXT_MUTED = colors.HexColor("#d1d5db")


class RenderError(Exception):
    """Raised when a ticket artifact cannot be produced"""


@dataclass(frozen=True)
class RenderedArtifact:
    qr_payload: str
    document_ref: str


class ArtifactRenderer:
    """
    Builds the QR payload and the PDF document for a ticket
    """

    def __init__(self, storage=None):
        self.storage = storage or default_storage

    @staticmethod
    def qr_payload(ticket):
        event = settings.EVENT
        return json.dumps(
            {
                'ticketId': ticket.id,
                'orderId': ticket.order_id,
                'event': event['name'],
                'name': ticket.attendee_name,
                'category': ticket.category,
                'date': event['date'],
                'venue': event['venue'],
            },
            ensure_ascii=False,
            separators=(',', ':'),
        )

    @staticmethod
    def document_path(ticket):
        return f"{settings.TICKET_ARTIFACT_DIR}/ticket-{ticket.id}.pdf"

    @staticmethod
    def qr_png(payload):
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_H,
            box_size=10,
            border=2,
        )
        qr.add_data(payload)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        img.save(buffer, "PNG")
        return buffer.getvalue()

    def build_pdf(self, ticket, qr_png):
        event = settings.EVENT
        category = ticket.category_info
        is_vip = ticket.category == 'vip'
        width, height = PAGE_SIZE

        buffer = io.BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=PAGE_SIZE)
        pdf.setTitle(f"Ticket {ticket.id}")

        pdf.setFillColor(BACKGROUND_COLOR)
        pdf.rect(0, 0, width, height, stroke=0, fill=1)

        # Header band
        pdf.setFillColor(VIP_COLOR if is_vip else STANDARD_COLOR)
        pdf.rect(0, height - 70, width, 70, stroke=0, fill=1)
        pdf.setFillColor(colors.white)
        pdf.setFont("Helvetica-Bold", 24)
        pdf.drawString(15, height - 38, event['name'].upper())
        pdf.setFont("Helvetica", 12)
        pdf.drawString(15, height - 58, f"{event['date']}  {event['time']}  |  {event['venue']}")

        pdf.setFont("Helvetica-Bold", 16)
        pdf.drawString(15, height - 110, ticket.attendee_name)
        pdf.setFont("Helvetica", 12)
        pdf.setFillColor(TEXT_MUTED)
        pdf.drawString(15, height - 135, f"Category: {category.get('name', ticket.category)}")
        pdf.drawString(15, height - 155, f"Price: {ticket.formatted_price}")
        pdf.drawString(15, height - 175, f"Order: {ticket.order_id}")

        pdf.setFont("Helvetica-Bold", 11)
        pdf.setFillColor(colors.white)
        pdf.drawString(15, 40, f"ID: {ticket.id}")
        pdf.setFont("Helvetica", 9)
        pdf.setFillColor(TEXT_MUTED)
        pdf.drawString(15, 22, "Present this ticket at the entrance. Valid for one entry only.")

        qr_size = 190
        pdf.setFillColor(colors.white)
        pdf.rect(width - qr_size - 25, 25, qr_size + 10, qr_size + 10, stroke=0, fill=1)
        pdf.drawImage(
            ImageReader(io.BytesIO(qr_png)),
            width - qr_size - 20,
            30,
            width=qr_size,
            height=qr_size,
        )

        pdf.showPage()
        pdf.save()
        return buffer.getvalue()

    def render(self, ticket):
        """
        Render ``ticket`` and store the PDF. Returns a RenderedArtifact.
        """
        payload = self.qr_payload(ticket)
        try:
            qr_png = self.qr_png(payload)
            document = self.build_pdf(ticket, qr_png)

            path = self.document_path(ticket)
            if self.storage.exists(path):
                self.storage.delete(path)
            stored_path = self.storage.save(path, ContentFile(document))
        except (OSError, ValueError) as e:
            raise RenderError(f"Could not render ticket {ticket.id}: {e}") from e

        logger.debug("Rendered ticket %s to %s", ticket.id, stored_path)
        return RenderedArtifact(qr_payload=payload, document_ref=stored_path)

    def discard(self, document_ref):
        """
        Remove a stored document; missing files are ignored
        """
        if not document_ref:
            return False
        try:
            if self.storage.exists(document_ref):
                self.storage.delete(document_ref)
                return True
        except OSError:
            logger.exception("Failed to delete artifact %s", document_ref)
        return False

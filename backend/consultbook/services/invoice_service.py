# backend/consultbook/services/invoice_service.py
"""
Invoice Service.

Renders a one-page PDF receipt for a PAID payment into ``INVOICE_DIR`` with
reportlab and returns its public URL. Text is set in a registered TrueType
font so non-Latin client and professional names are embedded as Unicode.
"""

import io
import logging
from pathlib import Path
from typing import List, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import InvalidStateException, NotFoundException
from ..models.booking import Booking
from ..models.payment import Payment, PaymentStatus
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .timezone_service import TimezoneService

logger = logging.getLogger(__name__)

INVOICE_URL_PREFIX = "/static/invoices"
INVOICE_FONT_NAME = "InvoiceSans"
# Bundled with reportlab and found on its TTF search path
FALLBACK_FONT_FILE = "Vera.ttf"


def register_invoice_font() -> str:
    """Register the invoice TTF once per process and return its font name."""
    if INVOICE_FONT_NAME not in pdfmetrics.getRegisteredFontNames():
        font_file = settings.invoice_font_path or FALLBACK_FONT_FILE
        pdfmetrics.registerFont(TTFont(INVOICE_FONT_NAME, font_file))
        logger.info("Registered invoice font %s from %s", INVOICE_FONT_NAME, font_file)
    return INVOICE_FONT_NAME


class InvoiceService(BaseService):
    def __init__(self, db: Session, output_dir: Optional[str] = None):
        super().__init__(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.output_dir = Path(output_dir or settings.invoice_dir)

        self.brand_color = colors.HexColor("#0f766e")
        self.dark_gray = colors.HexColor("#1e293b")
        self.light_gray = colors.HexColor("#f1f5f9")

    @staticmethod
    def filename_for(payment_id: str) -> str:
        return f"invoice-{payment_id}.pdf"

    def path_for(self, payment_id: str) -> Path:
        return self.output_dir / self.filename_for(payment_id)

    @staticmethod
    def url_for(payment_id: str) -> str:
        base = settings.public_base_url.rstrip("/")
        return f"{base}{INVOICE_URL_PREFIX}/{InvoiceService.filename_for(payment_id)}"

    @BaseService.measure_operation("generate_invoice")
    def generate(self, payment_id: str) -> str:
        """
        Write the invoice for a PAID payment and return its URL.

        Raises:
            NotFoundException: Unknown payment
            InvalidStateException: Payment is not PAID
        """
        payment = self.payment_repository.get_by_id(payment_id, load_relationships=False)
        if payment is None:
            raise NotFoundException(f"Payment {payment_id} not found", code="PAYMENT_NOT_FOUND")
        if payment.status != PaymentStatus.PAID.value:
            raise InvalidStateException(
                "Invoices are only issued for paid payments", current_state=payment.status
            )
        booking = self.booking_repository.get_by_id(payment.booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {payment.booking_id} not found")

        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(payment.id)
        path.write_bytes(self.render(payment, booking))
        self.logger.info("Invoice written for payment %s at %s", payment.id, path)
        return self.url_for(payment.id)

    def exists(self, payment_id: str) -> bool:
        return self.path_for(payment_id).is_file()

    def render(self, payment: Payment, booking: Booking) -> bytes:
        font_name = register_invoice_font()
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=0.75 * inch,
            leftMargin=0.75 * inch,
            topMargin=0.75 * inch,
            bottomMargin=0.75 * inch,
            title=f"{settings.brand_name} invoice INV-{payment.id}",
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "InvoiceTitle",
            parent=styles["Heading1"],
            fontName=font_name,
            fontSize=20,
            textColor=self.brand_color,
            spaceAfter=12,
        )
        body_style = ParagraphStyle(
            "InvoiceBody",
            parent=styles["Normal"],
            fontName=font_name,
            fontSize=10,
            textColor=self.dark_gray,
        )

        details = Table(self.invoice_rows(payment, booking), colWidths=[1.8 * inch, 4.4 * inch])
        details.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (-1, -1), font_name, 10),
                    ("TEXTCOLOR", (0, 0), (-1, -1), self.dark_gray),
                    ("ROWBACKGROUNDS", (0, 0), (-1, -1), [colors.white, self.light_gray]),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                    ("TOPPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )

        story = [
            Paragraph(f"{settings.brand_name} - Invoice", title_style),
            Spacer(1, 0.2 * inch),
            details,
            Spacer(1, 0.4 * inch),
            Paragraph("Thank you for your booking.", body_style),
        ]
        doc.build(story)
        return buffer.getvalue()

    def invoice_rows(self, payment: Payment, booking: Booking) -> List[List[str]]:
        client_name = booking.client.name if booking.client else booking.user_id
        professional_name = booking.professional.name if booking.professional else ""
        tz = TimezoneService.DEFAULT_TIMEZONE
        if booking.professional and booking.professional.professional_profile:
            tz = booking.professional.professional_profile.timezone
        paid_at = payment.paid_at or payment.updated_at or payment.created_at
        return [
            ["Invoice no", f"INV-{payment.id}"],
            ["Issued", paid_at.date().isoformat() if paid_at else ""],
            ["Booking", booking.id],
            ["Client", client_name],
            ["Professional", professional_name or booking.professional_id],
            ["Session", TimezoneService.format_for_display(booking.start_time, tz)],
            ["Duration", f"{int(booking.duration.total_seconds() // 60)} minutes"],
            ["Payment method", payment.method],
            ["Transaction", payment.transaction_id or ""],
            ["Amount paid", f"{payment.amount} {payment.currency}"],
        ]

"""Certificate PDF renderer using ReportLab.

Pure utility — no DB or FastAPI imports.
Draws a single-page A4 certificate from a template row: the recipient's name
goes at the template's configured placement, and a QR code in the corner
encodes the public verification URL.

Text is set in TrueType fonts with Arabic coverage (DejaVu Sans ships in
``fonts/``). Arabic is shaped and put in visual order before drawing.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Protocol

import arabic_reshaper
import qrcode
from bidi.algorithm import get_display
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape, portrait
from reportlab.lib.units import cm
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from issuance.exceptions import RenderError
from issuance.models.enums import TemplateOrientation

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 60
MAX_FIELD_LINES = 6

FONTS_DIR = Path(__file__).resolve().parent / "fonts"
DEFAULT_REGULAR_FONT = FONTS_DIR / "DejaVuSans.ttf"
DEFAULT_BOLD_FONT = FONTS_DIR / "DejaVuSans-Bold.ttf"


@dataclass(frozen=True)
class CertificateFonts:
    """Registered ReportLab font names."""

    regular: str
    bold: str


@lru_cache(maxsize=None)
def register_font(path: str) -> str:
    """Register the TrueType font at ``path`` once; returns its ReportLab name."""
    name = Path(path).stem
    pdfmetrics.registerFont(TTFont(name, path))
    return name


def load_fonts(
    regular_path: str | Path | None = None,
    bold_path: str | Path | None = None,
) -> CertificateFonts:
    return CertificateFonts(
        regular=register_font(str(regular_path or DEFAULT_REGULAR_FONT)),
        bold=register_font(str(bold_path or DEFAULT_BOLD_FONT)),
    )


# Word ligatures such as ALLAH (U+FDF2) have no glyph in DejaVu Sans; lam-alef forms do.
_reshaper = arabic_reshaper.ArabicReshaper(configuration={"ARABIC LIGATURE ALLAH": False})


def shape_text(text: str) -> str:
    """Join Arabic letters into their contextual forms and reorder for display."""
    return get_display(_reshaper.reshape(text))


@dataclass(frozen=True)
class CertificatePDFData:
    """All data needed to render a certificate PDF."""

    student_name: str
    course_name: str
    issued_at: datetime
    certificate_number: str
    verification_url: str
    organization_name: str | None = None
    course_description: str | None = None
    custom_fields: dict[str, str] = field(default_factory=dict)
    name_x: float = 0.5
    name_y: float = 0.52
    font_size: int = 32
    font_color: str = "#1f2937"
    orientation: TemplateOrientation = TemplateOrientation.LANDSCAPE
    include_qr: bool = True


class TemplateRenderer(Protocol):
    def render(self, data: CertificatePDFData) -> bytes: ...


def _truncate(text: str, limit: int = MAX_TITLE_CHARS) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _generate_qr_image(url: str) -> io.BytesIO:
    """Generate QR code PNG bytes for the verification URL."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=6,
        border=2,
    )
    qr.add_data(url)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    buf.seek(0)
    return buf


def generate_certificate_pdf(
    data: CertificatePDFData,
    fonts: CertificateFonts | None = None,
) -> bytes:
    """Render the certificate and return raw PDF bytes."""
    fonts = fonts or load_fonts()
    pagesize = landscape(A4) if data.orientation == TemplateOrientation.LANDSCAPE else portrait(A4)
    page_w, page_h = pagesize
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=pagesize)
    c.setTitle(f"Certificate {data.certificate_number}")
    center_x = page_w / 2

    # --- Border ---
    margin = 1.5 * cm
    c.setStrokeColor(colors.HexColor("#0f766e"))
    c.setLineWidth(3)
    c.rect(margin, margin, page_w - 2 * margin, page_h - 2 * margin)

    # --- Header ---
    if data.organization_name:
        c.setFillColor(colors.HexColor("#0f766e"))
        c.setFont(fonts.bold, 20)
        c.drawCentredString(
            center_x, page_h - 3.2 * cm, shape_text(_truncate(data.organization_name))
        )

    c.setFillColor(colors.HexColor("#111827"))
    c.setFont(fonts.bold, 22)
    c.drawCentredString(center_x, page_h - 4.6 * cm, "Certificate of Completion")

    c.setFillColor(colors.HexColor("#6b7280"))
    c.setFont(fonts.regular, 12)
    c.drawCentredString(center_x, page_h - 5.6 * cm, "This certifies that")

    # --- Recipient name at the template placement ---
    name_x = page_w * data.name_x
    name_y = page_h * data.name_y
    c.setFillColor(colors.HexColor(data.font_color))
    c.setFont(fonts.bold, data.font_size)
    c.drawCentredString(name_x, name_y, shape_text(data.student_name))

    # --- Course ---
    c.setFillColor(colors.HexColor("#6b7280"))
    c.setFont(fonts.regular, 12)
    c.drawCentredString(center_x, name_y - 1.4 * cm, "has successfully completed")
    c.setFillColor(colors.HexColor("#111827"))
    c.setFont(fonts.bold, 18)
    c.drawCentredString(center_x, name_y - 2.4 * cm, shape_text(_truncate(data.course_name)))
    if data.course_description:
        c.setFillColor(colors.HexColor("#4b5563"))
        c.setFont(fonts.regular, 10)
        c.drawCentredString(
            center_x, name_y - 3.1 * cm, shape_text(_truncate(data.course_description, 100))
        )

    # --- Custom fields ---
    y = name_y - 4 * cm
    c.setFillColor(colors.HexColor("#374151"))
    c.setFont(fonts.regular, 10)
    for key, value in list(data.custom_fields.items())[:MAX_FIELD_LINES]:
        c.drawCentredString(center_x, y, shape_text(_truncate(f"{key}: {value}", 90)))
        y -= 0.55 * cm

    # --- Date and number ---
    c.setFillColor(colors.HexColor("#374151"))
    c.setFont(fonts.regular, 11)
    c.drawCentredString(center_x, 3.4 * cm, f"Issued on {data.issued_at:%B %d, %Y}")
    c.setFillColor(colors.HexColor("#9ca3af"))
    c.setFont(fonts.regular, 8)
    c.drawCentredString(center_x, 2.7 * cm, f"Certificate No. {data.certificate_number}")

    # --- QR Code (bottom-right) ---
    if data.include_qr:
        qr_img = ImageReader(_generate_qr_image(data.verification_url))
        qr_size = 2.8 * cm
        c.drawImage(
            qr_img,
            page_w - 2.2 * cm - qr_size,
            2.2 * cm,
            width=qr_size,
            height=qr_size,
        )

    c.showPage()
    c.save()
    return buf.getvalue()


class ReportLabRenderer:
    """Default :class:`TemplateRenderer`.

    Font paths default to the bundled DejaVu Sans pair. Any TrueType font with
    the needed glyphs (Amiri, Noto Naskh Arabic) can be swapped in.
    """

    def __init__(
        self,
        regular_font: str | Path | None = None,
        bold_font: str | Path | None = None,
    ) -> None:
        self.fonts = load_fonts(regular_font, bold_font)

    def render(self, data: CertificatePDFData) -> bytes:
        try:
            return generate_certificate_pdf(data, self.fonts)
        except (ValueError, OSError) as exc:
            logger.error("Rendering certificate %s failed: %s", data.certificate_number, exc)
            raise RenderError(str(exc)) from exc

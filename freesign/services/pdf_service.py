import base64
import io
import logging
from typing import List

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from ..exceptions import ValidationError

logger = logging.getLogger(__name__)


def read_page_sizes(pdf_bytes: bytes) -> List[List[float]]:
    """Return ``[[width, height], ...]`` in PDF points for every page."""
    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        sizes = [[float(page.mediabox.width), float(page.mediabox.height)] for page in reader.pages]
    except (PyPdfError, ValueError) as e:
        raise ValidationError(f"Not a readable PDF: {e}", field="file")
    if not sizes:
        raise ValidationError("PDF has no pages", field="file")
    return sizes


def _decode_data_url(data_url: str) -> bytes:
    # format: data:image/png;base64,.....
    _, encoded = data_url.split(",", 1)
    return base64.b64decode(encoded)


def _draw_element(c, element: dict, page_height: float, scale: float):
    # Editor coordinates are top-left pixels; PDF coordinates are bottom-left points
    x = element["x"] / scale
    width = element["width"] / scale
    height = element["height"] / scale
    y = page_height - element["y"] / scale - height
    value = element.get("value")

    if element["type"] in ("signature", "initials") and isinstance(value, str) and value.startswith("data:"):
        image = ImageReader(io.BytesIO(_decode_data_url(value)))
        c.drawImage(image, x, y, width=width, height=height, mask="auto", preserveAspectRatio=True)
        if element.get("signer_name"):
            c.setFont("Helvetica", 7)
            c.drawString(x, y - 9, f"Signed by {element['signer_name']} {element.get('signed_at', '')}".strip())
    elif element["type"] == "checkbox":
        c.rect(x, y, width, height)
        if value is True:
            c.setFont("Helvetica-Bold", min(width, height) * 0.8)
            c.drawCentredString(x + width / 2, y + height * 0.2, "X")
    elif value:
        c.setFont("Helvetica", min(12, height * 0.6))
        c.drawString(x + 2, y + height * 0.3, str(value))


def render_signed_pdf(input_pdf_bytes: bytes, elements: List[dict], scale: float = 1.0) -> bytes:
    """
    Burn filled element values into the PDF.

    Args:
        input_pdf_bytes: Original PDF as bytes
        elements: dicts with keys page_index, x, y, width, height, type, value
            and optionally signer_name, signed_at
        scale: editor pixels per PDF point

    Returns:
        bytes: Signed PDF as bytes
    """
    reader = PdfReader(io.BytesIO(input_pdf_bytes))
    writer = PdfWriter()

    by_page = {}
    for element in elements:
        by_page.setdefault(element["page_index"], []).append(element)

    for page_index, page in enumerate(reader.pages):
        if page_index in by_page:
            packet = io.BytesIO()
            width = float(page.mediabox.width)
            height = float(page.mediabox.height)
            c = canvas.Canvas(packet, pagesize=(width, height))

            for element in by_page[page_index]:
                try:
                    _draw_element(c, element, height, scale)
                except (ValueError, OSError) as e:
                    logger.error(f"Error drawing element {element.get('id')}: {e}")

            c.save()
            packet.seek(0)
            overlay = PdfReader(packet)
            page.merge_page(overlay.pages[0])

        writer.add_page(page)

    output_buffer = io.BytesIO()
    writer.write(output_buffer)
    return output_buffer.getvalue()

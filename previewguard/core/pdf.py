"""PDF builders used by the converter dispatcher.

* :func:`build_image_pdf`: a single page sized to the image's native pixel
  dimensions, with the image normalised to RGB JPEG by Pillow and placed by
  ReportLab.
* :func:`build_placeholder_pdf`: a short A4 notice naming the file, its
  category and size, stating that no preview is available.

Both functions are synchronous and CPU-bound; the dispatcher runs them in a
thread pool.
"""

from __future__ import annotations

import io
from pathlib import Path
from xml.sax.saxutils import escape

from PIL import Image, ImageOps
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

#: Title of every placeholder document; also written to the PDF /Title entry.
PLACEHOLDER_TITLE = "No preview available"

_JPEG_QUALITY = 90


def _normalise_image(source: Path) -> tuple[bytes, int, int]:
    """Return ``(jpeg_bytes, width, height)`` for the first frame of *source*."""
    with Image.open(source) as img:
        img.load()
        frame = ImageOps.exif_transpose(img)
        if frame.mode in ("RGBA", "LA", "P"):
            rgba = frame.convert("RGBA")
            flattened = Image.new("RGB", rgba.size, (255, 255, 255))
            flattened.paste(rgba, mask=rgba.split()[-1])
            frame = flattened
        elif frame.mode != "RGB":
            frame = frame.convert("RGB")
        buf = io.BytesIO()
        frame.save(buf, format="JPEG", quality=_JPEG_QUALITY)
        return buf.getvalue(), frame.width, frame.height


def build_image_pdf(source: Path, destination: Path) -> tuple[int, int]:
    """Write a one-page PDF of the image at *source* to *destination*.

    Returns:
        The ``(width, height)`` of the page in points, equal to the image's
        pixel dimensions.

    Raises:
        Any Pillow or ReportLab error when the image cannot be decoded or
        encoded.  The dispatcher turns these into a degraded placeholder.
    """
    jpeg, width, height = _normalise_image(source)
    pdf = canvas.Canvas(str(destination), pagesize=(width, height))
    pdf.setTitle(source.name)
    pdf.drawImage(ImageReader(io.BytesIO(jpeg)), 0, 0, width=width, height=height)
    pdf.showPage()
    pdf.save()
    return width, height


def _format_size(size: int) -> str:
    return f"{size / 1024 / 1024:.2f} MB"


def build_placeholder_pdf(
    destination: Path,
    *,
    file_name: str,
    category: str,
    size: int,
) -> None:
    """Write a placeholder PDF describing a file that has no preview."""
    doc = SimpleDocTemplate(
        str(destination),
        pagesize=A4,
        leftMargin=2 * cm,
        rightMargin=2 * cm,
        topMargin=2.5 * cm,
        bottomMargin=2 * cm,
        title=PLACEHOLDER_TITLE,
        subject=file_name,
    )
    styles = getSampleStyleSheet()
    centred = ParagraphStyle(
        "Centred",
        parent=styles["Normal"],
        alignment=TA_CENTER,
        textColor=colors.HexColor("#666666"),
        fontSize=12,
        leading=16,
    )

    info = Table(
        [
            ["File name", Paragraph(escape(file_name), styles["Normal"])],
            ["File type", category.upper()],
            ["Size", _format_size(size)],
        ],
        colWidths=[4 * cm, 11 * cm],
    )
    info.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                ("TEXTCOLOR", (0, 0), (0, -1), colors.HexColor("#666666")),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("LINEBELOW", (0, 0), (-1, -2), 0.5, colors.HexColor("#CCCCCC")),
                ("TOPPADDING", (0, 0), (-1, -1), 6),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ]
        )
    )

    story = [
        Paragraph(PLACEHOLDER_TITLE, styles["Title"]),
        Spacer(1, 1.5 * cm),
        info,
        Spacer(1, 2 * cm),
        Paragraph("This file type cannot be previewed.", centred),
        Paragraph("Download the original file to view its contents.", centred),
    ]
    doc.build(story)

from __future__ import annotations

import logging
import os
from io import BytesIO
from typing import Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFError, TTFont
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

FONT_SIZE = 12
LEADING = 15
MARGIN = 36
_BUILTIN_FONT = "Helvetica"


def render_txt(text: str) -> bytes:
    return text.encode("utf-8")


def _font_for(font_path: Optional[str]) -> str:
    # Helvetica has no Cyrillic glyphs; a TTF such as DejaVuSans is needed for Russian output.
    if not font_path:
        return _BUILTIN_FONT
    name = os.path.splitext(os.path.basename(font_path))[0]
    if name in pdfmetrics.getRegisteredFontNames():
        return name
    try:
        pdfmetrics.registerFont(TTFont(name, font_path))
    except (TTFError, OSError) as e:
        logger.warning("PDF font %s unusable, falling back to %s: %s", font_path, _BUILTIN_FONT, e)
        return _BUILTIN_FONT
    return name


def render_pdf(text: str, font_path: Optional[str] = None) -> bytes:
    """Lay the text out on A4 pages, wrapping long lines and keeping line breaks."""
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    c.setTitle("Recognized text")
    font = _font_for(font_path)
    c.setFont(font, FONT_SIZE)

    y = height - MARGIN
    for paragraph in text.splitlines() or [""]:
        for line in simpleSplit(paragraph, font, FONT_SIZE, width - 2 * MARGIN) or [""]:
            if y < MARGIN:
                c.showPage()
                c.setFont(font, FONT_SIZE)
                y = height - MARGIN
            c.drawString(MARGIN, y, line)
            y -= LEADING

    c.save()
    return buf.getvalue()

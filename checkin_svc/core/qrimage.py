from __future__ import annotations
from io import BytesIO
import qrcode
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q

from .config import get_settings
settings = get_settings()

_LEVELS = {"L": ERROR_CORRECT_L, "M": ERROR_CORRECT_M, "Q": ERROR_CORRECT_Q, "H": ERROR_CORRECT_H}

def render_png(payload: str) -> bytes:
    # H level + 4-module quiet zone survive glare and smudges on phone screens
    qr = qrcode.QRCode(
        error_correction=_LEVELS.get(settings.qr_error_correction.upper(), ERROR_CORRECT_H),
        box_size=settings.qr_box_size,
        border=settings.qr_border,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    b = BytesIO()
    img.save(b, format="PNG")
    return b.getvalue()

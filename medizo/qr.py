"""QR code helpers for prescription verification."""

from __future__ import annotations

import base64
import io

import qrcode


def qr_png_bytes(data: str, *, box_size: int = 6, border: int = 2) -> bytes:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def qr_data_url(data: str) -> str:
    encoded = base64.b64encode(qr_png_bytes(data)).decode("ascii")
    return f"data:image/png;base64,{encoded}"

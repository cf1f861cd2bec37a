"""Terminal rendering of WhatsApp Web pairing codes."""

import sys
from typing import Optional, TextIO

import qrcode


def render_qr(payload: str, name: Optional[str] = None, stream: Optional[TextIO] = None) -> None:
    """
    Print a scannable QR code for ``payload`` as ASCII art.

    Args:
        payload: Raw pairing string taken from the WhatsApp Web login page
        name: Session name shown in the header line
        stream: Output stream (default: stdout)
    """
    out = stream or sys.stdout
    header = "🔐 Scan this QR code with your WhatsApp"
    if name:
        header += f" ({name})"
    print(f"{header}:", file=out)

    qr = qrcode.QRCode(border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    qr.print_ascii(out=out, invert=True)
    out.flush()

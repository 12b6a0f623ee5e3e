"""Render issued codes as QR symbols: PNG files and terminal previews."""

import os
import sys

import qrcode
import segno
from qrcode.exceptions import DataOverflowError
from PIL import Image

from qr_code_issuer import DEFAULT_QR_SIZE
from qr_code_issuer.errors import RenderError

QR_BORDER = 4  # Quiet zone in modules


def generate_qr_image(code: str, size: int = DEFAULT_QR_SIZE) -> Image.Image:
    """Build the QR symbol for ``code`` as a square PIL image.

    Uses error correction level M (15% redundancy) and the standard 4-module
    quiet zone. Each module is drawn as a whole number of pixels, the largest
    that fits in ``size``; the remainder is filled by a nearest-neighbour
    resize so module edges stay sharp. The image is never smaller than one
    pixel per module, so a tiny ``size`` is enlarged rather than dropping modules.

    Raises:
        RenderError: If the code is empty, the size is not positive, or the
            code does not fit in a QR symbol.
    """
    if not code.strip():
        raise RenderError("QR data cannot be empty.")
    if size < 1:
        raise RenderError(f"QR size must be positive, got {size}.")

    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=1,
        border=QR_BORDER,
    )
    try:
        qr.add_data(code)
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as e:
        raise RenderError(f"Could not encode '{code}' as QR: {e}") from e

    modules = qr.modules_count + 2 * QR_BORDER
    qr.box_size = max(1, size // modules)
    side = max(size, modules)

    qr_image = qr.make_image(fill_color="black", back_color="white")
    qr_image = qr_image.convert("RGB")
    qr_image = qr_image.resize((side, side), Image.NEAREST)

    return qr_image


def render_qr_png(code: str, output_dir: str, size: int = DEFAULT_QR_SIZE) -> str:
    """Write ``<output_dir>/<code>.png`` and return its path.

    The directory is created if it does not exist.

    Raises:
        RenderError: If the symbol cannot be produced.
        OSError: If the directory or file cannot be written.
    """
    qr_image = generate_qr_image(code, size)

    os.makedirs(output_dir, exist_ok=True)
    out = os.path.join(output_dir, f"{code}.png")
    qr_image.save(out, "PNG")
    return out


def show_qr_terminal(code: str, out=None) -> None:
    """Print a scannable QR preview of ``code`` to the terminal."""
    out = out or sys.stdout
    try:
        qr = segno.make_qr(code, error="m")
    except (segno.DataOverflowError, ValueError) as e:
        raise RenderError(f"Could not encode '{code}' as QR: {e}") from e

    print("\nQR Code Preview:", file=out)
    qr.terminal(out=out, border=1)
    print(file=out)

"""Image checks for rendered QR codes."""

from enum import Enum
from PIL import Image


class VerifyResult(Enum):
    """Result of QR scannability verification."""
    SCANNABLE = "scannable"
    NOT_SCANNABLE = "not_scannable"
    SKIPPED = "skipped"  # pyzbar not installed


def verify_qr_scannable(image_path: str) -> tuple[VerifyResult, str | None]:
    """Attempt to decode the QR code in a rendered image.

    Uses pyzbar if available, otherwise returns SKIPPED.

    Args:
        image_path: Path to the image to verify.

    Returns:
        Tuple of (VerifyResult, decoded_data: str | None).
    """
    try:
        from pyzbar.pyzbar import decode as pyzbar_decode
    except ImportError:
        return VerifyResult.SKIPPED, None

    with Image.open(image_path) as img:
        results = pyzbar_decode(img)
    if results:
        return VerifyResult.SCANNABLE, results[0].data.decode("utf-8")
    return VerifyResult.NOT_SCANNABLE, None

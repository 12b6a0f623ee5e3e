"""QR Code Issuer — unique random redemption codes rendered as QR symbols."""

import string

__version__ = "1.0.0"

# Shared constants
DEFAULT_LENGTH = 10
DEFAULT_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_QR_SIZE = 256  # Output PNG side in pixels
DEFAULT_DB_PATH = "codes.db"
DEFAULT_OUTPUT_DIR = "qr_codes"

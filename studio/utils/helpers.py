"""
Helper utility functions.

Contains validation and formatting functions used across the API.
"""

import base64
import binascii
from typing import Optional


# =============================================================================
# IMAGE FORMAT VALIDATION
# =============================================================================

# Supported MIME types for product and logo uploads
SUPPORTED_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
})

# Supported file extensions
SUPPORTED_EXTENSIONS = frozenset({
    ".jpg",
    ".jpeg",
    ".png",
    ".webp",
})


def validate_image_format(
    file_name: Optional[str] = None,
    mime_type: Optional[str] = None,
) -> bool:
    """
    Validate that the image format is supported.

    Checks both MIME type and file extension.

    Examples:
        >>> validate_image_format(mime_type="image/png")
        True
        >>> validate_image_format(file_name="photo.jpg")
        True
        >>> validate_image_format(file_name="document.pdf")
        False
    """
    # Check MIME type first (more reliable)
    if mime_type:
        if mime_type.lower() in SUPPORTED_MIME_TYPES:
            return True

    # Fall back to file extension check
    if file_name:
        file_name_lower = file_name.lower()
        for ext in SUPPORTED_EXTENSIONS:
            if file_name_lower.endswith(ext):
                return True

    return False


def decode_base64_image(data: str) -> Optional[bytes]:
    """Decode a base64 payload, accepting ``data:<mime>;base64,`` URLs. None if invalid."""
    if data.startswith("data:"):
        _, _, data = data.partition(",")
    try:
        decoded = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        return None
    return decoded or None


def safe_file_name(name: str) -> str:
    """Turn a product name into a storage-friendly file name fragment."""
    cleaned = "-".join(name.split())
    return "".join(ch for ch in cleaned if ch.isalnum() or ch in "-_.")[:80] or "image"


def truncate_text(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """
    Truncate text to a maximum length.

    >>> truncate_text("Hello World", 8)
    'Hello...'
    """
    if len(text) <= max_length:
        return text
    return text[: max(max_length - len(suffix), 0)] + suffix

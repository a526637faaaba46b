# Utility functions

from studio.utils.helpers import (
    validate_image_format,
    decode_base64_image,
    safe_file_name,
    truncate_text,
    SUPPORTED_MIME_TYPES,
    SUPPORTED_EXTENSIONS,
)

__all__ = [
    # Validation
    "validate_image_format",
    "decode_base64_image",
    "SUPPORTED_MIME_TYPES",
    "SUPPORTED_EXTENSIONS",
    # Text formatting
    "safe_file_name",
    "truncate_text",
]

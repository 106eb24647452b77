"""
Upload validation and log redaction.
"""
import os
import re
from typing import Any, Optional

from . import config
from .errors import UploadValidationError

SENSITIVE_KEY_PARTS = ("name", "age", "dob")
REDACTED = "[REDACTED]"

CARD_NUMBER_RE = re.compile(r"\d{4}\s?\d{4}\s?\d{4}\s?\d{4}")
AADHAAR_RE = re.compile(r"\b\d{12}\b")
EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


def validate_upload(filename: Optional[str], content_type: Optional[str], size: int,
                    max_bytes: int = None) -> str:
    """
    Check an uploaded image against the type, extension and size limits.

    Returns:
        The lower-cased file extension (e.g. '.jpg')

    Raises:
        UploadValidationError: If the upload is missing or not acceptable
    """
    max_bytes = max_bytes if max_bytes is not None else config.MAX_UPLOAD_BYTES

    if not filename or size == 0:
        raise UploadValidationError("No file uploaded", error_code="NO_FILE")

    if size > max_bytes:
        raise UploadValidationError(
            f"File size exceeds {max_bytes // (1024 * 1024)}MB limit",
            error_code="FILE_TOO_LARGE",
        )

    if content_type not in config.ALLOWED_CONTENT_TYPES:
        raise UploadValidationError(
            f"Invalid file type. Only JPEG, PNG, and WebP are allowed. Received: {content_type}",
            error_code="INVALID_FILE_TYPE",
        )

    extension = os.path.splitext(filename)[1].lower()
    if extension not in config.ALLOWED_EXTENSIONS:
        raise UploadValidationError("Invalid file extension", error_code="INVALID_FILE_EXTENSION")

    return extension


def anonymize_for_logging(data: Any) -> Any:
    """Return a copy of data safe to write to logs."""
    if isinstance(data, str):
        data = CARD_NUMBER_RE.sub("**** **** **** ****", data)
        data = AADHAAR_RE.sub("************", data)
        return EMAIL_RE.sub("***@***.***", data)

    if isinstance(data, dict):
        anonymized = {}
        for key, value in data.items():
            if any(part in str(key).lower() for part in SENSITIVE_KEY_PARTS):
                anonymized[key] = REDACTED
            else:
                anonymized[key] = anonymize_for_logging(value)
        return anonymized

    if isinstance(data, (list, tuple)):
        return type(data)(anonymize_for_logging(item) for item in data)

    return data

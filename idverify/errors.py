"""
Domain exceptions.

Each error carries the HTTP status and error code the API layer reports,
so routes can translate them into HTTPException without a lookup table.
"""


class VerificationError(Exception):
    """Base class for all verification errors."""

    status_code = 500
    error_code = "INTERNAL_ERROR"
    error = "Internal Server Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {
            "error": self.error,
            "error_code": self.error_code,
            "message": self.message,
        }


class UploadValidationError(VerificationError):
    status_code = 400
    error = "Invalid Upload"

    def __init__(self, message: str, error_code: str = "INVALID_UPLOAD"):
        super().__init__(message)
        self.error_code = error_code


class RecordNotFoundError(VerificationError):
    status_code = 404
    error_code = "RECORD_NOT_FOUND"
    error = "Not Found"


class SelfieNotUploadedError(VerificationError):
    status_code = 400
    error_code = "SELFIE_NOT_UPLOADED"
    error = "Selfie Missing"


class InvalidStateError(VerificationError):
    status_code = 409
    error_code = "INVALID_STATE"
    error = "Conflict"


class OCRInitializationError(VerificationError):
    error_code = "OCR_UNAVAILABLE"


class OCRTimeoutError(VerificationError):
    error_code = "OCR_TIMEOUT"


class ProcessingError(VerificationError):
    error_code = "PROCESSING_FAILED"

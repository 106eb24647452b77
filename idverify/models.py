"""Record and API response models."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class VerificationStatus(str, Enum):
    PENDING = "pending"
    DOCUMENT_PROCESSED = "document_processed"
    SELFIE_UPLOADED = "selfie_uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed forward transitions; anything else is a regression
STATUS_TRANSITIONS = {
    VerificationStatus.PENDING: {VerificationStatus.DOCUMENT_PROCESSED},
    VerificationStatus.DOCUMENT_PROCESSED: {VerificationStatus.SELFIE_UPLOADED},
    VerificationStatus.SELFIE_UPLOADED: {VerificationStatus.PROCESSING},
    VerificationStatus.PROCESSING: {VerificationStatus.COMPLETED, VerificationStatus.FAILED},
    VerificationStatus.COMPLETED: set(),
    VerificationStatus.FAILED: set(),
}


def can_transition(current: VerificationStatus, new: VerificationStatus) -> bool:
    return new == current or new in STATUS_TRANSITIONS[current]


class VerificationRecord(BaseModel):
    """One document + selfie verification attempt."""

    id: int
    document_path: str
    selfie_path: str = ""
    extracted_name: Optional[str] = None
    extracted_age: Optional[int] = None
    extracted_dob: Optional[str] = None
    ocr_confidence: Optional[int] = None
    ocr_language: Optional[str] = None
    face_match_score: Optional[int] = None
    face_confidence: Optional[int] = None
    detected_age: Optional[int] = None
    age_confidence: Optional[int] = None
    identity_verified: bool = False
    age_verified: bool = False
    quality_feedback: Optional[Dict[str, Any]] = None
    status: VerificationStatus = VerificationStatus.PENDING
    error_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    model_config = {"frozen": True}


class ExtractedData(BaseModel):
    name: Optional[str] = None
    age: Optional[int] = None
    dob: Optional[str] = None
    text: str = ""
    confidence: int = 0
    language: Optional[str] = None


class DocumentUploadResponse(BaseModel):
    success: bool
    verification_id: int
    extracted_data: ExtractedData


class SelfieUploadResponse(BaseModel):
    success: bool


class ProcessRequest(BaseModel):
    verification_id: int


class VerificationFeedback(BaseModel):
    face: List[str]
    age: List[str]
    overall: List[str]


class VerificationResults(BaseModel):
    identity_verified: bool
    age_verified: bool
    face_match_score: int
    face_confidence: int
    extracted_age: Optional[int] = None
    detected_age: Optional[int] = None
    age_confidence: int
    extracted_name: Optional[str] = None
    final_age: Optional[int] = None
    feedback: VerificationFeedback


class ProcessResponse(BaseModel):
    success: bool
    results: VerificationResults


class ErrorResponse(BaseModel):
    error: str
    error_code: str
    message: str

"""
Verification orchestrator.

Drives one record through its lifecycle:

    pending -> document_processed -> selfie_uploaded -> processing -> completed
                                                                   \\-> failed

Document upload runs OCR and creates the record, selfie upload attaches the
second image, and process() runs face matching and age estimation
concurrently, applies the verdict thresholds and writes every result in a
single update.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool

from . import config
from .age_estimation import AgeEstimate
from .errors import (
    InvalidStateError,
    ProcessingError,
    RecordNotFoundError,
    SelfieNotUploadedError,
)
from .face_match import FaceMatchResult
from .models import VerificationRecord, VerificationStatus, can_transition
from .ocr import OCRResult, TextExtractor
from .storage import VerificationStore

logger = logging.getLogger(__name__)

FINAL_STATUSES = (VerificationStatus.COMPLETED, VerificationStatus.FAILED)


def identity_passes(face: FaceMatchResult) -> bool:
    return face.score >= config.FACE_MATCH_THRESHOLD and face.confidence >= config.FACE_CONFIDENCE_THRESHOLD


def final_age(estimate: AgeEstimate, extracted_age: Optional[int]) -> Optional[int]:
    """Prefer a confident selfie estimate, otherwise the age read from the document."""
    if estimate.age is not None and estimate.confidence >= config.AGE_CONFIDENCE_THRESHOLD:
        return estimate.age
    return extracted_age


def age_passes(age: Optional[int]) -> bool:
    return age is not None and age >= config.MINIMUM_AGE


def overall_summary(face: FaceMatchResult, estimate: AgeEstimate,
                    identity_verified: bool, age_verified: bool) -> List[str]:
    detected = f"{estimate.age} years" if estimate.age is not None else "unavailable"
    return [
        f"Identity verification: {face.score}% match ({face.confidence}% confidence)",
        f"Age estimation: {detected} ({estimate.confidence}% confidence)",
        "Identity verification passed" if identity_verified
        else f"Identity verification failed - score below {config.FACE_MATCH_THRESHOLD}% "
             f"or confidence below {config.FACE_CONFIDENCE_THRESHOLD}%",
        f"Age verification passed - {config.MINIMUM_AGE} or older" if age_verified
        else f"Age verification failed - under {config.MINIMUM_AGE} or age unknown",
    ]


class VerificationOrchestrator:
    """Sequences OCR, face matching and age estimation for each record."""

    def __init__(self, store: VerificationStore, text_extractor: TextExtractor,
                 face_matcher, age_estimator, timeout: float = None):
        self.store = store
        self.text_extractor = text_extractor
        self.face_matcher = face_matcher
        self.age_estimator = age_estimator
        self.timeout = timeout if timeout is not None else config.PROCESSING_TIMEOUT_SECONDS
        self._locks: Dict[int, asyncio.Lock] = {}

    # ---- reads ---------------------------------------------------------

    async def get(self, record_id: int) -> VerificationRecord:
        record = await self.store.get(record_id)
        if record is None:
            raise RecordNotFoundError("Verification record not found")
        return record

    async def list(self) -> List[VerificationRecord]:
        return await self.store.list()

    # ---- uploads -------------------------------------------------------

    async def create_from_document(self, document_path: str) -> Tuple[VerificationRecord, OCRResult]:
        """Run OCR on the uploaded document and create its record."""
        ocr_result = await self.text_extractor.extract(document_path)
        record = await self.store.create(
            document_path=document_path,
            extracted_name=ocr_result.name,
            extracted_age=ocr_result.age,
            extracted_dob=ocr_result.dob,
            ocr_confidence=ocr_result.confidence,
            ocr_language=ocr_result.language,
            status=VerificationStatus.DOCUMENT_PROCESSED,
        )
        return record, ocr_result

    async def attach_selfie(self, record_id: int, selfie_path: str) -> VerificationRecord:
        await self.get(record_id)
        try:
            async with self._lock_for(record_id):
                record = await self.get(record_id)
                if record.selfie_path:
                    raise InvalidStateError("A selfie has already been uploaded for this verification")
                await self._transition(record, VerificationStatus.SELFIE_UPLOADED, selfie_path=selfie_path)
                logger.info(f"Selfie attached to verification {record_id}")
                return await self.get(record_id)
        finally:
            await self._release_lock_if_final(record_id)

    # ---- processing ----------------------------------------------------

    async def process(self, record_id: int) -> Dict:
        """
        Analyse the document/selfie pair and record the verdicts.

        Raises:
            RecordNotFoundError: Unknown record id
            SelfieNotUploadedError: No selfie attached yet
            InvalidStateError: Record already processing or completed
            ProcessingError: Analysis failed; the record is marked failed
        """
        await self.get(record_id)
        lock = self._lock_for(record_id)
        if lock.locked():
            raise InvalidStateError("Verification is already being processed")

        try:
            async with lock:
                return await self._process_locked(record_id)
        finally:
            await self._release_lock_if_final(record_id)

    async def _process_locked(self, record_id: int) -> Dict:
        record = await self.get(record_id)
        if not record.selfie_path:
            raise SelfieNotUploadedError("Selfie not uploaded")
        if record.status in (VerificationStatus.PROCESSING, VerificationStatus.COMPLETED):
            raise InvalidStateError(f"Verification is already {record.status.value}")
        if record.status == VerificationStatus.FAILED:
            raise InvalidStateError("Verification failed; start a new verification")

        await self._transition(record, VerificationStatus.PROCESSING)
        logger.info(f"Processing verification {record_id}")

        try:
            face, estimate = await asyncio.wait_for(
                asyncio.gather(
                    run_in_threadpool(self.face_matcher.match, record.document_path, record.selfie_path),
                    run_in_threadpool(self.age_estimator.estimate, record.selfie_path),
                ),
                timeout=self.timeout,
            )
            return await self._complete(record, face, estimate)
        except asyncio.TimeoutError:
            await self._fail(record_id, f"Analysis did not finish within {self.timeout:.0f}s")
            raise ProcessingError("Failed to process verification")
        except Exception as e:
            logger.error(f"Verification {record_id} processing error: {e}", exc_info=True)
            await self._fail(record_id, "Unexpected error during analysis")
            raise ProcessingError("Failed to process verification") from e

    async def _complete(self, record: VerificationRecord, face: FaceMatchResult, estimate: AgeEstimate) -> Dict:
        identity_verified = identity_passes(face)
        age = final_age(estimate, record.extracted_age)
        age_verified = age_passes(age)

        feedback = {
            "face": list(face.feedback),
            "age": list(estimate.feedback),
            "overall": overall_summary(face, estimate, identity_verified, age_verified),
        }

        await self.store.update(record.id, {
            "face_match_score": face.score,
            "face_confidence": face.confidence,
            "detected_age": estimate.age,
            "age_confidence": estimate.confidence,
            "identity_verified": identity_verified,
            "age_verified": age_verified,
            "quality_feedback": {
                **feedback,
                "scores": {
                    "face_match": face.score,
                    "face_confidence": face.confidence,
                    "age_confidence": estimate.confidence,
                    "final_age": age,
                },
            },
            "status": VerificationStatus.COMPLETED,
            "completed_at": datetime.now(timezone.utc),
        })
        logger.info(
            f"Verification {record.id} completed: identity_verified={identity_verified}, age_verified={age_verified}"
        )

        return {
            "identity_verified": identity_verified,
            "age_verified": age_verified,
            "face_match_score": face.score,
            "face_confidence": face.confidence,
            "extracted_age": record.extracted_age,
            "detected_age": estimate.age,
            "age_confidence": estimate.confidence,
            "extracted_name": record.extracted_name,
            "final_age": age,
            "feedback": feedback,
        }

    async def _fail(self, record_id: int, reason: str) -> None:
        logger.error(f"Verification {record_id} failed: {reason}")
        await self.store.update(record_id, {"status": VerificationStatus.FAILED, "error_reason": reason})

    async def _transition(self, record: VerificationRecord, status: VerificationStatus, **updates) -> None:
        if not can_transition(record.status, status) or record.status == status:
            raise InvalidStateError(
                f"Cannot move verification from {record.status.value} to {status.value}"
            )
        await self.store.update(record.id, {"status": status, **updates})

    def _lock_for(self, record_id: int) -> asyncio.Lock:
        if record_id not in self._locks:
            self._locks[record_id] = asyncio.Lock()
        return self._locks[record_id]

    async def _release_lock_if_final(self, record_id: int) -> None:
        record = await self.store.get(record_id)
        if record is not None and record.status in FINAL_STATUSES:
            self._locks.pop(record_id, None)

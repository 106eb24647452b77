"""
Identity Verification API
FastAPI service that checks a government ID against a live selfie.
"""
import logging
import os
import uuid
from io import BytesIO
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from PIL import Image

from . import config
from .age_estimation import build_age_estimator
from .errors import UploadValidationError, VerificationError
from .face_match import FaceMatcher
from .imaging import AnalysisContext
from .models import (
    DocumentUploadResponse,
    ErrorResponse,
    ExtractedData,
    ProcessRequest,
    ProcessResponse,
    SelfieUploadResponse,
    VerificationRecord,
    VerificationStatus,
)
from .ocr import TextExtractor
from .orchestrator import VerificationOrchestrator
from .report import build_report_pdf
from .security import validate_upload
from .storage import InMemoryVerificationStore

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

DESCRIPTION = """
## Document + Selfie Identity Verification

### Workflow:
1. `POST /api/upload-document` - Upload an ID document; text is read with OCR
2. `POST /api/upload-selfie` - Attach a live selfie to the verification
3. `POST /api/process-verification` - Run face matching and age estimation
4. `GET /api/verification/{id}` - Poll the verification record
5. `GET /api/verification/{id}/report` - Download the PDF report

Face match and age scores are heuristic estimates from image statistics.
"""

GENERIC_MESSAGES = {
    "document": "Failed to process document",
    "selfie": "Failed to upload selfie",
    "process": "Failed to process verification",
    "read": "Failed to get verification record",
    "report": "Failed to generate verification report",
}

# Upload locations on the server filesystem are never returned to clients
SERVER_ONLY_FIELDS = {"document_path", "selfie_path"}

ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (400, 404, 409, 500)
}


def build_orchestrator(text_extractor: TextExtractor = None, seed: int = None) -> VerificationOrchestrator:
    """Wire the analysis components together with one shared setup context."""
    if seed is None and config.ANALYSIS_SEED:
        seed = int(config.ANALYSIS_SEED)
    context = AnalysisContext.create(seed)
    return VerificationOrchestrator(
        store=InMemoryVerificationStore(),
        text_extractor=text_extractor or TextExtractor(),
        face_matcher=FaceMatcher(context),
        age_estimator=build_age_estimator(context),
    )


def _to_http(error: VerificationError, action: str) -> HTTPException:
    """Translate a domain error, hiding server-side details from the client."""
    detail = error.to_detail()
    if error.status_code >= 500:
        logger.error(f"{action} failed: {error.error_code}: {error.message}")
        detail["message"] = GENERIC_MESSAGES[action]
    return HTTPException(status_code=error.status_code, detail=detail)


def _internal_error(action: str) -> HTTPException:
    return HTTPException(
        status_code=500,
        detail={
            "error": "Internal Server Error",
            "error_code": "INTERNAL_ERROR",
            "message": GENERIC_MESSAGES[action],
        },
    )


async def _save_upload(upload: UploadFile, kind: str) -> str:
    """Validate an uploaded image and store it under UPLOAD_DIR."""
    data = await upload.read()
    extension = validate_upload(upload.filename, upload.content_type, len(data))

    try:
        with Image.open(BytesIO(data)) as image:
            image.verify()
    except Exception:
        raise UploadValidationError("File is not a readable image", error_code="INVALID_IMAGE_FORMAT")

    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    path = os.path.join(config.UPLOAD_DIR, f"{kind}_{uuid.uuid4().hex}{extension}")
    with open(path, "wb") as buffer:
        buffer.write(data)
    logger.info(f"Stored {kind} upload ({len(data)} bytes)")
    return path


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except OSError as e:
        logger.warning(f"Failed to remove rejected upload: {e}")


def create_app(orchestrator: VerificationOrchestrator = None) -> FastAPI:
    app = FastAPI(
        title="Identity Verification API",
        description=DESCRIPTION,
        version="1.0.0",
    )
    app.state.orchestrator = orchestrator or build_orchestrator()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, replace with your specific domains
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "status": "online",
            "service": "Identity Verification API",
            "version": "1.0.0",
        }

    @app.get("/health")
    async def health_check():
        """Detailed health check endpoint."""
        return {
            "status": "healthy",
            "service": "Identity Verification API",
            "age_estimator": config.AGE_ESTIMATOR,
            "ocr_languages": list(config.OCR_LANGUAGES.values()),
            "face_match_threshold": config.FACE_MATCH_THRESHOLD,
        }

    @app.post("/api/upload-document", response_model=DocumentUploadResponse, responses=ERROR_RESPONSES)
    async def upload_document(document: UploadFile = File(..., description="ID document photo")):
        """
        Upload an ID document and extract name, date of birth and age with OCR.

        Creates a new verification record and returns its id.
        """
        orchestrator: VerificationOrchestrator = app.state.orchestrator
        path = None
        try:
            path = await _save_upload(document, "document")
            record, ocr_result = await orchestrator.create_from_document(path)
            return DocumentUploadResponse(
                success=True,
                verification_id=record.id,
                extracted_data=ExtractedData(
                    name=ocr_result.name,
                    age=ocr_result.age,
                    dob=ocr_result.dob,
                    text=ocr_result.text,
                    confidence=ocr_result.confidence,
                    language=ocr_result.language,
                ),
            )
        except VerificationError as e:
            if path:
                _discard(path)
            raise _to_http(e, "document")
        except Exception as e:
            logger.error(f"Document upload error: {e}", exc_info=True)
            if path:
                _discard(path)
            raise _internal_error("document")

    @app.post("/api/upload-selfie", response_model=SelfieUploadResponse, responses=ERROR_RESPONSES)
    async def upload_selfie(
        selfie: UploadFile = File(..., description="Live selfie image"),
        verification_id: Optional[int] = Form(None),
    ):
        """Attach a selfie to an existing verification."""
        orchestrator: VerificationOrchestrator = app.state.orchestrator
        path = None
        try:
            if verification_id is None:
                raise UploadValidationError("Verification ID required", error_code="MISSING_VERIFICATION_ID")
            await orchestrator.get(verification_id)
            path = await _save_upload(selfie, "selfie")
            await orchestrator.attach_selfie(verification_id, path)
            return SelfieUploadResponse(success=True)
        except VerificationError as e:
            if path:
                _discard(path)
            raise _to_http(e, "selfie")
        except Exception as e:
            logger.error(f"Selfie upload error: {e}", exc_info=True)
            if path:
                _discard(path)
            raise _internal_error("selfie")

    @app.post("/api/process-verification", response_model=ProcessResponse, responses=ERROR_RESPONSES)
    async def process_verification(request: ProcessRequest):
        """
        Run face matching and age estimation for a verification.

        **Returns:**
        - identity_verified: face match score >= 50 with confidence >= 60
        - age_verified: final age (selfie estimate, or document age) is 18+
        - scores, confidences and feedback grouped by face/age/overall
        """
        orchestrator: VerificationOrchestrator = app.state.orchestrator
        try:
            results = await orchestrator.process(request.verification_id)
            return ProcessResponse(success=True, results=results)
        except VerificationError as e:
            raise _to_http(e, "process")
        except Exception as e:
            logger.error(f"Verification processing error: {e}", exc_info=True)
            raise _internal_error("process")

    @app.get(
        "/api/verification/{verification_id}",
        response_model=VerificationRecord,
        response_model_exclude=SERVER_ONLY_FIELDS,
        responses=ERROR_RESPONSES,
    )
    async def get_verification(verification_id: int):
        """Return the current state of a verification record."""
        try:
            return await app.state.orchestrator.get(verification_id)
        except VerificationError as e:
            raise _to_http(e, "read")

    @app.get("/api/verification/{verification_id}/report", responses=ERROR_RESPONSES)
    async def download_report(verification_id: int):
        """Download the PDF report of a completed verification."""
        try:
            record = await app.state.orchestrator.get(verification_id)
        except VerificationError as e:
            raise _to_http(e, "report")

        if record.status != VerificationStatus.COMPLETED:
            raise HTTPException(
                status_code=409,
                detail={
                    "error": "Conflict",
                    "error_code": "REPORT_NOT_READY",
                    "message": "Report is available once verification is completed",
                },
            )

        try:
            pdf = build_report_pdf(record)
        except Exception as e:
            logger.error(f"Report generation error: {e}", exc_info=True)
            raise _internal_error("report")

        return StreamingResponse(
            pdf,
            media_type="application/pdf",
            headers={"Content-Disposition": f"attachment; filename=verification_{verification_id}.pdf"},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Custom exception handler for consistent error responses."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.detail if isinstance(exc.detail, dict) else {
                "error": "Error",
                "error_code": "UNKNOWN_ERROR",
                "message": str(exc.detail),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid Request",
                "error_code": "VALIDATION_ERROR",
                "message": "; ".join(
                    f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
                ),
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

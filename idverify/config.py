"""Configuration settings for the identity verification service."""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
UPLOAD_DIR = Path(os.environ.get("UPLOAD_DIR", str(BASE_DIR / "uploads")))

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Upload limits
MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", 5 * 1024 * 1024))  # 5MB
ALLOWED_CONTENT_TYPES = ["image/jpeg", "image/jpg", "image/png", "image/webp"]
ALLOWED_EXTENSIONS = [".jpg", ".jpeg", ".png", ".webp"]

# OCR
TESSERACT_CMD = os.environ.get("TESSERACT_CMD")  # None = use tesseract from PATH
OCR_LANGUAGES = {
    "eng": "English",
    "hin": "Hindi",
    "tel": "Telugu",
}
OCR_MAX_WIDTH = 1600
OCR_TIMEOUT_SECONDS = float(os.environ.get("OCR_TIMEOUT_SECONDS", 60))

# Quality tiers (score >= value)
QUALITY_EXCELLENT = 85
QUALITY_GOOD = 70
QUALITY_POOR = 50

# Verdict thresholds
FACE_MATCH_THRESHOLD = 50  # Minimum face match score (0-100)
FACE_CONFIDENCE_THRESHOLD = 60  # Minimum face confidence (0-100)
AGE_CONFIDENCE_THRESHOLD = 60  # Below this the document age is used instead
MINIMUM_AGE = 18

# Age estimation backend: "local" heuristic or "remote" web API
AGE_ESTIMATOR = os.environ.get("AGE_ESTIMATOR", "local").lower()
AGE_API_URL = os.environ.get("AGE_API_URL", "")
AGE_API_KEY = os.environ.get("AGE_API_KEY", "")
AGE_API_TIMEOUT_SECONDS = float(os.environ.get("AGE_API_TIMEOUT_SECONDS", 10))

# Whole-analysis timeout for one verification
PROCESSING_TIMEOUT_SECONDS = float(os.environ.get("PROCESSING_TIMEOUT_SECONDS", 120))

# Optional seed for reproducible scoring (unset in production)
ANALYSIS_SEED = os.environ.get("ANALYSIS_SEED")

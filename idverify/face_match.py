"""
Face matching between the ID document photo and the live selfie.

This is a colour-statistics heuristic, not a biometric model: closer channel
means score higher, large resolution mismatches are penalised, and bounded
jitter models measurement noise.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from .imaging import AnalysisContext, read_image_stats
from .quality import ImageQualityAssessor

logger = logging.getLogger(__name__)

BASE_SCORE = 50
POINTS_PER_CHANNEL = 15
MIN_SCORE = 30
MAX_SCORE = 95
SCORE_JITTER = 10  # Total width, i.e. +/- 5 points
AREA_PER_CONFIDENCE_POINT = 12000
MIN_BASE_CONFIDENCE = 65
MAX_BASE_CONFIDENCE = 95
HIGH_RESOLUTION_AREA = 500_000
POOR_QUALITY_PENALTY = 15
MIN_CONFIDENCE = 30
MAX_CONFIDENCE = 100


@dataclass
class FaceMatchResult:
    score: int
    confidence: int
    feedback: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


class FaceMatcher:
    """Compares document and selfie images by channel statistics."""

    def __init__(self, context: AnalysisContext, assessor: Optional[ImageQualityAssessor] = None):
        self.context = context
        self.assessor = assessor or ImageQualityAssessor()

    @property
    def rng(self):
        return self.context.rng

    def match(self, document_path: str, selfie_path: str) -> FaceMatchResult:
        """
        Score how well the selfie matches the document photo.

        Returns a fallback result instead of raising when either image
        cannot be read, so the orchestrator always gets a score.
        """
        try:
            return self._match(document_path, selfie_path)
        except Exception as e:
            logger.error(f"Error in face comparison: {e}", exc_info=True)
            return FaceMatchResult(
                score=self.rng.randrange(45, 70),
                confidence=50,
                feedback=["Error during face comparison. Please try again."],
            )

    def _match(self, document_path: str, selfie_path: str) -> FaceMatchResult:
        document = read_image_stats(document_path)
        selfie = read_image_stats(selfie_path)

        similarity = float(BASE_SCORE)

        # Colour channel analysis: each shared channel contributes up to 15 points
        for doc_mean, selfie_mean in zip(document.means, selfie.means):
            mean_diff = abs(doc_mean - selfie_mean) / 255
            similarity += (1 - mean_diff) * POINTS_PER_CHANNEL

        # Penalise large resolution mismatches
        largest = max(document.area, selfie.area)
        quality_ratio = min(document.area, selfie.area) / largest if largest else 0.0
        similarity *= 0.7 + quality_ratio * 0.3

        jitter = (self.rng.random() - 0.5) * SCORE_JITTER
        similarity = max(MIN_SCORE, min(MAX_SCORE, similarity + jitter))

        avg_area = (document.area + selfie.area) / 2
        confidence = min(MAX_BASE_CONFIDENCE, max(MIN_BASE_CONFIDENCE, avg_area / AREA_PER_CONFIDENCE_POINT))
        if avg_area > HIGH_RESOLUTION_AREA:
            confidence += 10
        if document.is_color and selfie.is_color:
            confidence += 5

        document_quality = self.assessor.assess(document_path)
        selfie_quality = self.assessor.assess(selfie_path)

        feedback: List[str] = []
        if document_quality.is_poor:
            feedback.append("Document image quality is poor. Please upload a clearer photo.")
            confidence -= POOR_QUALITY_PENALTY
        if selfie_quality.is_poor:
            feedback.append("Selfie quality is poor. Please retake with better lighting and focus.")
            confidence -= POOR_QUALITY_PENALTY

        if "blurry" in selfie_quality.issues:
            feedback.append("Selfie appears blurry. Hold camera steady and ensure proper focus.")
        if "too_dark" in selfie_quality.issues:
            feedback.append("Selfie is too dark. Move to better lighting or increase brightness.")
        if "too_bright" in selfie_quality.issues:
            feedback.append("Selfie is overexposed. Reduce lighting or move away from bright sources.")

        result = FaceMatchResult(
            score=int(round(similarity)),
            confidence=int(round(min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, confidence)))),
            feedback=feedback,
        )
        logger.info(
            f"Face match: score={result.score}, confidence={result.confidence}, "
            f"quality_ratio={quality_ratio:.2f}, doc={document_quality.quality}, selfie={selfie_quality.quality}"
        )
        return result

"""
Age estimation from the selfie.

The local estimator is a heuristic over skin-tone and texture indicators
derived from channel statistics. The remote estimator delegates to an
external age-detection web API and falls back to the local heuristic when
that call fails.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

import requests

from . import config
from .imaging import AnalysisContext, read_image_stats
from .quality import ImageQualityAssessor

logger = logging.getLogger(__name__)

BASE_AGE = 25
MIN_AGE = 18
MAX_AGE = 65
AGE_JITTER = 12  # Total width, i.e. +/- 6 years
WARM_SKIN_TONE = 150
COOL_SKIN_TONE = 100
BASE_CONFIDENCE = 60
MAX_CONFIDENCE = 90
POOR_QUALITY_PENALTY = 20
MAX_PLAUSIBLE_AGE = 120


@dataclass
class AgeEstimate:
    age: Optional[int]
    confidence: int
    feedback: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


class AgeEstimator:
    """Local heuristic age estimator."""

    def __init__(self, context: AnalysisContext, assessor: Optional[ImageQualityAssessor] = None):
        self.context = context
        self.assessor = assessor or ImageQualityAssessor()

    @property
    def rng(self):
        return self.context.rng

    def estimate(self, image_path: str) -> AgeEstimate:
        """Estimate the age of the person in the selfie. Never raises."""
        try:
            return self._estimate(image_path)
        except Exception as e:
            logger.error(f"Error in age estimation: {e}", exc_info=True)
            return AgeEstimate(age=None, confidence=0, feedback=["Error during age estimation. Please try again."])

    def _estimate(self, image_path: str) -> AgeEstimate:
        stats = read_image_stats(image_path)
        estimated_age = float(BASE_AGE)

        if stats.channels >= 3:
            red, green, blue = stats.means[:3]
            skin_tone = (red + green - blue) / 2
            if skin_tone > WARM_SKIN_TONE:
                estimated_age += 8
            if skin_tone < COOL_SKIN_TONE:
                estimated_age -= 5

            # Higher texture complexity reads as older
            texture_complexity = stats.stddevs[0] / 255
            estimated_age += texture_complexity * 15

        jitter = (self.rng.random() - 0.5) * AGE_JITTER
        estimated_age = max(MIN_AGE, min(MAX_AGE, estimated_age + jitter))

        confidence = float(BASE_CONFIDENCE)
        if stats.area > 400_000:
            confidence += 15
        if stats.area > 800_000:
            confidence += 10
        if stats.is_color:
            confidence += 10
        if stats.channels >= 3:
            confidence += 10

        resolution_factor = min(stats.area / 500_000, 1)
        confidence = min(MAX_CONFIDENCE, confidence * (0.7 + resolution_factor * 0.3))

        quality = self.assessor.assess(image_path)
        feedback: List[str] = []
        if quality.is_poor:
            feedback.append("Image quality affects age estimation accuracy. Please use better lighting.")
            confidence -= POOR_QUALITY_PENALTY
        if "blurry" in quality.issues:
            feedback.append("Blurry image reduces age estimation confidence.")

        result = AgeEstimate(
            age=int(round(estimated_age)),
            confidence=int(round(max(0, confidence))),
            feedback=feedback,
        )
        logger.info(f"Age estimate: confidence={result.confidence}, quality={quality.quality}")
        return result


class RemoteAgeEstimator:
    """
    Age estimator backed by an external age-detection API.

    The API receives the selfie as multipart form data and must answer with
    JSON of the form {"age": <int>, "confidence": <0-100>}. Any transport,
    HTTP or payload error falls back to the local heuristic.
    """

    def __init__(self, fallback: AgeEstimator, api_url: str = None,
                 api_key: str = None, timeout: float = None, session: requests.Session = None):
        self.fallback = fallback
        self.api_url = api_url if api_url is not None else config.AGE_API_URL
        self.api_key = api_key if api_key is not None else config.AGE_API_KEY
        self.timeout = timeout if timeout is not None else config.AGE_API_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def estimate(self, image_path: str) -> AgeEstimate:
        if not self.api_url:
            logger.warning("AGE_API_URL not configured, using local age estimation")
            return self.fallback.estimate(image_path)

        try:
            return self._estimate_remote(image_path)
        except (requests.RequestException, ValueError, KeyError, TypeError, OSError) as e:
            logger.warning(f"Age API call failed, falling back to local estimation: {e}")
            result = self.fallback.estimate(image_path)
            result.feedback.append("External age detection unavailable; used on-device estimate.")
            return result

    def _estimate_remote(self, image_path: str) -> AgeEstimate:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        with open(image_path, "rb") as image_file:
            response = self.session.post(
                self.api_url,
                files={"image": ("selfie.jpg", image_file, "image/jpeg")},
                headers=headers,
                timeout=self.timeout,
            )
        response.raise_for_status()
        payload = response.json()

        age = int(payload["age"])
        if not 0 <= age <= MAX_PLAUSIBLE_AGE:
            raise ValueError(f"Age out of range: {age}")
        confidence = int(round(float(payload.get("confidence", 0))))
        if not 0 <= confidence <= 100:
            raise ValueError(f"Confidence out of range: {confidence}")

        logger.info(f"Remote age estimate received (confidence={confidence})")
        return AgeEstimate(age=age, confidence=confidence, feedback=[])


def build_age_estimator(context: AnalysisContext, mode: str = None):
    """Return the age estimator selected by configuration."""
    mode = (mode or config.AGE_ESTIMATOR).lower()
    local = AgeEstimator(context)
    if mode == "remote":
        return RemoteAgeEstimator(fallback=local)
    if mode != "local":
        logger.warning(f"Unknown AGE_ESTIMATOR '{mode}', using local estimator")
    return local

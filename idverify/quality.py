"""
Image quality assessment.

Scores an image from resolution, brightness and texture variation (a blur
proxy based on channel standard deviation) and turns the result into a
quality tier plus feedback the user can act on.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List

from . import config
from .imaging import ImageStats, read_image_stats

logger = logging.getLogger(__name__)

LOW_RESOLUTION_PIXELS = 200_000
MODERATE_RESOLUTION_PIXELS = 500_000
MIN_BRIGHTNESS = 80
MAX_BRIGHTNESS = 200
BLURRY_STDDEV = 30
SLIGHTLY_BLURRY_STDDEV = 50

QUALITY_EXCELLENT = "excellent"
QUALITY_GOOD = "good"
QUALITY_POOR = "poor"
QUALITY_VERY_POOR = "very_poor"
POOR_TIERS = (QUALITY_POOR, QUALITY_VERY_POOR)


@dataclass
class QualityReport:
    quality: str
    issues: List[str] = field(default_factory=list)
    score: int = 100
    feedback: List[str] = field(default_factory=list)

    @property
    def is_poor(self) -> bool:
        return self.quality in POOR_TIERS

    def to_dict(self) -> Dict:
        return asdict(self)


def quality_tier(score: int) -> str:
    if score >= config.QUALITY_EXCELLENT:
        return QUALITY_EXCELLENT
    if score >= config.QUALITY_GOOD:
        return QUALITY_GOOD
    if score >= config.QUALITY_POOR:
        return QUALITY_POOR
    return QUALITY_VERY_POOR


class ImageQualityAssessor:
    """Maps raw pixel statistics to a quality tier and feedback."""

    def assess(self, image_path: str) -> QualityReport:
        """
        Assess the image at image_path.

        Never raises: unreadable images get a neutral 'poor' report so the
        verification pipeline keeps going.
        """
        try:
            stats = read_image_stats(image_path)
        except Exception as e:
            logger.error(f"Error assessing image quality: {e}")
            return QualityReport(
                quality=QUALITY_POOR,
                issues=["processing_error"],
                score=50,
                feedback=["Unable to assess image quality. Please try again."],
            )
        return self.assess_stats(stats)

    def assess_stats(self, stats: ImageStats) -> QualityReport:
        issues: List[str] = []
        feedback: List[str] = []
        score = 100

        # Resolution
        if stats.area < LOW_RESOLUTION_PIXELS:
            issues.append("low_resolution")
            feedback.append("Image resolution is too low. Please use a higher quality camera or move closer.")
            score -= 30
        elif stats.area < MODERATE_RESOLUTION_PIXELS:
            issues.append("moderate_resolution")
            feedback.append("Image could be clearer. Try moving closer or using better lighting.")
            score -= 15

        if stats.channels >= 3:
            # Brightness
            brightness = sum(stats.means[:3]) / 3
            if brightness < MIN_BRIGHTNESS:
                issues.append("too_dark")
                feedback.append("Image is too dark. Please improve lighting or move to a brighter area.")
                score -= 25
            elif brightness > MAX_BRIGHTNESS:
                issues.append("too_bright")
                feedback.append("Image is too bright. Reduce direct lighting or move away from bright sources.")
                score -= 20

            # Blur proxy
            texture_variation = max(stats.stddevs[:3])
            if texture_variation < BLURRY_STDDEV:
                issues.append("blurry")
                feedback.append("Image appears blurry. Hold the camera steady and ensure proper focus.")
                score -= 35
            elif texture_variation < SLIGHTLY_BLURRY_STDDEV:
                issues.append("slightly_blurry")
                feedback.append("Image could be sharper. Try holding the camera more steady.")
                score -= 15

        score = max(0, score)
        report = QualityReport(quality=quality_tier(score), issues=issues, score=score, feedback=feedback)
        logger.debug(f"Quality: {report.quality} ({report.score}) issues={report.issues}")
        return report

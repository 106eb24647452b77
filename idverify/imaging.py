"""
Image loading and pixel statistics shared by the analysis components.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import List, Optional

from PIL import Image, ImageStat

logger = logging.getLogger(__name__)

EXIF_ORIENTATION_TAG = 274


@dataclass
class ImageStats:
    """Per-channel statistics and dimensions of an image."""
    width: int
    height: int
    channels: int           # Number of bands in the decoded image
    means: List[float]      # Per-channel mean (0-255)
    stddevs: List[float]    # Per-channel standard deviation

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def is_color(self) -> bool:
        return self.channels == 3


def open_image(image_path: str) -> Image.Image:
    """
    Open an image from disk, upright according to its EXIF orientation.

    Palette images are expanded so that statistics are computed over real
    colour channels rather than palette indices.

    Raises:
        OSError: If the file cannot be read or decoded
    """
    image = Image.open(image_path)
    image.load()

    # Handle EXIF orientation (important for mobile photos)
    try:
        exif = image.getexif()
        orientation = exif.get(EXIF_ORIENTATION_TAG)
        if orientation == 3:
            image = image.rotate(180, expand=True)
        elif orientation == 6:
            image = image.rotate(270, expand=True)
        elif orientation == 8:
            image = image.rotate(90, expand=True)
    except (AttributeError, KeyError, IndexError) as e:
        logger.debug(f"No EXIF orientation data: {e}")

    if image.mode == "P":
        image = image.convert("RGBA" if "transparency" in image.info else "RGB")
    return image


def read_image_stats(image_path: str) -> ImageStats:
    """Decode an image and compute its channel statistics."""
    image = open_image(image_path)
    stat = ImageStat.Stat(image)
    width, height = image.size
    return ImageStats(
        width=width,
        height=height,
        channels=len(image.getbands()),
        means=[float(m) for m in stat.mean],
        stddevs=[float(s) for s in stat.stddev],
    )


@dataclass
class AnalysisContext:
    """
    Setup shared by the face matcher and age estimator.

    Built once when the service starts and handed to both components, so
    neither relies on module-level initialisation state. Seeding the random
    source makes the heuristic jitter reproducible.
    """
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def create(cls, seed: Optional[int] = None) -> "AnalysisContext":
        logger.info("Initializing image analysis" + (f" (seed={seed})" if seed is not None else ""))
        return cls(rng=random.Random(seed))

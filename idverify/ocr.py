"""
Document text extraction.

Runs Tesseract over two enhanced variants of the document image in several
languages, keeps the most confident reading and parses name, date of birth
and age out of it.
"""
import asyncio
import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import date
from functools import partial
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np
import pytesseract
from PIL import Image, ImageEnhance, ImageOps

from . import config
from .errors import OCRInitializationError, OCRTimeoutError
from .imaging import open_image
from .security import anonymize_for_logging

logger = logging.getLogger(__name__)

NAME_LABELS = ("Name", "नाम")
NAME_SHAPE_RE = re.compile(r"^[A-Z][a-z]+ [A-Z][a-z]+")
NON_LETTER_RE = re.compile(r"[^a-zA-Z\s]")
DOB_RE = re.compile(r"(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{4}|\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2})")
AGE_RE = re.compile(r"(?:Age|age|उम्र)[\s:]*(\d{1,3})")
DATE_SEPARATOR_RE = re.compile(r"[/\-.]")

SHARPEN_KERNEL = np.array([[-1, -1, -1], [-1, 9, -1], [-1, -1, -1]])
BINARIZE_THRESHOLD = 128

VARIANT_ENHANCED = "enhanced"
VARIANT_HIGH_CONTRAST = "high_contrast"


@dataclass
class ExtractedFields:
    text: str
    name: Optional[str] = None
    age: Optional[int] = None
    dob: Optional[str] = None


@dataclass
class OCRResult:
    text: str
    confidence: int
    language: Optional[str] = None
    variant: Optional[str] = None
    name: Optional[str] = None
    age: Optional[int] = None
    dob: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class Recognition:
    text: str
    confidence: float


# -------------------------------------------------------------- parsing ---

def parse_dob(dob: str) -> Optional[date]:
    """
    Parse a DOB string as matched by DOB_RE.

    Year-first strings are read as Y-M-D; everything else as D-M-Y.
    Returns None for impossible dates.
    """
    parts = DATE_SEPARATOR_RE.split(dob)
    if len(parts) != 3:
        return None
    try:
        if len(parts[0]) == 4:
            year, month, day = (int(p) for p in parts)
        else:
            day, month, year = (int(p) for p in parts)
        return date(year, month, day)
    except ValueError:
        return None


def age_from_dob(dob: str, today: Optional[date] = None) -> Optional[int]:
    """Whole years between dob and today, or None if dob is not a valid past date."""
    born = parse_dob(dob)
    if born is None:
        return None
    today = today or date.today()
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age if age >= 0 else None


def _clean_name(value: str) -> Optional[str]:
    cleaned = " ".join(NON_LETTER_RE.sub("", value).split())
    return cleaned or None


def extract_fields(text: str, today: Optional[date] = None) -> ExtractedFields:
    """Pull name, DOB and age out of recognised document text."""
    lines = [line.strip() for line in text.split("\n") if line.strip()]

    name = None
    for line in lines:
        if any(label in line for label in NAME_LABELS) and ":" in line:
            name = _clean_name(line.split(":")[1])
            if name:
                break
    if not name:
        for line in lines:
            if NAME_SHAPE_RE.match(line):
                name = _clean_name(line)
                if name:
                    break

    dob = None
    for line in lines:
        match = DOB_RE.search(line)
        if match:
            dob = match.group(1)
            break

    age = None
    for line in lines:
        match = AGE_RE.search(line)
        if match:
            age = int(match.group(1))
            break

    if dob and age is None:
        age = age_from_dob(dob, today)
        if age is None:
            logger.warning("Could not derive age from extracted date of birth")

    return ExtractedFields(text=text, name=name, age=age, dob=dob)


# -------------------------------------------------------- preprocessing ---

def _resize_for_ocr(image: Image.Image, max_width: int = config.OCR_MAX_WIDTH) -> Image.Image:
    width, height = image.size
    if width > max_width:
        scale = max_width / width
        image = image.resize((max_width, int(height * scale)), Image.LANCZOS)
    return image


def _sharpen(image: Image.Image) -> Image.Image:
    array = np.array(image)
    sharpened = cv2.filter2D(array, -1, SHARPEN_KERNEL)
    # Blend 70% original + 30% sharpened
    return Image.fromarray(cv2.addWeighted(array, 0.7, sharpened, 0.3, 0))


def enhance_standard(image: Image.Image) -> Image.Image:
    """Normalised, sharpened, slightly brighter and more saturated."""
    image = ImageOps.autocontrast(_resize_for_ocr(image.convert("RGB")))
    image = _sharpen(image)
    image = ImageEnhance.Brightness(image).enhance(1.1)
    return ImageEnhance.Color(image).enhance(1.2)


def enhance_high_contrast(image: Image.Image) -> Image.Image:
    """Normalised, boosted and binarised for text against busy backgrounds."""
    image = ImageOps.autocontrast(_resize_for_ocr(image.convert("RGB")))
    image = ImageEnhance.Brightness(image).enhance(1.2)
    image = ImageEnhance.Color(image).enhance(1.5)
    gray = cv2.cvtColor(np.array(image), cv2.COLOR_RGB2GRAY)
    _, binary = cv2.threshold(gray, BINARIZE_THRESHOLD, 255, cv2.THRESH_BINARY)
    return Image.fromarray(binary)


PREPROCESSORS = {
    VARIANT_ENHANCED: enhance_standard,
    VARIANT_HIGH_CONTRAST: enhance_high_contrast,
}


# --------------------------------------------------------------- engine ---

class TesseractEngine:
    """Recognition backend using the Tesseract binary via pytesseract."""

    def __init__(self, tesseract_cmd: Optional[str] = config.TESSERACT_CMD):
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def check_available(self) -> None:
        try:
            version = pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            raise OCRInitializationError(f"Tesseract OCR is not available: {e}") from e
        logger.debug(f"Tesseract {version} available")

    def recognize(self, image_path: str, lang: str, timeout: float = 0) -> Recognition:
        """
        Read the text of one image in one language.

        A positive timeout kills the tesseract subprocess once it runs over.

        Raises:
            OCRTimeoutError: If tesseract was killed for running over timeout
        """
        with Image.open(image_path) as image:
            try:
                data = pytesseract.image_to_data(
                    image, lang=lang, output_type=pytesseract.Output.DICT, timeout=timeout or 0,
                )
            except RuntimeError as e:
                if "timeout" in str(e).lower():
                    raise OCRTimeoutError(f"Tesseract killed after {timeout:.0f}s") from e
                raise

        lines: Dict[Tuple[int, int, int], List[str]] = {}
        confidences = []
        for i, word in enumerate(data["text"]):
            conf = float(data["conf"][i])
            if conf < 0 or not word.strip():
                continue
            confidences.append(conf)
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(word)

        text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        return Recognition(text=text, confidence=confidence)


# ------------------------------------------------------------ extractor ---

class TextExtractor:
    """Multi-variant, multi-language OCR over a document image."""

    def __init__(self, engine=None, languages: Dict[str, str] = None, timeout: float = None):
        self.engine = engine or TesseractEngine()
        self.languages = languages or config.OCR_LANGUAGES
        self.timeout = timeout if timeout is not None else config.OCR_TIMEOUT_SECONDS

    def recognition_passes(self) -> List[Tuple[str, str]]:
        """(variant, language code) pairs; the primary language also reads the high-contrast variant."""
        codes = list(self.languages)
        passes = [(VARIANT_ENHANCED, codes[0]), (VARIANT_HIGH_CONTRAST, codes[0])]
        passes.extend((VARIANT_ENHANCED, code) for code in codes[1:])
        return passes

    async def extract(self, image_path: str) -> OCRResult:
        """
        Run OCR on the document at image_path.

        Engine checks, preprocessing and recognition all run on a worker pool.
        Passes are killed by the engine once they run over the timeout, and
        the pool is drained before the variant files are deleted.

        Raises:
            OCRInitializationError: If the OCR engine is unavailable
            OCRTimeoutError: If recognition exceeds the configured timeout
        """
        passes = self.recognition_passes()
        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=len(passes), thread_name_prefix="ocr")
        variant_paths: Dict[str, str] = {}
        try:
            await loop.run_in_executor(executor, self.engine.check_available)
            await loop.run_in_executor(executor, self._write_variants, image_path, variant_paths)
            readings = await asyncio.wait_for(
                asyncio.gather(*[
                    loop.run_in_executor(executor, self._recognize_pass, variant_paths[variant], lang)
                    for variant, lang in passes
                ]),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise OCRTimeoutError(f"OCR did not finish within {self.timeout:.0f}s") from e
        finally:
            # Running passes end by the engine timeout at the latest
            await loop.run_in_executor(None, partial(executor.shutdown, wait=True, cancel_futures=True))
            self._cleanup(variant_paths.values())

        return self._select_best(passes, readings)

    def _write_variants(self, image_path: str, paths: Dict[str, str]) -> None:
        source = open_image(image_path)
        for index, (variant, preprocess) in enumerate(PREPROCESSORS.items(), start=1):
            output_path = f"{image_path}_processed{index}.jpg"
            # Registered before writing so a half-written file is still cleaned up
            paths[variant] = output_path
            preprocess(source).save(output_path, "JPEG", quality=95)

    def _recognize_pass(self, path: str, lang: str) -> Optional[Recognition]:
        try:
            return self.engine.recognize(path, lang, timeout=self.timeout)
        except OCRTimeoutError:
            raise
        except Exception as e:
            logger.warning(f"OCR pass failed for language '{lang}': {e}")
            return None

    def _select_best(self, passes: List[Tuple[str, str]], readings: List[Optional[Recognition]]) -> OCRResult:
        best = None
        best_pass = None
        for recognition_pass, reading in zip(passes, readings):
            if reading is None:
                continue
            if best is None or reading.confidence > best.confidence:
                best, best_pass = reading, recognition_pass

        if best is None:
            logger.warning("All OCR passes failed; continuing without extracted text")
            return OCRResult(text="", confidence=0)

        variant, lang = best_pass
        fields = extract_fields(best.text)
        result = OCRResult(
            text=fields.text,
            confidence=int(round(best.confidence)),
            language=self.languages[lang],
            variant=variant,
            name=fields.name,
            age=fields.age,
            dob=fields.dob,
        )
        logger.info(
            f"OCR complete: language={result.language}, variant={variant}, confidence={result.confidence}, "
            f"fields={anonymize_for_logging({'name': result.name, 'dob': result.dob, 'age': result.age})}"
        )
        return result

    @staticmethod
    def _cleanup(paths) -> None:
        for path in paths:
            try:
                if os.path.exists(path):
                    os.remove(path)
            except OSError as e:
                logger.warning(f"Failed to delete temporary OCR file: {e}")

"""
Pytest configuration and fixtures for the verification service tests.
"""
import io
import threading
import time

import numpy as np
import pytest
from PIL import Image

from idverify import config
from idverify.errors import OCRInitializationError, OCRTimeoutError
from idverify.imaging import AnalysisContext
from idverify.ocr import Recognition, TextExtractor
from idverify.orchestrator import VerificationOrchestrator
from idverify.storage import InMemoryVerificationStore
from idverify.face_match import FaceMatcher
from idverify.age_estimation import AgeEstimator

SAMPLE_ID_TEXT = "GOVERNMENT OF EXAMPLE\nName: Jane Doe\nDOB: 01/01/1990\nID No: 1234 5678"


def checkerboard(size=(800, 700), color=(128, 128, 128), amplitude=60, mode="RGB"):
    """
    Build an image whose channels have exactly the given mean and standard deviation.

    Alternating pixels sit at color - amplitude and color + amplitude, so as
    long as no value clips the mean is `color` and the stddev is `amplitude`.
    """
    width, height = size
    mask = (np.indices((height, width)).sum(axis=0) % 2).astype(np.int32)
    offset = (mask * 2 - 1) * amplitude
    if mode == "L":
        base = color if isinstance(color, int) else color[0]
        array = np.clip(base + offset, 0, 255).astype(np.uint8)
    else:
        array = np.stack([np.clip(c + offset, 0, 255) for c in color], axis=-1).astype(np.uint8)
    return Image.fromarray(array, mode=mode)


@pytest.fixture
def make_image(tmp_path):
    """Factory writing a checkerboard PNG into tmp_path and returning its path."""
    counter = {"n": 0}

    def _make(size=(800, 700), color=(128, 128, 128), amplitude=60, mode="RGB", name=None):
        counter["n"] += 1
        path = tmp_path / (name or f"image_{counter['n']}.png")
        checkerboard(size, color, amplitude, mode).save(path, "PNG")
        return str(path)

    return _make


def png_bytes(size=(800, 700), color=(128, 128, 128), amplitude=60):
    buffer = io.BytesIO()
    checkerboard(size, color, amplitude).save(buffer, "PNG")
    return buffer.getvalue()


class FakeOCREngine:
    """
    Recognition engine returning canned readings per (variant number, language).

    A pass slower than the timeout it is given is cut off at that timeout,
    the way tesseract is killed.
    """

    def __init__(self, text=SAMPLE_ID_TEXT, confidences=None, available=True, delay=0.0, fail=False):
        self.text = text
        self.confidences = confidences or {}
        self.available = available
        self.delay = delay
        self.fail = fail
        self.calls = []
        self.seen_paths = []
        self.running = 0
        self.killed = 0
        self._lock = threading.Lock()

    def check_available(self):
        if not self.available:
            raise OCRInitializationError("tesseract not installed")

    def recognize(self, image_path, lang, timeout=0):
        variant = 1 if image_path.endswith("_processed1.jpg") else 2
        with self._lock:
            self.calls.append((variant, lang))
            self.seen_paths.append(image_path)
            self.running += 1
        try:
            if self.delay:
                if timeout and self.delay > timeout:
                    time.sleep(timeout)
                    with self._lock:
                        self.killed += 1
                    raise OCRTimeoutError(f"killed after {timeout}s")
                time.sleep(self.delay)
            if self.fail:
                raise RuntimeError("recognition crashed")
            return Recognition(text=self.text, confidence=self.confidences.get((variant, lang), 50.0))
        finally:
            with self._lock:
                self.running -= 1


@pytest.fixture
def fake_engine():
    return FakeOCREngine()


@pytest.fixture
def text_extractor(fake_engine):
    return TextExtractor(engine=fake_engine)


@pytest.fixture
def analysis_context():
    return AnalysisContext.create(seed=1234)


@pytest.fixture
def orchestrator(text_extractor, analysis_context):
    return VerificationOrchestrator(
        store=InMemoryVerificationStore(),
        text_extractor=text_extractor,
        face_matcher=FaceMatcher(analysis_context),
        age_estimator=AgeEstimator(analysis_context),
    )


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(config, "UPLOAD_DIR", path)
    return path

"""
Tests for document text extraction and field parsing.
"""
import asyncio
import os
import threading
from datetime import date

import numpy as np
import pytesseract
import pytest

from idverify.errors import OCRInitializationError, OCRTimeoutError
from idverify.ocr import (
    TesseractEngine,
    TextExtractor,
    age_from_dob,
    enhance_high_contrast,
    enhance_standard,
    extract_fields,
    parse_dob,
)
from tests.conftest import FakeOCREngine, checkerboard


class TestParseDob:

    def test_day_first(self):
        assert parse_dob("05/04/1990") == date(1990, 4, 5)

    def test_year_first(self):
        assert parse_dob("1990-04-05") == date(1990, 4, 5)

    def test_dotted(self):
        assert parse_dob("5.4.1990") == date(1990, 4, 5)

    def test_impossible_date(self):
        assert parse_dob("31/02/1990") is None

    def test_garbage(self):
        assert parse_dob("not a date") is None


class TestAgeFromDob:

    def test_before_birthday(self):
        assert age_from_dob("15/06/2000", today=date(2026, 6, 14)) == 25

    def test_on_birthday(self):
        assert age_from_dob("15/06/2000", today=date(2026, 6, 15)) == 26

    def test_future_date(self):
        assert age_from_dob("01/01/2099", today=date(2026, 1, 1)) is None


class TestExtractFields:

    def test_labelled_name_and_dob(self):
        fields = extract_fields("Name: Jane Doe\nDOB: 01/01/1990", today=date(2026, 10, 16))
        assert fields.name == "Jane Doe"
        assert fields.dob == "01/01/1990"
        assert fields.age == 36

    def test_explicit_age_wins_over_dob(self):
        fields = extract_fields("Name: Jane Doe\nDOB: 01/01/1990\nAge: 42", today=date(2026, 10, 16))
        assert fields.age == 42
        assert fields.dob == "01/01/1990"

    def test_hindi_labels(self):
        fields = extract_fields("नाम: Ravi Kumar\nउम्र: 30")
        assert fields.name == "Ravi Kumar"
        assert fields.age == 30

    def test_label_noise_is_stripped(self):
        fields = extract_fields("Name : J0hn  Sm1th!!")
        assert fields.name == "Jhn Smth"

    def test_capitalized_line_fallback(self):
        fields = extract_fields("REPUBLIC ID CARD\nPriya Sharma\n1234 5678 9012")
        assert fields.name == "Priya Sharma"

    def test_label_takes_priority_over_fallback(self):
        fields = extract_fields("Priya Sharma\nName: Anita Rao")
        assert fields.name == "Anita Rao"

    def test_year_first_dob(self):
        fields = extract_fields("DOB 1990-05-12", today=date(2026, 5, 12))
        assert fields.dob == "1990-05-12"
        assert fields.age == 36

    def test_invalid_dob_keeps_text_without_age(self):
        fields = extract_fields("DOB: 31/02/1990")
        assert fields.dob == "31/02/1990"
        assert fields.age is None

    def test_nothing_found(self):
        fields = extract_fields("12345\n!!!")
        assert (fields.name, fields.age, fields.dob) == (None, None, None)
        assert fields.text == "12345\n!!!"


class TestPreprocessing:

    def test_standard_variant_is_capped_in_width(self):
        image = checkerboard(size=(2000, 1000))
        enhanced = enhance_standard(image)
        assert enhanced.size == (1600, 800)
        assert enhanced.mode == "RGB"

    def test_high_contrast_variant_is_binary(self):
        image = checkerboard(size=(400, 300), color=(120, 100, 90), amplitude=40)
        binary = enhance_high_contrast(image)
        assert binary.mode == "L"
        assert set(np.unique(np.array(binary))) <= {0, 255}


class TestTextExtractor:

    def test_recognition_passes(self):
        extractor = TextExtractor(engine=FakeOCREngine())
        assert extractor.recognition_passes() == [
            ("enhanced", "eng"),
            ("high_contrast", "eng"),
            ("enhanced", "hin"),
            ("enhanced", "tel"),
        ]

    def test_selects_most_confident_pass(self, make_image):
        engine = FakeOCREngine(confidences={(1, "eng"): 61.0, (2, "eng"): 72.4, (1, "hin"): 40.0, (1, "tel"): 10.0})
        extractor = TextExtractor(engine=engine)

        result = asyncio.run(extractor.extract(make_image()))

        assert result.confidence == 72
        assert result.language == "English"
        assert result.variant == "high_contrast"
        assert result.name == "Jane Doe"
        assert result.dob == "01/01/1990"
        assert sorted(engine.calls) == [(1, "eng"), (1, "hin"), (1, "tel"), (2, "eng")]

    def test_first_pass_wins_ties(self, make_image):
        extractor = TextExtractor(engine=FakeOCREngine(confidences={(1, "tel"): 80.0, (1, "hin"): 80.0}))

        result = asyncio.run(extractor.extract(make_image()))

        assert result.language == "Hindi"

    def test_variants_are_removed_after_extraction(self, make_image):
        engine = FakeOCREngine()
        path = make_image()

        asyncio.run(TextExtractor(engine=engine).extract(path))

        assert engine.seen_paths
        assert set(engine.seen_paths) == {f"{path}_processed1.jpg", f"{path}_processed2.jpg"}
        assert not any(os.path.exists(p) for p in engine.seen_paths)
        assert os.path.exists(path)

    def test_all_passes_failing_gives_empty_result(self, make_image):
        engine = FakeOCREngine(fail=True)
        path = make_image()

        result = asyncio.run(TextExtractor(engine=engine).extract(path))

        assert result.text == ""
        assert result.confidence == 0
        assert result.name is None
        assert not os.path.exists(f"{path}_processed1.jpg")
        assert not os.path.exists(f"{path}_processed2.jpg")

    def test_unavailable_engine_raises(self, make_image):
        path = make_image()
        extractor = TextExtractor(engine=FakeOCREngine(available=False))

        with pytest.raises(OCRInitializationError):
            asyncio.run(extractor.extract(path))
        assert not os.path.exists(f"{path}_processed1.jpg")

    def test_timeout_raises_and_cleans_up(self, make_image):
        path = make_image()
        engine = FakeOCREngine(delay=0.5)
        extractor = TextExtractor(engine=engine, timeout=0.05)

        with pytest.raises(OCRTimeoutError):
            asyncio.run(extractor.extract(path))

        # Every pass that started was cut off and none is still running
        assert engine.calls
        assert engine.killed == len(engine.calls)
        assert engine.running == 0
        assert not os.path.exists(f"{path}_processed1.jpg")
        assert not os.path.exists(f"{path}_processed2.jpg")

    def test_engine_receives_timeout(self, make_image):
        seen = []

        class RecordingEngine(FakeOCREngine):
            def recognize(self, image_path, lang, timeout=0):
                seen.append(timeout)
                return super().recognize(image_path, lang, timeout)

        asyncio.run(TextExtractor(engine=RecordingEngine(), timeout=7).extract(make_image()))

        assert seen == [7, 7, 7, 7]

    def test_blocking_setup_runs_off_the_event_loop(self, make_image):
        threads = []

        class RecordingEngine(FakeOCREngine):
            def check_available(self):
                threads.append(threading.current_thread().name)
                super().check_available()

        asyncio.run(TextExtractor(engine=RecordingEngine()).extract(make_image()))

        assert len(threads) == 1
        assert threads[0].startswith("ocr")
        assert threads[0] != threading.main_thread().name

    def test_unreadable_document_raises(self, tmp_path):
        bogus = tmp_path / "document.png"
        bogus.write_bytes(b"not an image")

        with pytest.raises(OSError):
            asyncio.run(TextExtractor(engine=FakeOCREngine()).extract(str(bogus)))


class TestTesseractEngine:

    def test_passes_timeout_to_tesseract(self, make_image, monkeypatch):
        captured = {}

        def fake_image_to_data(image, lang=None, output_type=None, timeout=0):
            captured.update(lang=lang, timeout=timeout)
            return {
                "text": ["Name:", "Jane", "Doe", ""],
                "conf": ["90", "80", "70", "-1"],
                "block_num": [1, 1, 1, 1],
                "par_num": [1, 1, 1, 1],
                "line_num": [1, 1, 1, 2],
            }

        monkeypatch.setattr(pytesseract, "image_to_data", fake_image_to_data)

        reading = TesseractEngine().recognize(make_image(), "eng", timeout=12)

        assert captured == {"lang": "eng", "timeout": 12}
        assert reading.text == "Name: Jane Doe"
        assert reading.confidence == 80

    def test_killed_process_raises_timeout(self, make_image, monkeypatch):
        def slow_image_to_data(*args, **kwargs):
            raise RuntimeError("Tesseract process timeout")

        monkeypatch.setattr(pytesseract, "image_to_data", slow_image_to_data)

        with pytest.raises(OCRTimeoutError):
            TesseractEngine().recognize(make_image(), "eng", timeout=1)

    def test_other_runtime_errors_propagate(self, make_image, monkeypatch):
        def broken_image_to_data(*args, **kwargs):
            raise RuntimeError("bad language pack")

        monkeypatch.setattr(pytesseract, "image_to_data", broken_image_to_data)

        with pytest.raises(RuntimeError, match="bad language pack"):
            TesseractEngine().recognize(make_image(), "xyz", timeout=1)

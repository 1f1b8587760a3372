"""Filename sanitizing, timestamp patterns and smart filenames."""

from datetime import datetime
from pathlib import Path

import pytest

from capturedesk.config import NamingConfig
from capturedesk.models import OCRResult
from capturedesk.naming import (
    build_capture_filename,
    fallback_filename,
    format_timestamp,
    generate_smart_filename,
    ocr_sidecar_path,
    sanitize_filename,
)
from conftest import make_result

TS = datetime(2024, 3, 9, 14, 5, 7, 123000)


class TestFormatTimestamp:
    def test_default_pattern(self):
        assert format_timestamp(TS, "yyyyMMdd_HHmmss") == "20240309_140507"

    def test_twelve_hour_clock_and_millis(self):
        assert format_timestamp(TS, "yy-MM-dd hh:mm:ss.fff tt") == "24-03-09 02:05:07.123 PM"

    def test_literal_text_is_kept(self):
        assert format_timestamp(TS, "day_dd") == "day_09"


class TestSanitize:
    def test_invalid_characters_replaced(self):
        assert sanitize_filename("My:Invoice*2024") == "My_Invoice_2024"

    def test_runs_collapse_to_single_underscore(self):
        assert sanitize_filename("a  /\\  b__c") == "a_b_c"

    def test_control_characters(self):
        assert sanitize_filename("tab\there") == "tab_here"

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_blank(self, text):
        assert sanitize_filename(text) == ""


class TestSmartFilename:
    def test_first_line_is_used(self):
        naming = NamingConfig()
        name = generate_smart_filename(make_result("Hello World", "second"), TS, "png", naming)
        assert name == "hello_world_20240309_140507.png"

    def test_deterministic(self):
        naming = NamingConfig()
        result = make_result("Quarterly Report: Q1")
        first = generate_smart_filename(result, TS, "png", naming)
        assert first == generate_smart_filename(result, TS, "png", naming)
        assert first == "quarterly_report_q1_20240309_140507.png"

    def test_truncates_and_trims_trailing_separators(self):
        naming = NamingConfig(smart_filename_max_length=6)
        name = generate_smart_filename(make_result("Hello World"), TS, "jpg", naming)
        assert name == "hello_20240309_140507.jpg"

    def test_blank_text_falls_back(self):
        naming = NamingConfig()
        name = generate_smart_filename(OCRResult(text="   "), TS, "png", naming)
        assert name == "capture_20240309_140507.png"

    def test_no_result_falls_back(self):
        assert generate_smart_filename(None, TS, ".png", NamingConfig()) == "capture_20240309_140507.png"

    def test_disabled_falls_back(self):
        naming = NamingConfig(use_smart_filenames=False)
        name = generate_smart_filename(make_result("Hello"), TS, "png", naming)
        assert name == "capture_20240309_140507.png"

    def test_nothing_survives_sanitizing(self):
        naming = NamingConfig()
        name = generate_smart_filename(make_result("???"), TS, "png", naming)
        assert name == "capture_20240309_140507.png"

    def test_raw_text_used_without_lines(self):
        result = OCRResult(text="\n\nFirst line\nSecond")
        name = generate_smart_filename(result, TS, "png", NamingConfig())
        assert name == "first_line_20240309_140507.png"

    def test_fallback_sequence_is_millisecond(self):
        naming = NamingConfig(fallback_pattern="shot_{timestamp}_{sequence}")
        assert fallback_filename(TS, "png", naming) == "shot_20240309_140507_123.png"


class TestCaptureFilename:
    def test_default_pattern(self):
        name = build_capture_filename(
            "capture_{session}_{timestamp}", "My Session", TS, 7, "png", NamingConfig()
        )
        assert name == "capture_My_Session_20240309_140507.png"

    def test_sequence_placeholder(self):
        name = build_capture_filename("{session}-{sequence}", "S", TS, 7, ".jpg", NamingConfig())
        assert name == "S-007.jpg"

    def test_sidecar_path(self):
        assert ocr_sidecar_path("/tmp/x/shot.png") == Path("/tmp/x/shot_ocr.txt")

import json

from capturedesk.formatting import combine_ocr_text, format_ocr_text
from capturedesk.models import DisplayMode, OCRResult, ScreenCapture
from conftest import make_result


class TestFormatOcrText:
    def test_continuous_is_trimmed_raw_text(self):
        result = OCRResult(text="  Hello\nWorld  ")
        assert format_ocr_text(result) == "Hello\nWorld"

    def test_lines(self):
        assert format_ocr_text(make_result("Hello", "World"), "lines") == "Hello, World"

    def test_structured_numbers_from_one(self):
        text = format_ocr_text(make_result("Hello", "World"), DisplayMode.STRUCTURED)
        assert text == "[1] Hello\n[2] World"

    def test_json_escapes_quotes(self):
        text = format_ocr_text(make_result('say "hi"', "bye"), "json")
        assert text == '["say \\"hi\\"", "bye"]'

    def test_json_is_parseable_with_backslashes(self):
        lines = ["C:\\Users\\me", "tab\there", "café"]
        text = format_ocr_text(make_result(*lines), "json")
        assert json.loads(text) == lines
        assert "café" in text

    def test_blank_lines_are_skipped(self):
        result = make_result("Hello", "   ", "World")
        assert format_ocr_text(result, "lines") == "Hello, World"
        assert format_ocr_text(result, "structured") == "[1] Hello\n[3] World"

    def test_unknown_mode_is_continuous(self):
        assert format_ocr_text(make_result("a", "b"), "fancy") == "a\nb"

    def test_blank_result(self):
        assert format_ocr_text(OCRResult(text="  \n"), "json") == ""


class TestCombineOcrText:
    def test_duplicates_and_missing_results_are_dropped(self):
        captures = [
            ScreenCapture(ocr_result=make_result("Invoice")),
            ScreenCapture(ocr_result=None),
            ScreenCapture(ocr_result=make_result("Invoice")),
            ScreenCapture(ocr_result=make_result("Total 42")),
            ScreenCapture(ocr_result=OCRResult(text="")),
        ]
        assert combine_ocr_text(captures) == "Invoice, Total 42"

    def test_no_captures(self):
        assert combine_ocr_text([]) == ""

"""OCR engine contract and the Tesseract implementation."""

from __future__ import annotations

import io
import os
import time
from pathlib import Path
from typing import Protocol, runtime_checkable

import pytesseract
import structlog
from PIL import Image

from ..config import OCRConfig
from ..models import BoundingBox, OCRLine, OCRResult, OCRWord

log = structlog.get_logger()

# One OCR call at a time; Tesseract's own OpenMP threads only add contention
os.environ.setdefault("OMP_THREAD_LIMIT", "1")

_OCR_MAX_WIDTH = 2000


@runtime_checkable
class OCREngine(Protocol):
    """Anything that can turn an image into an :class:`OCRResult`.

    ``recognize`` raises on engine failure. A blank image is not a failure:
    it yields empty text with confidence 0.
    """

    name: str

    def recognize(self, image: Image.Image) -> OCRResult: ...

    def is_available(self) -> bool: ...


def load_image(path: str | Path) -> Image.Image:
    """Read an image without keeping the file open.

    The bytes are copied into memory first so the file can be renamed or
    deleted while recognition is still running.
    """
    data = Path(path).read_bytes()
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def _prepare_image(image: Image.Image) -> tuple[Image.Image, float]:
    """Downscale wide images and convert to grayscale. Returns (image, scale back)."""
    scale = 1.0
    if image.width > _OCR_MAX_WIDTH:
        scale = image.width / _OCR_MAX_WIDTH
        ratio = _OCR_MAX_WIDTH / image.width
        image = image.resize(
            (int(image.width * ratio), int(image.height * ratio)),
            Image.LANCZOS,
        )
    if image.mode != "L":
        image = image.convert("L")
    return image, scale


def _union(boxes: list[BoundingBox]) -> BoundingBox:
    if not boxes:
        return BoundingBox()
    left = min(b.x for b in boxes)
    top = min(b.y for b in boxes)
    right = max(b.right for b in boxes)
    bottom = max(b.bottom for b in boxes)
    return BoundingBox(x=left, y=top, width=right - left, height=bottom - top)


def result_from_tesseract_data(
    data: dict, engine_name: str, processing_time_ms: float, scale: float = 1.0
) -> OCRResult:
    """Group ``image_to_data`` word rows into lines by (block, paragraph, line)."""
    grouped: dict[tuple[int, int, int], list[tuple[OCRWord, float]]] = {}
    for i, raw in enumerate(data["text"]):
        text = (raw or "").strip()
        if not text:
            continue
        try:
            conf = float(data["conf"][i])
        except (TypeError, ValueError):
            conf = -1.0
        box = BoundingBox(
            x=int(data["left"][i] * scale),
            y=int(data["top"][i] * scale),
            width=int(data["width"][i] * scale),
            height=int(data["height"][i] * scale),
        )
        key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
        grouped.setdefault(key, []).append((OCRWord(text=text, bounding_box=box), conf))

    lines: list[OCRLine] = []
    confidences: list[float] = []
    for number, key in enumerate(sorted(grouped)):
        entries = grouped[key]
        words = tuple(w for w, _ in entries)
        word_confs = [c / 100.0 for _, c in entries if c >= 0]
        confidences.extend(word_confs)
        lines.append(
            OCRLine(
                text=" ".join(w.text for w in words),
                confidence=sum(word_confs) / len(word_confs) if word_confs else 0.0,
                line_number=number,
                bounding_box=_union([w.bounding_box for w in words]),
                words=words,
            )
        )

    return OCRResult(
        text="\n".join(line.text for line in lines),
        confidence=sum(confidences) / len(confidences) if confidences else 0.0,
        engine_name=engine_name,
        processing_time_ms=processing_time_ms,
        lines=tuple(lines),
    )


class TesseractEngine:
    name = "Tesseract"

    def __init__(self, config: OCRConfig) -> None:
        self.config = config

    def is_available(self) -> bool:
        try:
            pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            log.warning("tesseract_unavailable", error=str(e))
            return False
        return True

    def recognize(self, image: Image.Image) -> OCRResult:
        start = time.perf_counter()
        prepared, scale = _prepare_image(image)
        data = pytesseract.image_to_data(
            prepared,
            lang=self.config.tesseract_lang,
            config=f"--psm {self.config.psm}",
            output_type=pytesseract.Output.DICT,
        )
        elapsed_ms = (time.perf_counter() - start) * 1000
        result = result_from_tesseract_data(data, self.name, elapsed_ms, scale)
        log.debug(
            "ocr_recognized",
            engine=self.name,
            lines=len(result.lines),
            confidence=round(result.confidence, 3),
            ms=round(elapsed_ms),
        )
        return result


def create_engine(config: OCRConfig) -> OCREngine:
    engine = config.engine.lower()
    if engine == "tesseract":
        return TesseractEngine(config)
    raise ValueError(f"Unknown OCR engine: {config.engine}")

"""Screen capture via Pillow ImageGrab, plus image saving."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog
from PIL import Image, ImageGrab

from ..models import CaptureResult, Region, utcnow

log = structlog.get_logger()

MIN_REGION_SIZE = 10


@runtime_checkable
class CaptureAdapter(Protocol):
    """Acquires pixels from the screen. Never raises; failures come back in the result."""

    def capture_fullscreen(self) -> CaptureResult: ...

    def capture_region(self, x: int, y: int, width: int, height: int) -> CaptureResult: ...


class ScreenGrabber:
    """Captures in virtual-screen coordinates (all monitors, origin may be negative)."""

    def _grab(self, bbox: tuple[int, int, int, int] | None) -> Image.Image:
        return ImageGrab.grab(bbox=bbox, all_screens=True)

    def capture_fullscreen(self) -> CaptureResult:
        timestamp = utcnow()
        try:
            image = self._grab(None)
        except Exception as e:
            log.error("screenshot_failed", mode="fullscreen", error=str(e))
            return CaptureResult(timestamp=timestamp, success=False, error=str(e))
        region = Region(0, 0, image.width, image.height)
        return CaptureResult(image=image, region=region, timestamp=timestamp, success=True)

    def capture_region(self, x: int, y: int, width: int, height: int) -> CaptureResult:
        timestamp = utcnow()
        region = Region(x, y, width, height)
        if width <= 0 or height <= 0:
            return CaptureResult(
                region=region,
                timestamp=timestamp,
                success=False,
                error=f"Invalid region size {width}x{height}",
            )
        try:
            image = self._grab((x, y, x + width, y + height))
        except Exception as e:
            log.error("screenshot_failed", mode="region", x=x, y=y, w=width, h=height, error=str(e))
            return CaptureResult(
                region=region,
                timestamp=timestamp,
                success=False,
                error=f"Capture failed at ({x}, {y}, {width}x{height}): {e}",
            )
        return CaptureResult(image=image, region=region, timestamp=timestamp, success=True)


def save_image(image: Image.Image, path: Path, image_format: str = "png", quality: int = 95) -> int:
    """Save as PNG or JPEG, return file size in bytes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if image_format.lower() in ("jpg", "jpeg"):
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        image.save(str(path), "JPEG", quality=quality)
    else:
        image.save(str(path), "PNG")
    return path.stat().st_size

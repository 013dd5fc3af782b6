"""Scan verification: decode a rendered QR raster and compare it with the encoded content."""

import io
import time
from dataclasses import dataclass

import cv2
import numpy as np
from PIL import Image

from qrforall.logging import audit, get_logger, trace

log = get_logger("verify")


@dataclass
class ScanResult:
    """Result of a single scan attempt."""
    success: bool
    decoded_data: str | None = None
    decode_time_ms: float = 0.0
    decoder: str = "opencv"
    error: str | None = None


def image_from_bytes(data: bytes) -> Image.Image:
    """Open PNG/JPEG export bytes as a PIL image."""
    return Image.open(io.BytesIO(data)).convert("RGB")


@trace
def scan_opencv(image: Image.Image) -> ScanResult:
    """Scan a QR code using OpenCV's built-in QR detector."""
    start = time.perf_counter()
    try:
        arr = np.array(image.convert("RGB"))
        gray = cv2.cvtColor(arr, cv2.COLOR_RGB2GRAY)
        detector = cv2.QRCodeDetector()
        data, points, _ = detector.detectAndDecode(gray)
    except cv2.error as e:
        elapsed = (time.perf_counter() - start) * 1000
        audit("scan.error", logger=log, decoder="opencv", error=str(e), time_ms=round(elapsed, 1))
        return ScanResult(success=False, decode_time_ms=elapsed, error=str(e))

    elapsed = (time.perf_counter() - start) * 1000
    if data:
        audit("scan.verified", logger=log, decoder="opencv", success=True, time_ms=round(elapsed, 1), data=data[:80])
        return ScanResult(success=True, decoded_data=data, decode_time_ms=elapsed)
    audit("scan.verified", logger=log, decoder="opencv", success=False, time_ms=round(elapsed, 1))
    return ScanResult(success=False, decode_time_ms=elapsed, error="No QR code detected")


@trace
def verify(image: Image.Image, expected_data: str | None = None) -> ScanResult:
    """Decode *image*; when *expected_data* is given a mismatch counts as failure."""
    result = scan_opencv(image)
    if result.success and expected_data is not None and result.decoded_data != expected_data:
        result.success = False
        result.error = f"Data mismatch: got '{result.decoded_data}', expected '{expected_data}'"
    return result

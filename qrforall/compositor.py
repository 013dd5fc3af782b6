"""Compositor: fetch a logo and overlay it, centered on a bezel, onto a rendered raster.

The network fetch is the only I/O in the pipeline. It runs under a timeout
and a byte cap, and can be cancelled through a ``threading.Event`` checked
between chunks. Any failure raises ``LogoFetchError``; there is no silent
logo-less fallback.
"""

import io
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import requests
from PIL import Image, ImageDraw, UnidentifiedImageError

from qrforall.errors import LogoFetchError
from qrforall.logging import audit, get_logger, trace

log = get_logger("compositor")

DEFAULT_TIMEOUT = 10.0  # seconds, whole download
MAX_LOGO_BYTES = 5 * 1024 * 1024
CHUNK_SIZE = 64 * 1024
MIN_BEZEL_MARGIN = 4  # px
BEZEL_MARGIN_RATIO = 0.08  # of the logo edge
MAX_DECODED_PIXELS = 4096 * 4096

LogoFetcher = Callable[..., bytes]


# ---------------------------------------------------------------------------
# Fetch & decode
# ---------------------------------------------------------------------------

@trace
def fetch_logo(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    max_bytes: int = MAX_LOGO_BYTES,
    cancel: threading.Event | None = None,
) -> bytes:
    """Download logo bytes from *url*.

    Raises:
        LogoFetchError: network error, timeout, non-2xx status, oversize body,
            or cancellation.
    """
    deadline = time.monotonic() + timeout
    try:
        response = requests.get(url, timeout=timeout, stream=True)
    except requests.RequestException as exc:
        audit("logo.fetch_failed", logger=log, url=url, error=type(exc).__name__)
        raise LogoFetchError(url, f"request failed ({type(exc).__name__})") from exc

    with response:
        if not response.ok:
            audit("logo.fetch_failed", logger=log, url=url, status=response.status_code)
            raise LogoFetchError(url, f"HTTP {response.status_code} {response.reason or ''}".strip())

        buf = bytearray()
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if cancel is not None and cancel.is_set():
                    buf.clear()
                    audit("logo.fetch_cancelled", logger=log, url=url)
                    raise LogoFetchError(url, "cancelled")
                buf.extend(chunk)
                if len(buf) > max_bytes:
                    buf.clear()
                    raise LogoFetchError(url, f"logo exceeds {max_bytes} bytes")
                if time.monotonic() > deadline:
                    buf.clear()
                    audit("logo.fetch_failed", logger=log, url=url, error="deadline")
                    raise LogoFetchError(url, f"timed out after {timeout:g}s")
        except requests.RequestException as exc:
            raise LogoFetchError(url, f"download interrupted ({type(exc).__name__})") from exc

    audit("logo.fetched", logger=log, url=url, bytes=len(buf))
    return bytes(buf)


@trace
def load_logo(data: bytes, url: str = "") -> Image.Image:
    """Decode logo bytes into an RGBA image."""
    try:
        img = Image.open(io.BytesIO(data))
        w, h = img.size
        if w * h > MAX_DECODED_PIXELS:
            raise LogoFetchError(url, f"logo dimensions {w}x{h} too large")
        img.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise LogoFetchError(url, "logo is not a decodable image") from exc
    return img.convert("RGBA")


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LogoPlacement:
    """Where the logo and its bezel land on a ``size`` x ``size`` canvas."""

    edge: int
    offset: int
    bezel_margin: int

    @property
    def box(self) -> tuple[int, int, int, int]:
        return (self.offset, self.offset, self.offset + self.edge, self.offset + self.edge)

    @property
    def bezel_box(self) -> tuple[int, int, int, int]:
        m = self.bezel_margin
        x0, y0, x1, y1 = self.box
        return (x0 - m, y0 - m, x1 + m - 1, y1 + m - 1)


def logo_placement(size: int, logo_scale: float, bezel_margin: int | None = None) -> LogoPlacement:
    """Logo edge is ``floor(size * logo_scale)``, centered."""
    edge = math.floor(size * logo_scale)
    if edge < 1:
        raise ValueError(f"logo edge collapses to {edge}px at size {size}")
    if bezel_margin is None:
        bezel_margin = max(MIN_BEZEL_MARGIN, round(edge * BEZEL_MARGIN_RATIO))
    return LogoPlacement(edge=edge, offset=(size - edge) // 2, bezel_margin=bezel_margin)


def _scale_preserving_aspect(original_size: tuple[int, int], target: int) -> tuple[int, int]:
    """Scale (w, h) so the larger dimension equals *target*, preserving aspect."""
    w, h = original_size
    if w >= h:
        return target, max(1, round(target * h / w))
    return max(1, round(target * w / h)), target


@trace
def fit_logo(logo: Image.Image, edge: int) -> Image.Image:
    """Resize *logo* to fit inside an edge x edge square, transparent padding around it."""
    logo = logo.convert("RGBA")
    new_w, new_h = _scale_preserving_aspect(logo.size, edge)
    resized = logo.resize((new_w, new_h), Image.LANCZOS)

    canvas = Image.new("RGBA", (edge, edge), (0, 0, 0, 0))
    canvas.paste(resized, ((edge - new_w) // 2, (edge - new_h) // 2))
    return canvas


# ---------------------------------------------------------------------------
# Composite
# ---------------------------------------------------------------------------

@trace
def composite_logo(
    qr_image: Image.Image,
    logo: Image.Image,
    logo_scale: float,
    background: tuple[int, int, int],
    bezel_margin: int | None = None,
) -> Image.Image:
    """Paint a background-colored bezel at the center, then the fitted logo over it.

    Returns a new image with the same size and mode as *qr_image*.
    """
    width, height = qr_image.size
    if width != height:
        raise ValueError(f"QR raster must be square (got {width}x{height})")

    placement = logo_placement(width, logo_scale, bezel_margin)
    fitted = fit_logo(logo, placement.edge)

    result = qr_image.convert("RGBA")
    draw = ImageDraw.Draw(result)
    draw.rounded_rectangle(
        placement.bezel_box,
        radius=max(1, placement.bezel_margin),
        fill=(*background, 255),
    )
    result.alpha_composite(fitted, dest=(placement.offset, placement.offset))

    audit("logo.composited", logger=log,
          qr_size=f"{width}x{height}", logo_edge=placement.edge,
          offset=placement.offset, bezel_margin=placement.bezel_margin)
    return result.convert(qr_image.mode)


@trace
def apply_logo(
    qr_image: Image.Image,
    logo_url: str,
    logo_scale: float,
    background: tuple[int, int, int],
    fetcher: LogoFetcher = fetch_logo,
    timeout: float = DEFAULT_TIMEOUT,
    max_bytes: int = MAX_LOGO_BYTES,
    cancel: threading.Event | None = None,
) -> Image.Image:
    """Fetch, decode and composite the logo at *logo_url* onto *qr_image*."""
    data = fetcher(logo_url, timeout=timeout, max_bytes=max_bytes, cancel=cancel)
    if cancel is not None and cancel.is_set():
        raise LogoFetchError(logo_url, "cancelled")
    logo = load_logo(data, url=logo_url)
    return composite_logo(qr_image, logo, logo_scale, background)

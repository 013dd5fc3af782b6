"""Exporter: turn a rendered asset into SVG, PNG or JPEG bytes.

Format selection is a closed enum with one handler per member; the handler
table is checked for completeness at import time, so adding a format without
a handler fails immediately.

SVG exports never carry a logo: logo compositing is raster-only. When a logo
URL accompanies an SVG request the vector asset is returned unchanged with
``logo_applied=False`` and a ``export.logo_skipped`` audit event.
"""

import io
import threading
from dataclasses import dataclass
from enum import Enum

import numpy as np
from PIL import Image, ImageDraw

from qrforall.compositor import DEFAULT_TIMEOUT, MAX_LOGO_BYTES, LogoFetcher, apply_logo, fetch_logo
from qrforall.errors import ValidationError
from qrforall.logging import audit, get_logger, trace
from qrforall.options import parse_hex_color, validate_size
from qrforall.renderer import CORNER_RATIO, RenderedAsset

log = get_logger("exporter")

JPEG_QUALITY = 90


class ExportFormat(Enum):
    SVG = "svg"
    PNG = "png"
    JPEG = "jpeg"

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self]

    @classmethod
    def parse(cls, value: "str | ExportFormat") -> "ExportFormat":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            if key == "jpg":
                key = "jpeg"
            for fmt in cls:
                if fmt.value == key:
                    return fmt
        raise ValidationError(f"Invalid format {value!r}. Use png, jpeg, or svg.")


_CONTENT_TYPES = {
    ExportFormat.SVG: "image/svg+xml",
    ExportFormat.PNG: "image/png",
    ExportFormat.JPEG: "image/jpeg",
}


@dataclass(frozen=True)
class ExportedImage:
    data: bytes
    format: ExportFormat
    size: int
    logo_applied: bool = False

    @property
    def content_type(self) -> str:
        return self.format.content_type

    def __repr__(self) -> str:
        return (f"ExportedImage(format={self.format.value}, size={self.size}, "
                f"bytes={len(self.data)}, logo_applied={self.logo_applied})")


@dataclass(frozen=True)
class LogoRequest:
    """Logo source plus the knobs for fetching it."""

    url: str
    fetcher: LogoFetcher = fetch_logo
    timeout: float = DEFAULT_TIMEOUT
    max_bytes: int = MAX_LOGO_BYTES


# ---------------------------------------------------------------------------
# Rasterization
# ---------------------------------------------------------------------------

def _gradient_image(asset: RenderedAsset) -> Image.Image:
    """Linear gradient over the whole canvas, matching the SVG definition."""
    size = asset.size
    x1, y1, x2, y2 = asset.gradient.direction.value
    dx, dy = x2 - x1, y2 - y1
    # Pixel centers in normalized canvas coordinates
    coords = (np.arange(size, dtype=np.float64) + 0.5) / size
    xs, ys = np.meshgrid(coords, coords)
    t = ((xs - x1) * dx + (ys - y1) * dy) / (dx * dx + dy * dy)
    t = np.clip(t, 0.0, 1.0)[..., None]

    start = np.array(asset.gradient.start_rgb, dtype=np.float64)
    end = np.array(asset.gradient.end_rgb, dtype=np.float64)
    rgb = np.rint(start + (end - start) * t).astype(np.uint8)
    return Image.fromarray(rgb)


@trace
def rasterize(asset: RenderedAsset) -> Image.Image:
    """Draw *asset* into an RGB image of exactly ``asset.size`` pixels square."""
    size = asset.size
    across = asset.modules_across
    q = asset.quiet_zone

    # Square modules: paint at one pixel per module, then upscale without smoothing
    square = np.zeros((across, across), dtype=np.uint8)
    rounded = []
    for cell in asset.cells:
        if cell.rounded:
            rounded.append(cell)
        else:
            square[cell.row + q, cell.col + q] = 255
    mask = Image.fromarray(square).resize((size, size), Image.NEAREST)

    if rounded:
        # Module c covers the pixels whose centers map into [c, c + 1)
        edges = [int(i * size / across + 0.5) for i in range(across + 1)]
        draw = ImageDraw.Draw(mask)
        for cell in rounded:
            x0, x1 = edges[cell.col + q], edges[cell.col + q + 1] - 1
            y0, y1 = edges[cell.row + q], edges[cell.row + q + 1] - 1
            if x1 < x0 or y1 < y0:
                continue
            radius = int((x1 - x0 + 1) * CORNER_RATIO)
            if radius >= 1:
                draw.rounded_rectangle([x0, y0, x1, y1], radius=radius, fill=255)
            else:
                draw.rectangle([x0, y0, x1, y1], fill=255)

    background = Image.new("RGB", (size, size), parse_hex_color(asset.background))
    if asset.gradient is not None:
        fill = _gradient_image(asset)
    else:
        fill = Image.new("RGB", (size, size), parse_hex_color(asset.color))
    return Image.composite(fill, background, mask)


# ---------------------------------------------------------------------------
# Format handlers
# ---------------------------------------------------------------------------

def _export_svg(asset, logo, cancel, logo_scale) -> ExportedImage:
    if logo is not None:
        audit("export.logo_skipped", logger=log, format="svg", reason="raster-only feature")
    return ExportedImage(
        data=asset.to_svg().encode("utf-8"),
        format=ExportFormat.SVG,
        size=asset.size,
        logo_applied=False,
    )


def _render_raster(asset, logo, cancel, logo_scale) -> tuple[Image.Image, bool]:
    image = rasterize(asset)
    if logo is None:
        return image, False
    image = apply_logo(
        image, logo.url, logo_scale, parse_hex_color(asset.background),
        fetcher=logo.fetcher, timeout=logo.timeout, max_bytes=logo.max_bytes, cancel=cancel,
    )
    return image, True


def _encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def _export_png(asset, logo, cancel, logo_scale) -> ExportedImage:
    image, applied = _render_raster(asset, logo, cancel, logo_scale)
    return ExportedImage(_encode_png(image), ExportFormat.PNG, asset.size, applied)


def _export_jpeg(asset, logo, cancel, logo_scale) -> ExportedImage:
    image, applied = _render_raster(asset, logo, cancel, logo_scale)
    if image.mode in ("RGBA", "LA", "P"):
        # JPEG has no alpha: flatten onto the background color
        rgba = image.convert("RGBA")
        flat = Image.new("RGB", rgba.size, parse_hex_color(asset.background))
        flat.paste(rgba, mask=rgba.getchannel("A"))
        image = flat
    buf = io.BytesIO()
    image.convert("RGB").save(buf, format="JPEG", quality=JPEG_QUALITY)
    return ExportedImage(buf.getvalue(), ExportFormat.JPEG, asset.size, applied)


_EXPORTERS = {
    ExportFormat.SVG: _export_svg,
    ExportFormat.PNG: _export_png,
    ExportFormat.JPEG: _export_jpeg,
}

_missing = set(ExportFormat) - set(_EXPORTERS)
if _missing:
    raise RuntimeError(f"no exporter registered for {sorted(f.value for f in _missing)}")


@trace
def export(
    asset: RenderedAsset,
    fmt: ExportFormat | str,
    logo: LogoRequest | None = None,
    logo_scale: float = 0.2,
    cancel: threading.Event | None = None,
) -> ExportedImage:
    """Encode *asset* in *fmt*.

    Args:
        asset: Output of :func:`qrforall.renderer.render`; its ``size`` is the output size.
        fmt: ExportFormat or its name ("svg", "png", "jpeg").
        logo: Optional logo to composite (PNG/JPEG only).
        logo_scale: Logo edge as a fraction of ``asset.size``.
        cancel: Set to abort an in-flight logo fetch.

    Raises:
        ValidationError: unknown format or size outside 128-4096.
        LogoFetchError: the logo could not be fetched or decoded.
    """
    fmt = ExportFormat.parse(fmt)
    validate_size(asset.size)
    result = _EXPORTERS[fmt](asset, logo, cancel, logo_scale)
    audit("qr.exported", logger=log,
          format=fmt.value, size=asset.size, bytes=len(result.data), logo=result.logo_applied)
    return result

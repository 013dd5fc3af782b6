"""Export pipeline: content + options -> encode -> render -> export -> bytes."""

import threading

from qrforall.compositor import DEFAULT_TIMEOUT, MAX_LOGO_BYTES, LogoFetcher, fetch_logo
from qrforall.encoder import encode
from qrforall.exporter import ExportedImage, ExportFormat, LogoRequest, export
from qrforall.logging import audit, get_logger, trace
from qrforall.options import QROptions, validate_content, validate_size
from qrforall.renderer import render

log = get_logger("pipeline")


@trace
def generate(
    content: str,
    options: QROptions,
    fmt: ExportFormat | str,
    size: int | None = None,
    logo_url: str | None = None,
    fetcher: LogoFetcher = fetch_logo,
    timeout: float = DEFAULT_TIMEOUT,
    max_bytes: int = MAX_LOGO_BYTES,
    cancel: threading.Event | None = None,
) -> ExportedImage:
    """Produce an exported QR image.

    All inputs are validated before any encoding work starts.

    Args:
        content: Text or URL to encode.
        options: Style options.
        fmt: "svg", "png" or "jpeg".
        size: Output edge in pixels; overrides ``options.size`` when given.
        logo_url: Logo to composite (raster formats only).
        fetcher: Logo download function, replaceable for tests.
        cancel: Set from another thread to abort an in-flight logo fetch.
    """
    fmt = ExportFormat.parse(fmt)
    validate_content(content)
    if size is not None:
        options = options.with_size(validate_size(size))

    grid = encode(content, options.error_correction)
    asset = render(grid, options)
    logo = None
    if logo_url:
        logo = LogoRequest(url=logo_url, fetcher=fetcher, timeout=timeout, max_bytes=max_bytes)
    result = export(asset, fmt, logo=logo, logo_scale=options.logo_scale, cancel=cancel)

    audit("pipeline.done", logger=log,
          format=fmt.value, size=options.size, version=grid.version,
          mask=grid.mask, logo=result.logo_applied)
    return result

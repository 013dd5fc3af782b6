"""WCAG contrast validation between a QR symbol's dark and light colors."""

from dataclasses import dataclass

from qrforall.errors import ContrastError
from qrforall.logging import audit, get_logger, trace
from qrforall.options import parse_hex_color

log = get_logger("contrast")

# WCAG 2.x AA minimum for normal text, used as the scanability floor.
MIN_CONTRAST_RATIO = 4.5


@dataclass(frozen=True)
class ContrastResult:
    ratio: float
    valid: bool

    def to_dict(self) -> dict:
        return {"valid": self.valid, "ratio": round(self.ratio, 2)}


def _linearize(channel: int) -> float:
    """Convert sRGB channel (0-255) to linear light value."""
    c = channel / 255.0
    return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4


def relative_luminance(rgb: tuple[int, int, int]) -> float:
    """Relative luminance per WCAG 2.0."""
    r, g, b = [_linearize(ch) for ch in rgb]
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def contrast_ratio(color: str, background: str) -> float:
    """WCAG contrast ratio between two ``#RRGGBB`` colors (1.0 - 21.0)."""
    l1 = relative_luminance(parse_hex_color(color, "color"))
    l2 = relative_luminance(parse_hex_color(background, "background"))
    if l1 < l2:
        l1, l2 = l2, l1
    return (l1 + 0.05) / (l2 + 0.05)


@trace
def validate_contrast(color: str, background: str) -> ContrastResult:
    """Return the ratio and the AA verdict for a color pair.

    Raises:
        ValidationError: either color is not ``#RRGGBB``.
    """
    ratio = contrast_ratio(color, background)
    result = ContrastResult(ratio=ratio, valid=ratio >= MIN_CONTRAST_RATIO)
    audit("contrast.checked", logger=log,
          color=color, background=background,
          ratio=f"{ratio:.2f}:1", valid=result.valid)
    return result


def require_contrast(color: str, background: str) -> ContrastResult:
    """Like :func:`validate_contrast` but raise ``ContrastError`` below the threshold."""
    result = validate_contrast(color, background)
    if not result.valid:
        raise ContrastError(result.ratio, MIN_CONTRAST_RATIO)
    return result

"""Style options for a QR symbol: size, colors, gradient, rounding, logo scale and EC level.

Every field is validated on construction. Out-of-range values raise
``ValidationError``; nothing is clamped.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum

import qrcode.constants

from qrforall.errors import ValidationError

MIN_SIZE = 128
MAX_SIZE = 4096
DEFAULT_SIZE = 512

MIN_LOGO_SCALE = 0.10
MAX_LOGO_SCALE = 0.25
DEFAULT_LOGO_SCALE = 0.2

MAX_CONTENT_LENGTH = 2048

HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


class ErrorCorrection(Enum):
    L = qrcode.constants.ERROR_CORRECT_L  # 7%
    M = qrcode.constants.ERROR_CORRECT_M  # 15%
    Q = qrcode.constants.ERROR_CORRECT_Q  # 25%
    H = qrcode.constants.ERROR_CORRECT_H  # 30%

    @classmethod
    def parse(cls, value: "str | ErrorCorrection") -> "ErrorCorrection":
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.upper() in cls.__members__:
            return cls[value.upper()]
        raise ValidationError(f"errorCorrection must be one of L, M, Q, H (got {value!r})")


class GradientDirection(Enum):
    """Gradient axis across the full asset box, as (x1, y1, x2, y2) fractions."""

    HORIZONTAL = (0.0, 0.0, 1.0, 0.0)
    VERTICAL = (0.0, 0.0, 0.0, 1.0)
    DIAGONAL = (0.0, 0.0, 1.0, 1.0)
    ANTI_DIAGONAL = (0.0, 1.0, 1.0, 0.0)

    @classmethod
    def parse(cls, value: "str | GradientDirection") -> "GradientDirection":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper().replace("-", "_")
            if key in cls.__members__:
                return cls[key]
        names = ", ".join(m.name.lower() for m in cls)
        raise ValidationError(f"gradient direction must be one of {names} (got {value!r})")


def parse_hex_color(value: str, name: str = "color") -> tuple[int, int, int]:
    """Parse a ``#RRGGBB`` string into an RGB tuple."""
    if not isinstance(value, str) or not HEX_COLOR_PATTERN.match(value):
        raise ValidationError(f"{name} must be a #RRGGBB hex color (got {value!r})")
    return tuple(int(value[i : i + 2], 16) for i in (1, 3, 5))


def normalize_hex_color(value: str, name: str = "color") -> str:
    """Validate and upper-case a hex color so equal colors serialize identically."""
    parse_hex_color(value, name)
    return value.upper()


def validate_content(content: str) -> str:
    if not isinstance(content, str):
        raise ValidationError("content must be a string")
    if not 1 <= len(content) <= MAX_CONTENT_LENGTH:
        raise ValidationError(
            f"content must be between 1 and {MAX_CONTENT_LENGTH} characters (got {len(content)})"
        )
    return content


def validate_size(size: int) -> int:
    if isinstance(size, bool) or not isinstance(size, int):
        raise ValidationError(f"size must be an integer (got {size!r})")
    if not MIN_SIZE <= size <= MAX_SIZE:
        raise ValidationError(f"size must be between {MIN_SIZE} and {MAX_SIZE} (got {size})")
    return size


@dataclass(frozen=True)
class Gradient:
    start: str
    end: str
    direction: GradientDirection = GradientDirection.DIAGONAL

    def __post_init__(self):
        object.__setattr__(self, "start", normalize_hex_color(self.start, "gradient.from"))
        object.__setattr__(self, "end", normalize_hex_color(self.end, "gradient.to"))
        object.__setattr__(self, "direction", GradientDirection.parse(self.direction))

    @property
    def start_rgb(self) -> tuple[int, int, int]:
        return parse_hex_color(self.start)

    @property
    def end_rgb(self) -> tuple[int, int, int]:
        return parse_hex_color(self.end)

    @classmethod
    def from_dict(cls, data: dict) -> "Gradient":
        if not isinstance(data, dict) or "from" not in data or "to" not in data:
            raise ValidationError("gradient must be an object with 'from' and 'to' colors")
        return cls(
            start=data["from"],
            end=data["to"],
            direction=data.get("direction", GradientDirection.DIAGONAL),
        )

    def to_dict(self) -> dict:
        return {"from": self.start, "to": self.end, "direction": self.direction.name.lower()}


@dataclass(frozen=True)
class QROptions:
    """Validated styling options for one QR symbol.

    Attributes:
        size: Square edge in pixels, 128-4096.
        color: Dark-module color (``#RRGGBB``).
        background: Light-module and quiet-zone color (``#RRGGBB``).
        gradient: Optional linear gradient for dark modules; overrides ``color`` when set.
        rounded: Round the corners of data modules (structural patterns stay square).
        logo_scale: Logo edge as a fraction of ``size``, 0.10-0.25.
        error_correction: L, M, Q or H.
    """

    size: int = DEFAULT_SIZE
    color: str = "#000000"
    background: str = "#FFFFFF"
    gradient: Gradient | None = None
    rounded: bool = False
    logo_scale: float = DEFAULT_LOGO_SCALE
    error_correction: ErrorCorrection = field(default=ErrorCorrection.H)

    def __post_init__(self):
        validate_size(self.size)
        object.__setattr__(self, "color", normalize_hex_color(self.color, "color"))
        object.__setattr__(self, "background", normalize_hex_color(self.background, "background"))
        if self.gradient is not None and not isinstance(self.gradient, Gradient):
            raise ValidationError("gradient must be a Gradient")
        if not isinstance(self.rounded, bool):
            raise ValidationError(f"rounded must be a boolean (got {self.rounded!r})")
        if isinstance(self.logo_scale, bool) or not isinstance(self.logo_scale, (int, float)):
            raise ValidationError(f"logoScale must be a number (got {self.logo_scale!r})")
        if not MIN_LOGO_SCALE <= self.logo_scale <= MAX_LOGO_SCALE:
            raise ValidationError(
                f"logoScale must be between {MIN_LOGO_SCALE} and {MAX_LOGO_SCALE} (got {self.logo_scale})"
            )
        object.__setattr__(self, "error_correction", ErrorCorrection.parse(self.error_correction))

    @property
    def color_rgb(self) -> tuple[int, int, int]:
        return parse_hex_color(self.color)

    @property
    def background_rgb(self) -> tuple[int, int, int]:
        return parse_hex_color(self.background)

    def with_size(self, size: int) -> "QROptions":
        return replace(self, size=size)

    @classmethod
    def from_dict(cls, data: dict | None) -> "QROptions":
        """Build options from the wire form (camelCase keys); missing keys take defaults."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError("options must be an object")
        known = {"size", "color", "background", "gradient", "rounded", "logoScale", "errorCorrection"}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(f"unknown option(s): {', '.join(sorted(unknown))}")

        kwargs = {}
        if "size" in data:
            kwargs["size"] = data["size"]
        if "color" in data:
            kwargs["color"] = data["color"]
        if "background" in data:
            kwargs["background"] = data["background"]
        if data.get("gradient") is not None:
            kwargs["gradient"] = Gradient.from_dict(data["gradient"])
        if "rounded" in data:
            kwargs["rounded"] = data["rounded"]
        if "logoScale" in data:
            kwargs["logo_scale"] = data["logoScale"]
        if "errorCorrection" in data:
            kwargs["error_correction"] = data["errorCorrection"]
        return cls(**kwargs)

    def to_dict(self) -> dict:
        data = {
            "size": self.size,
            "color": self.color,
            "background": self.background,
            "rounded": self.rounded,
            "logoScale": self.logo_scale,
            "errorCorrection": self.error_correction.name,
        }
        if self.gradient is not None:
            data["gradient"] = self.gradient.to_dict()
        return data

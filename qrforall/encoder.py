"""Encoder: turn content + error-correction level into a typed module grid.

Encoding (mode segmentation, codeword packing, Reed-Solomon, version fit and
penalty-based mask choice) is delegated to ``qrcode``. On top of the raw
matrix each module is tagged with the structural region it belongs to, so
styling can reshape data modules without touching finder, alignment,
timing, format or version modules.
"""

from dataclasses import dataclass
from enum import Enum

import qrcode
import qrcode.exceptions
import qrcode.util
from PIL import Image, ImageDraw

from qrforall.errors import EncodingCapacityError
from qrforall.logging import audit, get_logger, trace
from qrforall.options import ErrorCorrection, validate_content

log = get_logger("encoder")

MAX_VERSION = 40


class Region(Enum):
    FINDER = "finder"          # 7x7 finder plus its light separator
    ALIGNMENT = "alignment"
    TIMING = "timing"
    FORMAT = "format"          # format info and the fixed dark module
    VERSION = "version"        # version info blocks, v7+
    DATA = "data"              # data and EC codewords

    @property
    def structural(self) -> bool:
        return self is not Region.DATA


@dataclass(frozen=True)
class ModuleGrid:
    """Immutable QR module matrix with per-module region tags."""

    version: int
    error_correction: ErrorCorrection
    mask: int
    modules: tuple[tuple[bool, ...], ...]
    regions: tuple[tuple[Region, ...], ...]

    def __post_init__(self):
        n = self.version * 4 + 17
        if len(self.modules) != n or any(len(row) != n for row in self.modules):
            raise ValueError(f"module matrix must be {n}x{n} for version {self.version}")
        if len(self.regions) != n or any(len(row) != n for row in self.regions):
            raise ValueError(f"region matrix must be {n}x{n} for version {self.version}")

    @property
    def size(self) -> int:
        return len(self.modules)

    def is_dark(self, row: int, col: int) -> bool:
        return self.modules[row][col]

    def region_at(self, row: int, col: int) -> Region:
        return self.regions[row][col]

    def positions(self, region: Region) -> list[tuple[int, int]]:
        return [
            (r, c)
            for r, row in enumerate(self.regions)
            for c, reg in enumerate(row)
            if reg is region
        ]

    def region_counts(self) -> dict[Region, int]:
        counts = {region: 0 for region in Region}
        for row in self.regions:
            for reg in row:
                counts[reg] += 1
        return counts


def _alignment_centers(version: int) -> list[tuple[int, int]]:
    """Alignment pattern centers, skipping the three that would overlap finders."""
    coords = qrcode.util.pattern_position(version)
    if not coords:
        return []
    first, last = coords[0], coords[-1]
    corners = {(first, first), (first, last), (last, first)}
    return [(r, c) for r in coords for c in coords if (r, c) not in corners]


@trace
def classify_regions(version: int) -> tuple[tuple[Region, ...], ...]:
    """Tag every module of a *version* symbol with its structural region."""
    n = version * 4 + 17
    grid = [[Region.DATA] * n for _ in range(n)]

    # Finder patterns plus separators (8x8 at each of the three corners)
    for r0, c0 in [(0, 0), (0, n - 8), (n - 8, 0)]:
        for r in range(r0, r0 + 8):
            for c in range(c0, c0 + 8):
                grid[r][c] = Region.FINDER

    # Alignment patterns are placed before timing and win where they cross it
    for ar, ac in _alignment_centers(version):
        for r in range(ar - 2, ar + 3):
            for c in range(ac - 2, ac + 3):
                grid[r][c] = Region.ALIGNMENT

    # Timing patterns (row 6 and column 6)
    for i in range(8, n - 8):
        if grid[6][i] is Region.DATA:
            grid[6][i] = Region.TIMING
        if grid[i][6] is Region.DATA:
            grid[i][6] = Region.TIMING

    # Format information around the finders, plus the fixed dark module
    for i in range(9):
        if i != 6:
            grid[8][i] = Region.FORMAT
            grid[i][8] = Region.FORMAT
    for i in range(8):
        grid[8][n - 8 + i] = Region.FORMAT
    for i in range(7):
        grid[n - 7 + i][8] = Region.FORMAT
    grid[n - 8][8] = Region.FORMAT

    # Version information (two 6x3 blocks) from version 7 up
    if version >= 7:
        for i in range(6):
            for j in range(3):
                grid[i][n - 11 + j] = Region.VERSION
                grid[n - 11 + j][i] = Region.VERSION

    return tuple(tuple(row) for row in grid)


def _needed_bits(qr: qrcode.QRCode) -> int:
    """Bits the segmented data needs with version-40 length fields."""
    buffer = qrcode.util.BitBuffer()
    for data in qr.data_list:
        buffer.put(data.mode, 4)
        buffer.put(len(data), qrcode.util.length_in_bits(data.mode, MAX_VERSION))
        data.write(buffer)
    return len(buffer)


@trace
def encode(content: str, error_correction: ErrorCorrection | str = ErrorCorrection.H) -> ModuleGrid:
    """Encode *content* at the smallest QR version that fits.

    Args:
        content: Text or URL, 1-2048 characters.
        error_correction: L/M/Q/H.

    Returns:
        ModuleGrid with the chosen version and mask.

    Raises:
        ValidationError: content empty or longer than 2048 characters.
        EncodingCapacityError: content does not fit in version 40 at this level.
    """
    validate_content(content)
    ecc = ErrorCorrection.parse(error_correction)

    qr = qrcode.QRCode(error_correction=ecc.value, box_size=1, border=0)
    qr.add_data(content)
    if _needed_bits(qr) > qrcode.util.BIT_LIMIT_TABLE[ecc.value][MAX_VERSION]:
        audit("encode.overflow", logger=log, length=len(content), ecc=ecc.name)
        raise EncodingCapacityError(len(content), ecc.name)
    try:
        qr.best_fit()
        mask = qr.best_mask_pattern()
        qr.makeImpl(False, mask)
    except qrcode.exceptions.DataOverflowError as exc:
        audit("encode.overflow", logger=log, length=len(content), ecc=ecc.name)
        raise EncodingCapacityError(len(content), ecc.name) from exc

    version = qr.version
    grid = ModuleGrid(
        version=version,
        error_correction=ecc,
        mask=mask,
        modules=tuple(tuple(bool(m) for m in row) for row in qr.modules),
        regions=classify_regions(version),
    )
    audit("qr.encoded", logger=log,
          data=content[:80], version=version, size=f"{grid.size}x{grid.size}",
          ecc=ecc.name, mask=mask)
    return grid


# Region map colors: (dark, light)
_REGION_COLORS = {
    Region.FINDER: ((220, 50, 50), (255, 180, 180)),
    Region.ALIGNMENT: ((50, 50, 220), (180, 180, 255)),
    Region.TIMING: ((50, 180, 50), (180, 255, 180)),
    Region.FORMAT: ((220, 200, 50), (255, 240, 180)),
    Region.VERSION: ((160, 60, 200), (225, 190, 245)),
    Region.DATA: ((0, 0, 0), (255, 255, 255)),
}


@trace
def render_region_map(grid: ModuleGrid, scale: int = 20) -> Image.Image:
    """Render a color-coded bitmap showing each module's region.

    Colors:
        - Red: Finder patterns and separators
        - Blue: Alignment patterns
        - Green: Timing patterns
        - Yellow: Format information
        - Purple: Version information
        - Black/White: Data modules
    """
    n = grid.size
    img = Image.new("RGB", (n * scale, n * scale), (255, 255, 255))
    draw = ImageDraw.Draw(img)

    for r in range(n):
        for c in range(n):
            x0, y0 = c * scale, r * scale
            x1, y1 = x0 + scale - 1, y0 + scale - 1
            dark, light = _REGION_COLORS[grid.regions[r][c]]
            draw.rectangle([x0, y0, x1, y1], fill=dark if grid.modules[r][c] else light)
            # Grid lines
            draw.rectangle([x0, y0, x1, y1], outline=(230, 230, 230))

    return img

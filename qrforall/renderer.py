"""Renderer: style a module grid into a resolution-independent vector asset.

The asset is a plain description (canvas size, quiet zone, fill, the dark
cells and whether each is rounded) that serializes to SVG here and is
rasterized by the exporter. Only DATA modules are ever rounded; structural
patterns keep exact square edges so scanners can lock onto them.
"""

from dataclasses import dataclass

from qrforall.encoder import ModuleGrid, Region
from qrforall.logging import audit, get_logger, trace
from qrforall.options import Gradient, QROptions

log = get_logger("renderer")

QUIET_ZONE = 4  # modules, always present
CORNER_RATIO = 0.3  # rounded-module corner radius as a fraction of module edge
GRADIENT_ID = "qrGradient"


@dataclass(frozen=True)
class Cell:
    """One dark module, in grid coordinates (quiet zone excluded)."""

    row: int
    col: int
    region: Region
    rounded: bool


@dataclass(frozen=True)
class RenderedAsset:
    """Styled vector description of a QR symbol.

    Coordinates are in pixels of a ``size`` x ``size`` canvas; each module is
    ``size / (grid.size + 2 * quiet_zone)`` wide.
    """

    grid: ModuleGrid
    size: int
    color: str
    background: str
    gradient: Gradient | None
    rounded: bool
    cells: tuple[Cell, ...]
    quiet_zone: int = QUIET_ZONE

    @property
    def modules_across(self) -> int:
        return self.grid.size + 2 * self.quiet_zone

    @property
    def module_px(self) -> float:
        return self.size / self.modules_across

    @property
    def fill(self) -> str:
        """SVG paint for dark modules: the solid color or the gradient reference."""
        return f"url(#{GRADIENT_ID})" if self.gradient is not None else self.color

    def to_svg(self) -> str:
        return to_svg(self)


@trace
def render(grid: ModuleGrid, options: QROptions) -> RenderedAsset:
    """Apply color, gradient and rounding policy to *grid*."""
    cells = []
    for r, row in enumerate(grid.modules):
        for c, dark in enumerate(row):
            if not dark:
                continue
            region = grid.regions[r][c]
            cells.append(Cell(r, c, region, rounded=options.rounded and region is Region.DATA))

    asset = RenderedAsset(
        grid=grid,
        size=options.size,
        color=options.color,
        background=options.background,
        gradient=options.gradient,
        rounded=options.rounded,
        cells=tuple(cells),
    )
    audit("qr.rendered", logger=log,
          version=grid.version, size=options.size, dark_modules=len(cells),
          gradient=options.gradient is not None, rounded=options.rounded)
    return asset


def _num(value: float) -> str:
    """Format a coordinate compactly and deterministically."""
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def _gradient_def(gradient: Gradient, size: int) -> str:
    x1, y1, x2, y2 = gradient.direction.value
    return (
        f'<defs><linearGradient id="{GRADIENT_ID}" gradientUnits="userSpaceOnUse" '
        f'x1="{_num(x1 * size)}" y1="{_num(y1 * size)}" x2="{_num(x2 * size)}" y2="{_num(y2 * size)}">'
        f'<stop offset="0%" stop-color="{gradient.start}"/>'
        f'<stop offset="100%" stop-color="{gradient.end}"/>'
        f"</linearGradient></defs>"
    )


@trace
def to_svg(asset: RenderedAsset) -> str:
    """Serialize *asset* as a standalone SVG document.

    Square modules share one ``<path>``; rounded data modules are individual
    ``<rect rx>`` elements. Both reference the same fill.
    """
    size = asset.size
    unit = asset.module_px
    q = asset.quiet_zone

    square = []
    rounded = []
    for cell in asset.cells:
        x = (cell.col + q) * unit
        y = (cell.row + q) * unit
        if cell.rounded:
            rounded.append((x, y))
        else:
            square.append(f"M{_num(x)},{_num(y)}h{_num(unit)}v{_num(unit)}h{_num(-unit)}Z")

    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 {size} {size}" width="{size}" height="{size}">',
    ]
    if asset.gradient is not None:
        parts.append(_gradient_def(asset.gradient, size))
    parts.append(f'<rect width="{size}" height="{size}" fill="{asset.background}"/>')
    if square:
        parts.append(f'<path fill="{asset.fill}" shape-rendering="crispEdges" d="{"".join(square)}"/>')
    if rounded:
        w = _num(unit)
        radius = _num(unit * CORNER_RATIO)
        for x, y in rounded:
            parts.append(
                f'<rect x="{_num(x)}" y="{_num(y)}" width="{w}" height="{w}" '
                f'rx="{radius}" ry="{radius}" fill="{asset.fill}"/>'
            )
    parts.append("</svg>")
    return "\n".join(parts) + "\n"

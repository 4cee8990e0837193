"""Bucket fill for doodle rasters.

Stack-based scanline fill with a color tolerance, optional diagonal
connectivity, and an edge-seal post-pass that absorbs the anti-aliased fringe
left between the filled region and stroke edges.
"""
from dataclasses import dataclass

from daily_doodle.raster import RGB, RGBA, WHITE, RasterImage

MAX_TOLERANCE = 160
DEFAULT_TOLERANCE = 35

# Edge seal: passes over the interior and the alpha below which a pixel counts
# as "nearly transparent" (~90% opaque).
SEAL_PASSES = 2
SEAL_ALPHA_CUTOFF = 230

_DIAGONALS = ((-1, -1), (1, -1), (-1, 1), (1, 1))


@dataclass(frozen=True)
class FillRequest:
    x: int
    y: int
    color: RGB
    tolerance: int = DEFAULT_TOLERANCE
    use_diagonals: bool = True
    erase: bool = False

    @property
    def fill_rgba(self) -> RGBA:
        """Opaque fill color; erasing paints white."""
        r, g, b = WHITE[:3] if self.erase else self.color
        return r, g, b, 255

    @property
    def clamped_tolerance(self) -> int:
        return max(0, min(MAX_TOLERANCE, int(self.tolerance)))


def dist_sq(a: RGBA, b: RGBA) -> int:
    """Squared distance over the r, g, b and alpha channels."""
    return sum((p - q) * (p - q) for p, q in zip(a, b))


def flood_fill(image: RasterImage, request: FillRequest) -> bool:
    """Fill the tolerant region around the seed in place.

    Returns False (and leaves the image untouched) when the seed pixel is
    already within tolerance of the fill color. Raises ValueError for a seed
    outside the image.
    """
    x0, y0 = request.x, request.y
    if not image.in_bounds(x0, y0):
        raise ValueError(
            f"Seed ({x0}, {y0}) outside {image.width}x{image.height} raster"
        )

    w, h = image.width, image.height
    data = image.data
    fill = request.fill_rgba
    fill_bytes = bytes(fill)
    fr, fg, fb, fa = fill
    tol = request.clamped_tolerance
    tol_sq = tol * tol

    # Captured once; never re-sampled as pixels change.
    target = image.pixel(x0, y0)
    tr, tg, tb, ta = target

    if target == fill or dist_sq(target, fill) <= tol_sq:
        return False

    def qualifies(i: int) -> bool:
        if data[i] == fr and data[i + 1] == fg and data[i + 2] == fb and data[i + 3] == fa:
            return False
        dr = data[i] - tr
        dg = data[i + 1] - tg
        db = data[i + 2] - tb
        da = data[i + 3] - ta
        return dr * dr + dg * dg + db * db + da * da <= tol_sq

    stride = w * 4
    stack = [(x0, y0)]

    while stack:
        x, y = stack.pop()
        row = y * w

        while x >= 0 and qualifies((row + x) * 4):
            x -= 1
        x += 1

        span_up = False
        span_down = False

        while x < w and qualifies((row + x) * 4):
            i = (row + x) * 4
            data[i:i + 4] = fill_bytes

            if y > 0:
                ok = qualifies(i - stride)
                if not span_up and ok:
                    stack.append((x, y - 1))
                    span_up = True
                elif span_up and not ok:
                    span_up = False

            if y < h - 1:
                ok = qualifies(i + stride)
                if not span_down and ok:
                    stack.append((x, y + 1))
                    span_down = True
                elif span_down and not ok:
                    span_down = False

            if request.use_diagonals:
                for dx, dy in _DIAGONALS:
                    nx, ny = x + dx, y + dy
                    if 0 <= nx < w and 0 <= ny < h and qualifies((ny * w + nx) * 4):
                        stack.append((nx, ny))

            x += 1

    _seal_edges(image, fill_bytes, target, tol_sq)
    return True


def _seal_edges(image: RasterImage, fill_bytes: bytes, target: RGBA, tol_sq: int) -> None:
    """Absorb fringe pixels bordering the fill color.

    Each pass reads neighbours from a snapshot taken at the start of the pass,
    so a pixel sealed in pass one can only pull in its own neighbours in pass
    two. The outermost one-pixel border is never touched.
    """
    w, h = image.width, image.height
    data = image.data
    stride = w * 4
    near_sq = 2 * tol_sq

    for _ in range(SEAL_PASSES):
        prev = bytes(data)

        def was_fill(i: int) -> bool:
            return prev[i:i + 4] == fill_bytes

        for y in range(1, h - 1):
            for x in range(1, w - 1):
                i = (y * w + x) * 4
                if was_fill(i):
                    continue
                if not (
                    was_fill(i - 4)
                    or was_fill(i + 4)
                    or was_fill(i - stride)
                    or was_fill(i + stride)
                ):
                    continue
                pixel = (prev[i], prev[i + 1], prev[i + 2], prev[i + 3])
                if dist_sq(pixel, target) <= near_sq or pixel[3] < SEAL_ALPHA_CUTOFF:
                    data[i:i + 4] = fill_bytes

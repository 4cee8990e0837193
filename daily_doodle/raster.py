"""RGBA raster buffers and color helpers."""
import io

from PIL import Image

RGB = tuple[int, int, int]
RGBA = tuple[int, int, int, int]

WHITE: RGBA = (255, 255, 255, 255)


def hex_to_rgb(value: str) -> RGB:
    """Convert "#rgb" or "#rrggbb" to an (r, g, b) tuple."""
    h = str(value or "").strip().lstrip("#")
    if len(h) == 3:
        h = "".join(c + c for c in h)
    if len(h) != 6:
        raise ValueError(f"Invalid hex color: {value!r}")
    try:
        num = int(h, 16)
    except ValueError:
        raise ValueError(f"Invalid hex color: {value!r}") from None
    return (num >> 16) & 255, (num >> 8) & 255, num & 255


def rgb_to_hex(rgb: RGB) -> str:
    r, g, b = rgb
    return f"#{r:02x}{g:02x}{b:02x}"


class RasterImage:
    """A width x height grid of RGBA pixels stored row-major in a bytearray.

    Pixel (x, y) occupies data[(y * width + x) * 4 : ... + 4].
    """

    def __init__(self, width: int, height: int, data: bytearray):
        if width <= 0 or height <= 0:
            raise ValueError(f"Raster dimensions must be positive, got {width}x{height}")
        if len(data) != width * height * 4:
            raise ValueError(
                f"Raster buffer has {len(data)} bytes, expected {width * height * 4}"
            )
        self.width = width
        self.height = height
        self.data = data if isinstance(data, bytearray) else bytearray(data)

    @classmethod
    def blank(cls, width: int, height: int, color: RGBA = WHITE) -> "RasterImage":
        return cls(width, height, bytearray(bytes(color) * (width * height)))

    @classmethod
    def from_png(cls, data: bytes) -> "RasterImage":
        """Decode image bytes (any format Pillow reads) into an RGBA raster."""
        try:
            with Image.open(io.BytesIO(data)) as img:
                rgba = img.convert("RGBA")
        except (OSError, Image.DecompressionBombError) as e:
            raise ValueError(f"Could not decode image: {e}") from e
        return cls(rgba.width, rgba.height, bytearray(rgba.tobytes()))

    def to_png(self) -> bytes:
        img = Image.frombytes("RGBA", (self.width, self.height), bytes(self.data))
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()

    def copy(self) -> "RasterImage":
        return RasterImage(self.width, self.height, bytearray(self.data))

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def index(self, x: int, y: int) -> int:
        return (y * self.width + x) * 4

    def pixel(self, x: int, y: int) -> RGBA:
        i = self.index(x, y)
        d = self.data
        return d[i], d[i + 1], d[i + 2], d[i + 3]

    def set_pixel(self, x: int, y: int, rgba: RGBA) -> None:
        i = self.index(x, y)
        self.data[i:i + 4] = bytes(rgba)

    def __eq__(self, other):
        if not isinstance(other, RasterImage):
            return NotImplemented
        return (
            self.width == other.width
            and self.height == other.height
            and self.data == other.data
        )

    def __repr__(self):
        return f"RasterImage({self.width}x{self.height})"

"""
Tile grid geometry.

Maps a zoom level to the number of tile columns/rows and the tile size, and
gives each tile coordinate its destination rectangle in the assembled buffer.
"""
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from .constants import MAX_PANORAMA_PIXELS, MAX_ZOOM, MIN_ZOOM, TILE_SIZE
from .errors import InvalidGrid, InvalidZoom


@dataclass(frozen=True)
class TileCoordinate:
    """Tile position in the grid (column, row)."""
    x: int
    y: int

    def as_tuple(self) -> Tuple[int, int]:
        return (self.x, self.y)


@dataclass(frozen=True)
class GridSpec:
    cols: int
    rows: int
    tile_size: int = TILE_SIZE
    zoom: Optional[int] = None

    @property
    def width(self) -> int:
        return self.cols * self.tile_size

    @property
    def height(self) -> int:
        return self.rows * self.tile_size

    @property
    def tile_count(self) -> int:
        return self.cols * self.rows

    def validate(self) -> "GridSpec":
        """
        Check the grid describes a full equirectangular panorama.

        Raises:
            InvalidGrid: non-positive dimensions, width != 2 * height, or a
                buffer larger than MAX_PANORAMA_PIXELS.
        """
        for name in ("cols", "rows", "tile_size"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise InvalidGrid(f"{name} must be a positive integer, got {value!r}")

        if self.width != 2 * self.height:
            raise InvalidGrid(f"grid {self.width}x{self.height} is not 2:1 equirectangular")

        if self.width * self.height > MAX_PANORAMA_PIXELS:
            raise InvalidGrid(f"grid {self.width}x{self.height} exceeds {MAX_PANORAMA_PIXELS} pixels")

        return self

    def contains(self, coord: TileCoordinate) -> bool:
        return 0 <= coord.x < self.cols and 0 <= coord.y < self.rows

    def coordinates(self) -> Iterator[TileCoordinate]:
        """Yield every tile coordinate, row by row."""
        for y in range(self.rows):
            for x in range(self.cols):
                yield TileCoordinate(x, y)

    def tile_rect(self, coord: TileCoordinate) -> Tuple[int, int, int, int]:
        """Destination box (left, top, right, bottom) of a tile in the panorama."""
        if not self.contains(coord):
            raise InvalidGrid(f"tile ({coord.x},{coord.y}) outside {self.cols}x{self.rows} grid")
        left = coord.x * self.tile_size
        top = coord.y * self.tile_size
        return (left, top, left + self.tile_size, top + self.tile_size)


def resolve(zoom: int) -> GridSpec:
    """
    Resolve a zoom level to its tile grid.

    Zoom z has 2**z columns and 2**(z-1) rows of 512px tiles,
    so zoom 1 is 1024x512 and zoom 7 is 65536x32768.

    Raises:
        InvalidZoom: zoom is not an integer in 1..7.
    """
    if not isinstance(zoom, int) or isinstance(zoom, bool) or not MIN_ZOOM <= zoom <= MAX_ZOOM:
        raise InvalidZoom(zoom, MIN_ZOOM, MAX_ZOOM)

    return GridSpec(cols=2 ** zoom, rows=2 ** (zoom - 1), tile_size=TILE_SIZE, zoom=zoom).validate()

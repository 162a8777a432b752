"""
Panorama assembly and border cropping.

Tiles returned by the fetcher are pasted into one pre-allocated buffer at
their grid offsets. Pixels no tile wrote keep the black sentinel, so a
partially fetched panorama is still fully defined.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple, Union

import numpy as np
from PIL import Image

from .constants import BLACK_THRESHOLD, MISSING_COLOR
from .errors import InvalidGrid, PanoramaUnavailable
from .grid import GridSpec, TileCoordinate
from .my_utils import black_mask


@dataclass
class Panorama:
    """Assembled equirectangular panorama and the tiles it is missing."""
    pixels: np.ndarray
    grid: GridSpec
    missing: Tuple[TileCoordinate, ...] = field(default_factory=tuple)
    pano_id: Optional[str] = None

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def missing_count(self) -> int:
        return len(self.missing)

    @property
    def complete(self) -> bool:
        return not self.missing

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels)


def as_pixels(image: Union[Panorama, np.ndarray, Image.Image]) -> np.ndarray:
    """Return the pixel array behind a Panorama, PIL image or ndarray (HxW or HxWxC)."""
    arr = image.pixels if isinstance(image, Panorama) else np.asarray(image)
    if arr.ndim == 2:
        arr = arr[..., None]
    return arr


def assemble(grid: GridSpec, tile_results: Iterable, pano_id: Optional[str] = None) -> Panorama:
    """
    Stitch fetched tiles into a single panorama buffer.

    Each succeeded tile is written to its own rectangle at
    (x * tile_size, y * tile_size). Truncated edge tiles only fill the extent
    they actually have; oversized tiles are clipped to their rectangle.

    Args:
        grid (GridSpec): Grid the tiles were fetched for.
        tile_results (Iterable[TileResult]): Results from `fetch_all`.
        pano_id (str | None): Identifier recorded on the result.

    Returns:
        Panorama: Read-only buffer plus the coordinates of missing tiles.

    Raises:
        InvalidGrid: a result lies outside the grid or is reported twice.
        PanoramaUnavailable: every tile is missing.
    """
    grid.validate()
    pixels = np.zeros((grid.height, grid.width, 3), dtype=np.uint8)
    pixels[...] = MISSING_COLOR

    seen = set()
    written = set()
    for result in tile_results:
        coord = result.coord
        if coord in seen:
            raise InvalidGrid(f"tile ({coord.x},{coord.y}) reported twice")
        seen.add(coord)

        left, top, right, bottom = grid.tile_rect(coord)
        if result.image is None:
            continue

        tile = np.asarray(result.image.convert("RGB"))
        h = min(tile.shape[0], bottom - top)
        w = min(tile.shape[1], right - left)
        pixels[top:top + h, left:left + w] = tile[:h, :w]
        written.add(coord)

    missing = tuple(coord for coord in grid.coordinates() if coord not in written)
    if len(missing) == grid.tile_count:
        raise PanoramaUnavailable(pano_id, grid.tile_count)

    pixels.flags.writeable = False
    return Panorama(pixels=pixels, grid=grid, missing=missing, pano_id=pano_id)


def crop_black_borders(
    image: Union[Panorama, np.ndarray, Image.Image],
    threshold: int = BLACK_THRESHOLD
) -> Union[np.ndarray, Image.Image]:
    """
    Trim fully black rows and columns from every edge.

    Missing tiles and padding are black, but so is a genuinely dark sky, so
    this can over-trim real content and will not remove interior black areas.

    Args:
        image: Panorama, ndarray or PIL image.
        threshold (int): Max channel value considered black. Defaults to 4.

    Returns:
        PIL.Image.Image for PIL input, otherwise a new ndarray. An all-black
        image is returned uncropped.
    """
    arr = as_pixels(image)
    height, width = arr.shape[:2]
    content = ~black_mask(arr, threshold)

    rows = np.flatnonzero(content.any(axis=1))
    cols = np.flatnonzero(content.any(axis=0))

    if rows.size == 0:
        box = (0, 0, width, height)
    else:
        box = (int(cols[0]), int(rows[0]), int(cols[-1]) + 1, int(rows[-1]) + 1)

    if isinstance(image, Image.Image):
        return image.crop(box)

    left, top, right, bottom = box
    cropped = np.array(arr[top:bottom, left:right])
    if not isinstance(image, Panorama) and np.ndim(image) == 2:
        cropped = cropped[..., 0]
    return cropped

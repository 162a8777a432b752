"""
Exception types raised by panoview.

Tile-level errors (`TransportError`, `DecodeError`) are recovered inside the
tile fetcher by retrying and then marking the tile as missing. Only
configuration errors and the total loss of a panorama reach the caller.
"""


class PanoViewError(Exception):
    """Base exception for panoview errors."""
    pass


class InvalidZoom(PanoViewError, ValueError):
    """Zoom level outside the supported range."""

    def __init__(self, zoom, min_zoom: int, max_zoom: int):
        self.zoom = zoom
        super().__init__(f"Zoom level must be an integer between {min_zoom} and {max_zoom}, got {zoom!r}")


class InvalidGrid(PanoViewError, ValueError):
    """Tile grid that cannot describe an equirectangular panorama."""
    pass


class InvalidViewConfig(PanoViewError, ValueError):
    """View parameter out of range."""
    pass


class TileError(PanoViewError):
    """A single tile could not be obtained."""

    def __init__(self, message: str, x: int = None, y: int = None):
        self.x = x
        self.y = y
        if x is not None and y is not None:
            message = f"tile ({x},{y}): {message}"
        super().__init__(message)


class TransportError(TileError):
    """Network failure, non-success status or attempt timeout."""
    pass


class DecodeError(TileError):
    """Payload received but it is not a valid image."""
    pass


class PanoramaUnavailable(PanoViewError):
    """Every tile of the panorama is missing."""

    def __init__(self, pano_id, tile_count: int):
        self.pano_id = pano_id
        self.tile_count = tile_count
        super().__init__(f"Panorama `{pano_id}` unavailable: all {tile_count} tiles missing")


class EmptySourceBuffer(PanoViewError, ValueError):
    """Source panorama has zero area."""
    pass

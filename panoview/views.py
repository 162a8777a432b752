"""
Rectilinear view extraction from equirectangular panoramas.

Each output pixel is traced back through a perspective camera into the
sphere, converted to longitude/latitude and sampled from the panorama with
bilinear interpolation. Longitude wraps around the 0/width seam; latitude is
clamped at the poles.

Heading 0 faces the horizontal centre of the panorama, so the seam lies
directly behind the viewer at heading 180. Positive heading turns right and
positive pitch looks up.

Example usage::

    from panoview import ViewConfig, Direction, extract_view, extract_all

    front = extract_view(panorama, ViewConfig(heading=0, fov=90, width=800, height=600))
    sides = extract_all(panorama, [ViewConfig.from_direction(d) for d in Direction])
"""
import math
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from numbers import Real
from typing import List, Optional, Sequence, Union

import numpy as np
from PIL import Image

from .assembler import Panorama, as_pixels
from .constants import DEFAULT_FOV, DEFAULT_VIEW_SIZE, MAX_FOV
from .errors import EmptySourceBuffer, InvalidViewConfig


class Direction(Enum):
    """Cardinal view directions and their headings in degrees."""
    FRONT = 0
    RIGHT = 90
    BACK = 180
    LEFT = 270

    @property
    def heading(self) -> int:
        return self.value

    @property
    def label(self) -> str:
        return self.name.lower()


def _check_angle(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
        raise InvalidViewConfig(f"{name} must be a finite number, got {value!r}")
    return float(value)


@dataclass(frozen=True)
class ViewConfig:
    """
    Immutable view parameters.

    heading is wrapped into [0, 360). pitch must lie in [-90, 90], fov in
    (0, 170] and the output size must be positive integers; anything else
    raises InvalidViewConfig.
    """
    heading: float = 0.0
    pitch: float = 0.0
    fov: float = DEFAULT_FOV
    width: int = DEFAULT_VIEW_SIZE[0]
    height: int = DEFAULT_VIEW_SIZE[1]

    def __post_init__(self):
        heading = _check_angle("heading", self.heading) % 360.0
        # h and h + 360 must normalise to the same value
        heading = round(heading, 9) % 360.0
        pitch = _check_angle("pitch", self.pitch)
        fov = _check_angle("fov", self.fov)

        if not -90.0 <= pitch <= 90.0:
            raise InvalidViewConfig(f"pitch must be within [-90, 90], got {pitch}")
        if not 0.0 < fov <= MAX_FOV:
            raise InvalidViewConfig(f"fov must be within (0, {MAX_FOV:g}], got {fov}")
        for name in ("width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value <= 0:
                raise InvalidViewConfig(f"{name} must be a positive integer, got {value!r}")
            object.__setattr__(self, name, int(value))

        object.__setattr__(self, "heading", heading)
        object.__setattr__(self, "pitch", pitch)
        object.__setattr__(self, "fov", fov)

    @classmethod
    def from_direction(cls, direction: Direction, **kwargs) -> "ViewConfig":
        return cls(heading=direction.heading, **kwargs)

    def with_heading(self, heading: float) -> "ViewConfig":
        return replace(self, heading=heading)

    def with_pitch(self, pitch: float) -> "ViewConfig":
        return replace(self, pitch=pitch)

    def with_fov(self, fov: float) -> "ViewConfig":
        return replace(self, fov=fov)

    def with_size(self, width: int, height: int) -> "ViewConfig":
        return replace(self, width=width, height=height)


def view_rays(config: ViewConfig) -> np.ndarray:
    """
    World-space ray directions for every output pixel.

    Returns:
        np.ndarray: (height, width, 3) array of (x, y, z) with x right,
        y up and z forward at heading 0, pitch 0. Rays are not normalised.
    """
    half = math.tan(math.radians(config.fov) / 2)
    aspect = config.height / config.width

    ndc_x = (2 * (np.arange(config.width) + 0.5) / config.width - 1) * half
    ndc_y = (1 - 2 * (np.arange(config.height) + 0.5) / config.height) * half * aspect
    x, y = np.meshgrid(ndc_x, ndc_y)
    z = np.ones_like(x)

    # pitch about the camera's horizontal axis, then heading about the vertical axis
    pitch = math.radians(config.pitch)
    cos_p, sin_p = math.cos(pitch), math.sin(pitch)
    y, z = y * cos_p + z * sin_p, z * cos_p - y * sin_p

    heading = math.radians(config.heading)
    cos_h, sin_h = math.cos(heading), math.sin(heading)
    x, z = x * cos_h + z * sin_h, z * cos_h - x * sin_h

    return np.stack([x, y, z], axis=-1)


def sample_bilinear(src: np.ndarray, u: np.ndarray, v: np.ndarray) -> np.ndarray:
    """
    Bilinear sample of `src` at fractional pixel coordinates.

    `u` wraps modulo the source width, so the 2x2 window may straddle the
    0/width seam. `v` is clamped to [0, height - 1]; the poles do not wrap.

    Returns:
        np.ndarray: float64 samples of shape u.shape + (channels,).
    """
    height, width = src.shape[:2]

    u = np.mod(u, width)
    v = np.clip(v, 0, height - 1)

    u0 = np.floor(u)
    v0 = np.floor(v)
    fx = (u - u0)[..., None]
    fy = (v - v0)[..., None]

    x0 = u0.astype(np.intp) % width
    x1 = (x0 + 1) % width
    y0 = v0.astype(np.intp)
    y1 = np.minimum(y0 + 1, height - 1)

    top = src[y0, x0] * (1 - fx) + src[y0, x1] * fx
    bottom = src[y1, x0] * (1 - fx) + src[y1, x1] * fx
    return top * (1 - fy) + bottom * fy


def _to_view_image(samples: np.ndarray, dtype) -> Image.Image:
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        samples = np.clip(np.rint(samples), info.min, info.max)
    out = samples.astype(dtype)
    if out.shape[2] == 1:
        out = out[..., 0]
    return Image.fromarray(out)


def extract_view(
    panorama: Union[Panorama, np.ndarray, Image.Image],
    config: ViewConfig
) -> Image.Image:
    """
    Extract a rectilinear view from an equirectangular panorama.

    Args:
        panorama (Panorama | np.ndarray | PIL.Image.Image): Source panorama.
            It is only read, so several extractions may share it.
        config (ViewConfig): Heading, pitch, field of view and output size.

    Returns:
        PIL.Image.Image: New image of config.width x config.height.

    Raises:
        EmptySourceBuffer: the panorama has zero width or height.
    """
    src = as_pixels(panorama)
    if src.size == 0 or src.shape[0] == 0 or src.shape[1] == 0:
        raise EmptySourceBuffer(f"source panorama has zero area {src.shape[:2]}")

    height, width = src.shape[:2]
    rays = view_rays(config)
    x, y, z = rays[..., 0], rays[..., 1], rays[..., 2]

    lon = np.arctan2(x, z)
    lat = np.arcsin(np.clip(y / np.sqrt(x * x + y * y + z * z), -1.0, 1.0))

    u = (lon / (2 * np.pi) + 0.5) * width
    v = (0.5 - lat / np.pi) * height

    return _to_view_image(sample_bilinear(src, u, v), src.dtype)


def extract_all(
    panorama: Union[Panorama, np.ndarray, Image.Image],
    configs: Sequence[ViewConfig],
    max_workers: Optional[int] = None,
    executor: Optional[Executor] = None
) -> List[Image.Image]:
    """
    Extract several views from one panorama.

    The extractions are independent and read the same source, so they run
    in parallel on a thread pool. Output order matches `configs`.

    Args:
        panorama: Source panorama.
        configs (Sequence[ViewConfig]): Views to extract.
        max_workers (int | None): Pool size when no executor is given.
        executor (Executor | None): Executor to reuse instead of a new pool.

    Returns:
        list[PIL.Image.Image]: One view per config; empty for no configs.
    """
    configs = list(configs)
    if not configs:
        return []

    src = as_pixels(panorama)
    if executor is not None:
        return list(executor.map(extract_view, [src] * len(configs), configs))

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(extract_view, [src] * len(configs), configs))

"""
Utility module for panorama processing.

This module provides helper functions and classes for:

- Timing code execution (`timer` context manager).
- Detecting black pixels (`black_mask`).
- Loading datasets (`open_dataset`).
- Parsing command-line arguments for the batch runner (`parse_args`).
- Encoding and saving images and formatting file sizes
  (`SaveOptions`, `encode_img`, `save_img`, `format_size`).

Dependencies:
- numpy for image pixel analysis
- PIL/Pillow for image encoding
- argparse for CLI argument parsing
- json and os for dataset management and file handling
"""
import numpy as np
import time
import json
import argparse
import os
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from typing import Union
from PIL import Image

from .constants import (
    DEFAULT_BACKOFF,
    DEFAULT_CONCURRENCY,
    DEFAULT_FOV,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    DEFAULT_VIEW_SIZE,
    DEFAULT_ZOOM
)


class timer:
    """
    Context manager to measure and print elapsed execution time.

    Usage:
        with timer():
            # your code here
    -----
    >>> with timer() as t:
    ...     # some code to measure
    ...     time.sleep(2)
    >>> print(t.time_elapsed)
    '0h 0m 2.00s'
    """

    def __enter__(self):
        self.start = time.time()
        self.time_elapsed = None
        return self

    def __exit__(self, *args):
        self.end = time.time()
        self.interval = self.end - self.start
        hrs, rem = divmod(self.interval, 3600)
        mins, secs = divmod(rem, 60)
        self.time_elapsed = f"{int(hrs)}h {int(mins)}m {secs:.2f}s"
        return False


def black_mask(arr: np.ndarray, threshold: int = 4) -> np.ndarray:
    """
    Boolean mask of black pixels.

    Args:
        arr (np.ndarray): HxWxC pixel array.
        threshold (int, optional): Max channel value considered 'black'. Defaults to 4.

    Returns:
        np.ndarray: HxW mask, True where every channel <= threshold.
    """
    return np.all(arr <= threshold, axis=2)


def open_dataset(dataset_location: str) -> list[str]:
    """
    Load dataset JSON file.

    Args:
        dataset_location (str): Path to dataset JSON file (a list of panorama ids).

    Returns:
        list[str]: Parsed JSON data.
    """
    with open(dataset_location) as dataset:
        return json.load(dataset)


def parse_args(argv=None):
    """
    Parse command-line arguments for the panorama downloader.

    Arguments:
        --dataset (str, required): Path to dataset JSON file.
        --zoom (int, optional): Zoom level (1–7). (Default: 3)
        --max-pano (int, optional): Max concurrent pano downloads. (Default: 4)
        --concurrency (int, optional): Max in-flight tile requests per pano. (Default: 8)
        --retries (int, optional): Attempts per tile. (Default: 4)
        --backoff (float, optional): Initial retry delay in seconds. (Default: 0.5)
        --timeout (float, optional): Per-attempt timeout in seconds. (Default: 30)
        --limit (int, optional): Limit panoids for testing. (Default: None)
        --output (str, optional): Output directory. (Default: cwd)
        --conn-limit (int, optional): Maximum TCP connections per host. (Default: 100)
        --format (str, optional): jpeg, png or webp. (Default: webp)
        --quality (int, optional): Lossy quality 1–100. (Default: format default)
        --crop (flag): Trim black borders before saving.
        --views (float list, optional): Headings of views to extract instead of saving the panorama.
        --fov, --pitch, --view-size: View parameters.

    Returns:
        argparse.Namespace: Parsed arguments object.
    """
    parser = argparse.ArgumentParser(
        description="Street View Panorama Downloader and View Extractor"
    )

    parser.add_argument("--dataset", type=str, required=True, help="Path to dataset.json")
    parser.add_argument("--zoom", type=int, default=DEFAULT_ZOOM, help="Zoom level (1-7)")
    parser.add_argument("--max-pano", type=int, default=4, help="Max concurrent pano downloads")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Max in-flight tile requests per pano")
    parser.add_argument("--retries", type=int, default=DEFAULT_RETRIES, help="Attempts per tile")
    parser.add_argument("--backoff", type=float, default=DEFAULT_BACKOFF, help="Initial retry delay in seconds")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Per-attempt timeout in seconds")
    parser.add_argument("--limit", type=int, default=None, help="Limit panoids")
    parser.add_argument("--output", type=str, default=os.getcwd(), help="Output directory (default: current working directory)")
    parser.add_argument("--conn-limit", type=int, default=100, help="Maximum TCP connections per host (default: 100)")
    parser.add_argument("--format", type=str, default="webp", choices=[f.value for f in ImageFormat], help="Output format")
    parser.add_argument("--quality", type=int, default=None, help="Lossy quality 1-100")
    parser.add_argument("--crop", action="store_true", help="Trim black borders")
    parser.add_argument("--views", type=float, nargs="*", default=None, help="Headings of views to extract")
    parser.add_argument("--fov", type=float, default=DEFAULT_FOV, help="View field of view in degrees")
    parser.add_argument("--pitch", type=float, default=0.0, help="View pitch in degrees")
    parser.add_argument("--view-size", type=int, nargs=2, default=list(DEFAULT_VIEW_SIZE), metavar=("W", "H"), help="View width and height")

    return parser.parse_args(argv)


def format_size(num_bytes: int) -> str:
    """
    Convert a file size in bytes into a human-readable string.

    Args:
        num_bytes (int): File size in bytes.

    Returns:
        str: Formatted size (e.g., '512.00 KB', '384.00 MB').
    """
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if num_bytes < 1024:
            return f"{num_bytes:.2f} {unit}"
        num_bytes /= 1024
    return f"{num_bytes:.2f} PB"


class ImageFormat(Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"

    @property
    def extension(self) -> str:
        return "jpg" if self is ImageFormat.JPEG else self.value


@dataclass(frozen=True)
class SaveOptions:
    """
    Encoding options for saved images.

    Lossy formats take a quality in 1–100. WebP also takes a compression
    method in 0–6 (slower but smaller as it grows) and PNG a zlib level in 0–9.
    Out-of-range values are clamped.
    """
    format: ImageFormat = ImageFormat.WEBP
    jpeg_quality: int = 90
    webp_quality: int = 85
    webp_method: int = 4
    png_compress_level: int = 6

    def __post_init__(self):
        object.__setattr__(self, "format", ImageFormat(self.format))
        object.__setattr__(self, "jpeg_quality", min(max(int(self.jpeg_quality), 1), 100))
        object.__setattr__(self, "webp_quality", min(max(int(self.webp_quality), 1), 100))
        object.__setattr__(self, "webp_method", min(max(int(self.webp_method), 0), 6))
        object.__setattr__(self, "png_compress_level", min(max(int(self.png_compress_level), 0), 9))

    def save_kwargs(self) -> dict:
        if self.format is ImageFormat.JPEG:
            return {"format": "JPEG", "quality": self.jpeg_quality}
        if self.format is ImageFormat.PNG:
            return {"format": "PNG", "compress_level": self.png_compress_level}
        return {"format": "WEBP", "quality": self.webp_quality, "method": self.webp_method}


def _to_image(img: Union[Image.Image, np.ndarray]) -> Image.Image:
    if isinstance(img, Image.Image):
        return img.convert("RGB") if img.mode not in ("RGB", "L") else img
    return Image.fromarray(np.asarray(img))


def encode_img(img: Union[Image.Image, np.ndarray], options: SaveOptions = SaveOptions()) -> bytes:
    """
    Encode an image to bytes with the given format and quality settings.

    Args:
        img (Image.Image | np.ndarray): Image or HxWx3 uint8 array.
        options (SaveOptions): Encoding options.

    Returns:
        bytes: Encoded image data.
    """
    buf = BytesIO()
    _to_image(img).save(buf, **options.save_kwargs())
    return buf.getvalue()


def save_img(
    full_img: Union[Image.Image, np.ndarray],
    output_dir: str,
    name: str,
    zoom_level: int,
    options: SaveOptions = SaveOptions()
) -> str:
    """
    Save an image to disk in a structured directory layout and return its file size.

    The function creates a subdirectory based on the zoom level (e.g., "panos_z3"),
    saves the image named `{name}.{ext}` with the extension of the chosen
    format, and calculates the saved file's size in a human-readable format.

    Args:
        full_img (Image.Image | np.ndarray): Image to be saved.
        output_dir (str): Base directory where the image should be stored.
        name (str): Output filename without extension (panorama id or view name).
        zoom_level (int): Zoom level used to organize the output directory.
        options (SaveOptions): Encoding options.

    Returns:
        str: File size of the saved image in a human-readable format
             (e.g., "512.00 KB", "1.23 MB").
    """
    zoom_output_folder = os.path.join(output_dir, f"panos_z{zoom_level}")
    os.makedirs(zoom_output_folder, exist_ok=True)
    out_path = os.path.join(zoom_output_folder, f"{name}.{options.format.extension}")

    _to_image(full_img).save(out_path, **options.save_kwargs())
    file_size_bytes = os.path.getsize(out_path)
    file_size_fmt = format_size(file_size_bytes)

    return file_size_fmt

"""
Core module for downloading panoramas and extracting views from them.

This module provides asynchronous functions to:

- Fetch individual panorama tiles with bounded concurrency and retry logic (`fetch_tile`, `fetch_all`).
- Download and assemble a full panorama (`download_panorama`).
- Download a panorama once and extract several views from it (`extract_views`).
- Process a single panorama by downloading, optionally cropping or extracting views, and saving (`process_panoid`).
- Download and process multiple panoramas concurrently (`fetch_panos`).

Tile requests go through a transport object exposing
`async fetch(TileRequest) -> bytes`. `HttpTransport` is the aiohttp
implementation; tests and other tile hosts can supply their own.

Dependencies:
- aiohttp for asynchronous HTTP requests
- PIL/Pillow for tile decoding
- rich for colored logging
"""
import asyncio
import os
from concurrent.futures import Executor
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from typing import List, Optional, Protocol, Sequence, Union

import aiohttp
from PIL import Image, UnidentifiedImageError
from rich import print

from .assembler import Panorama, assemble, crop_black_borders
from .constants import (
    DEFAULT_BACKOFF,
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    DEFAULT_ZOOM,
    TILE_URL
)
from .errors import DecodeError, TileError, TransportError
from .grid import GridSpec, TileCoordinate, resolve
from .my_utils import SaveOptions, save_img
from .views import ViewConfig, extract_all


@dataclass(frozen=True)
class TileRequest:
    """Everything a transport needs to locate one tile."""
    pano_id: str
    zoom: Optional[int]
    x: int
    y: int


class TileTransport(Protocol):
    async def fetch(self, request: TileRequest) -> bytes:
        ...


class HttpTransport:
    """
    aiohttp tile transport.

    Args:
        session (aiohttp.ClientSession): Shared session (connection pool).
        url_template (str): Format string with `{panoid}`, `{zoom}`, `{x}` and `{y}` fields.
    """

    def __init__(self, session: aiohttp.ClientSession, url_template: str = TILE_URL):
        self.session = session
        self.url_template = url_template

    def url_for(self, request: TileRequest) -> str:
        return self.url_template.format(panoid=request.pano_id, zoom=request.zoom, x=request.x, y=request.y)

    async def fetch(self, request: TileRequest) -> bytes:
        try:
            async with self.session.get(self.url_for(request)) as response:
                if response.status != 200:
                    raise TransportError(f"HTTP {response.status}", request.x, request.y)
                return await response.read()
        except aiohttp.ClientError as error:
            raise TransportError(str(error) or type(error).__name__, request.x, request.y) from error


class TileState(Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    BACKING_OFF = "backing_off"
    SUCCEEDED = "succeeded"
    MISSING = "missing"


@dataclass
class TileResult:
    """Outcome of fetching one tile. `image` is set only when SUCCEEDED."""
    coord: TileCoordinate
    state: TileState = TileState.PENDING
    image: Optional[Image.Image] = None
    attempts: int = 0
    error: Optional[TileError] = None

    @property
    def succeeded(self) -> bool:
        return self.state is TileState.SUCCEEDED


def decode_tile(data: bytes, x: int = None, y: int = None) -> Image.Image:
    """
    Decode a tile payload into an RGB image.

    Raises:
        DecodeError: the payload is empty or not a readable image.
    """
    if not data:
        raise DecodeError("empty payload", x, y)
    try:
        tile = Image.open(BytesIO(data))
        tile.load()
    except (UnidentifiedImageError, OSError, SyntaxError, TypeError, ValueError, Image.DecompressionBombError) as error:
        raise DecodeError(f"invalid image payload: {error}", x, y) from error
    return tile.convert("RGB")


async def fetch_tile(
    transport: TileTransport,
    request: TileRequest,
    sem_tile: asyncio.Semaphore,
    retries: int = DEFAULT_RETRIES,
    backoff: float = DEFAULT_BACKOFF,
    timeout: Optional[float] = DEFAULT_TIMEOUT
) -> TileResult:
    """
    Fetch a single panorama tile with retry support.

    The tile moves PENDING -> ATTEMPTING -> SUCCEEDED, or through
    BACKING_OFF back to ATTEMPTING after a failure, and ends MISSING once
    `retries` attempts have failed. A permit of `sem_tile` is held only for
    the request itself, never during backoff.

    Args:
        transport (TileTransport): Object with `async fetch(TileRequest) -> bytes`.
        request (TileRequest): Tile to fetch.
        sem_tile (asyncio.Semaphore): Limits in-flight requests.
        retries (int): Number of attempts before giving up (default: 4).
        backoff (float): Delay in seconds after the first failure, doubled after each further one (default: 0.5).
        timeout (float | None): Per-attempt timeout in seconds (default: 30).

    Returns:
        TileResult: SUCCEEDED with the decoded image, or MISSING with the last error.
    """
    x, y = request.x, request.y
    result = TileResult(coord=TileCoordinate(x, y))
    retries = max(1, retries)

    for attempt in range(1, retries + 1):
        result.state = TileState.ATTEMPTING
        result.attempts = attempt
        try:
            async with sem_tile:
                data = await asyncio.wait_for(transport.fetch(request), timeout)
            result.image = decode_tile(data, x, y)
            result.state = TileState.SUCCEEDED
            result.error = None
            return result

        except asyncio.TimeoutError:
            result.error = TransportError(f"timed out after {timeout}s", x, y)
        except TileError as error:
            result.error = error
        except Exception as error:
            result.error = TransportError(f"{type(error).__name__}: {error}", x, y)

        if attempt < retries:
            result.state = TileState.BACKING_OFF
            wait_time = backoff * (2 ** (attempt - 1))  # exponential backoff
            print(f"[yellow][Retry] {attempt}/{retries} for tile ({x},{y}) pano `{request.pano_id}` in {wait_time:.1f}s: {result.error}[/]")
            await asyncio.sleep(wait_time)

    result.state = TileState.MISSING
    print(f"[red][TILE ERROR] Failed after {retries} attempts for tile {x},{y} pano `{request.pano_id}`: {result.error}[/]")
    return result


async def fetch_all(
    transport: TileTransport,
    pano_id: str,
    grid: GridSpec,
    concurrency: int = DEFAULT_CONCURRENCY,
    retries: int = DEFAULT_RETRIES,
    backoff: float = DEFAULT_BACKOFF,
    timeout: Optional[float] = DEFAULT_TIMEOUT
) -> List[TileResult]:
    """
    Fetch every tile of a panorama concurrently.

    Tile failures never abort siblings; they come back as MISSING results.
    If the caller is cancelled, all outstanding tile fetches are cancelled
    and nothing is returned.

    Args:
        transport (TileTransport): Tile transport.
        pano_id (str): Panorama ID.
        grid (GridSpec): Tile grid, usually from `resolve(zoom)`.
        concurrency (int): Max in-flight tile requests (default: 8).
        retries, backoff, timeout: Passed to `fetch_tile`.

    Returns:
        list[TileResult]: One result per grid coordinate, in row-major order.

    Raises:
        InvalidGrid: the grid is not a valid equirectangular grid.
    """
    grid.validate()
    sem_tile = asyncio.Semaphore(max(1, concurrency))

    tasks = [
        asyncio.ensure_future(
            fetch_tile(transport, TileRequest(pano_id, grid.zoom, coord.x, coord.y), sem_tile, retries, backoff, timeout)
        )
        for coord in grid.coordinates()
    ]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException as error:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if isinstance(error, asyncio.CancelledError):
            print(f"[yellow][CANCELLED] Panoid `{pano_id}` | abandoned {len(tasks)} tile fetches[/]")
        raise


async def download_panorama(
    transport: TileTransport,
    pano_id: str,
    zoom: int = DEFAULT_ZOOM,
    concurrency: int = DEFAULT_CONCURRENCY,
    retries: int = DEFAULT_RETRIES,
    backoff: float = DEFAULT_BACKOFF,
    timeout: Optional[float] = DEFAULT_TIMEOUT
) -> Panorama:
    """
    Download and assemble a full panorama.

    Args:
        transport (TileTransport): Tile transport.
        pano_id (str): Panorama ID.
        zoom (int): Zoom level (1–7). Zoom 1 is 1024x512, each level doubles both sides.

    Returns:
        Panorama: Assembled panorama. Check `missing_count` if completeness matters.

    Raises:
        InvalidZoom: zoom outside 1–7.
        PanoramaUnavailable: no tile could be fetched.
    """
    grid = resolve(zoom)
    results = await fetch_all(transport, pano_id, grid, concurrency, retries, backoff, timeout)
    panorama = assemble(grid, results, pano_id=pano_id)

    if panorama.missing_count:
        print(f"[yellow][PARTIAL] Panoid `{pano_id}` | {panorama.missing_count}/{grid.tile_count} tiles missing[/]")
    return panorama


async def extract_views(
    transport: TileTransport,
    pano_id: str,
    configs: Sequence[ViewConfig],
    zoom: int = DEFAULT_ZOOM,
    executor: Optional[Executor] = None,
    **fetch_options
) -> List[Image.Image]:
    """
    Download a panorama once and extract several views from it.

    The pixel work runs in `executor` (or the loop's default executor) so the
    event loop stays free for other downloads.

    Returns:
        list[PIL.Image.Image]: One view per config, in order.
    """
    configs = list(configs)
    if not configs:
        return []

    panorama = await download_panorama(transport, pano_id, zoom, **fetch_options)
    return await asyncio.get_running_loop().run_in_executor(
        executor, extract_all, panorama, configs
    )


async def process_panoid(
    transport: TileTransport,
    panoid: str,
    sem_pano: asyncio.Semaphore,
    zoom_level: int,
    output_dir: str,
    views: Optional[Sequence[ViewConfig]] = None,
    save_options: SaveOptions = SaveOptions(),
    crop: bool = False,
    executor: Optional[Executor] = None,
    **fetch_options
) -> Union[dict, None]:
    """
    Download a single panorama and save it, or the views extracted from it.

    Steps:
        1. Fetch and assemble all tiles for the given panoid and zoom level.
        2. Either extract the requested views, or take the panorama (cropped if asked).
        3. Save the resulting images to disk.
        4. Return metadata about the panorama.

    Args:
        transport (TileTransport): Tile transport.
        panoid (str): Panorama ID to fetch.
        sem_pano (asyncio.Semaphore): Semaphore to limit concurrent panorama downloads.
        zoom_level (int): Zoom level (1–7).
        output_dir (str): Base directory for saved images.
        views (Sequence[ViewConfig] | None): Views to save instead of the panorama.
        save_options (SaveOptions): Output encoding.
        crop (bool): Trim black borders from the panorama before saving.
        executor (Executor | None): Executor for CPU-bound work.

    Returns:
        dict | None: Metadata dictionary containing:
            - "panoid" (str): Panorama ID.
            - "zoom" (int): Zoom level used.
            - "size" (tuple[int, int]): Panorama width and height in pixels.
            - "missing" (int): Count of missing tiles.
            - "files" (dict[str, str]): Saved image name -> human-readable size.
        Returns None if the panorama could not be fetched or processed.
    """
    try:
        async with sem_pano:
            panorama = await download_panorama(transport, panoid, zoom_level, **fetch_options)
            loop = asyncio.get_running_loop()

            if views:
                images = await loop.run_in_executor(executor, extract_all, panorama, list(views))
                named = {
                    f"{panoid}_{index}_h{config.heading:g}_p{config.pitch:g}_f{config.fov:g}_{config.width}x{config.height}": image
                    for index, (config, image) in enumerate(zip(views, images))
                }
            elif crop:
                named = {panoid: await loop.run_in_executor(executor, crop_black_borders, panorama)}
            else:
                named = {panoid: panorama.pixels}

            files = {
                name: save_img(image, output_dir, name, zoom_level, save_options)
                for name, image in named.items()
            }

            print(
                f"[green][OK] Panoid `{panoid}` | zoom {zoom_level} "
                f"| w*h {panorama.width}x{panorama.height} "
                f"| missing tiles: {panorama.missing_count}/{panorama.grid.tile_count} "
                f"| saved {len(files)} file(s)[/]"
            )
            return {
                "panoid": panoid,
                "zoom": zoom_level,
                "size": (panorama.width, panorama.height),
                "missing": panorama.missing_count,
                "files": files,
            }

    except Exception as error:
        print(f"[red][PROCESSING ERROR] Panoid `{panoid}`: {error}[/]")
        return None


async def fetch_panos(
    sem_pano: asyncio.Semaphore,
    connector: aiohttp.TCPConnector,
    zoom_level: int,
    panoids: list[str],
    output_dir: Union[str, None] = None,
    views: Optional[Sequence[ViewConfig]] = None,
    save_options: SaveOptions = SaveOptions(),
    crop: bool = False,
    transport: Optional[TileTransport] = None,
    **fetch_options
) -> tuple[int, int, str]:
    """
    Download and process multiple panoramas concurrently.

    Args:
        sem_pano (asyncio.Semaphore): Semaphore to control concurrent pano downloads.
        connector (aiohttp.TCPConnector): Connector with concurrency limits for aiohttp.
        zoom_level (int): Zoom level (1–7).
        panoids (list[str]): List of panorama IDs to fetch.
        output_dir (str | None): Output directory (default: cwd).
        views, save_options, crop: Passed to `process_panoid`.
        transport (TileTransport | None): Transport to use instead of an `HttpTransport` on the session.

    Workflow:
        - Creates an aiohttp session.
        - Runs `process_panoid()` for each panoid concurrently.

    Returns:
        tuple[int, int, str]: A tuple containing:
            - total_panos (int): Number of panorama IDs processed.
            - successful_panos (int): Number of panoramas successfully downloaded.
            - output_dir (str): Output directory where the images are saved.
    """
    print("[green]| Running Downloader..[/]\n")

    if output_dir is None: output_dir = os.getcwd()

    async with aiohttp.ClientSession(connector=connector) as session:
        if transport is None:
            transport = HttpTransport(session)
        tasks = [
            process_panoid(transport, panoid, sem_pano, zoom_level, output_dir, views, save_options, crop, **fetch_options)
            for panoid in panoids
        ]
        tasks_res = await asyncio.gather(*tasks)

    success_panos = tuple(filter(lambda pano: pano is not None, tasks_res))

    return len(tasks), len(success_panos), output_dir

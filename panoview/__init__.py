"""
panoview - Street View panorama downloader and view extractor

This module provides tools to download equirectangular panoramas tile by tile
and to derive rectilinear views from them.

Key features:
- Concurrently fetch panorama tiles using asyncio + aiohttp, with a bounded
  number of in-flight requests and exponential-backoff retries.
- Assemble tiles into one pixel buffer; tiles that keep failing are left black
  and reported instead of failing the whole panorama.
- Trim black borders from assembled panoramas.
- Extract perspective views at any heading, pitch and field of view, one at a
  time or many from a single download.
- Save images as JPEG, PNG or WebP in structured directories.
- Supports zoom levels 1–7 (1024x512 up to 65536x32768).

Example usage::

    import asyncio
    import aiohttp
    from panoview import HttpTransport, ViewConfig, Direction, extract_views

    async def main():
        async with aiohttp.ClientSession() as session:
            transport = HttpTransport(session)
            configs = [ViewConfig.from_direction(d, width=1024, height=768) for d in Direction]
            return await extract_views(transport, "pano id", configs, zoom=3)

    views = asyncio.run(main())
    for direction, view in zip(Direction, views):
        view.save(f"{direction.label}.jpg")
"""
from .errors import *
from .grid import *
from .assembler import *
from .views import *
from .core import *
from .my_utils import *
from .constants import *

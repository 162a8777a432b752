import asyncio
import aiohttp
from rich import print

from panoview.core import fetch_panos
from panoview.my_utils import (
    ImageFormat,
    SaveOptions,
    open_dataset,
    parse_args,
    timer
)
from panoview.views import ViewConfig


def build_save_options(args) -> SaveOptions:
    fmt = ImageFormat(args.format)
    if args.quality is None:
        return SaveOptions(format=fmt)
    return SaveOptions(format=fmt, jpeg_quality=args.quality, webp_quality=args.quality)


def build_views(args):
    if not args.views:
        return None
    width, height = args.view_size
    return [
        ViewConfig(heading=heading, pitch=args.pitch, fov=args.fov, width=width, height=height)
        for heading in args.views
    ]


async def main(args) -> tuple[int, int, str]:
    dataset = open_dataset(args.dataset)

    if limit:= args.limit:
        dataset = dataset[:limit]

    sem_pano = asyncio.Semaphore(args.max_pano)
    connector = aiohttp.TCPConnector(limit=args.conn_limit, limit_per_host=args.conn_limit)

    return await fetch_panos(
        sem_pano,
        connector,
        args.zoom,
        dataset,
        args.output,
        views=build_views(args),
        save_options=build_save_options(args),
        crop=args.crop,
        concurrency=args.concurrency,
        retries=args.retries,
        backoff=args.backoff,
        timeout=args.timeout,
    )


if __name__ == "__main__":
    try:
        args = parse_args()

        with timer() as t:
            total_panos, successful_panos, output_dir = asyncio.run(main(args))

        print(f"\n[gray]{'-' * 85}[/]")
        print(f"\n[orange1]| Processed [green]{successful_panos}/{total_panos}[/] panos in [green]{t.time_elapsed}[/][/]")
        print(f"[orange1]| Saved at [green]{output_dir}[/][/]\n")
    except Exception as error:
        print(f"[red][MAIN] Error: {error}[/]")
    except KeyboardInterrupt:
        print("[red]Keyboard Interrupted[/]")

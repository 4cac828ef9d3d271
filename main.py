"""
WallWhale download entry point.

Creates a download job for a URL or id, waits for it to finish and
saves the archive locally.
"""

import argparse
import asyncio
import re
from pathlib import Path

from loguru import logger

from wallwhale.sdk import DownloadApiClient, build_job_request
from wallwhale.services import OptimizedClient
from wallwhale.settings import load_settings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Download an item through WallWhale")
    parser.add_argument("url_or_id", help="Item URL or id to download")
    parser.add_argument("--account", help="Account name (defaults to WALLWHALE_ACCOUNT)")
    parser.add_argument("--output", type=Path, default=Path("downloads"), help="Output directory")
    return parser.parse_args()


def archive_name(url_or_id: str) -> str:
    """File name for an item: its last numeric id, if it has one."""
    ids = re.findall(r"\d+", url_or_id)
    return f"{ids[-1] if ids else 'download'}.zip"


async def main() -> None:
    """Download one item end to end."""
    args = parse_args()
    settings = load_settings()
    account = args.account or settings.account_name

    logger.info("Starting WallWhale download...")
    client = OptimizedClient(
        DownloadApiClient(settings.to_sdk_config(), timeout=settings.request_timeout),
        settings.to_optimization_config(),
    )
    client.start_maintenance()

    try:
        request = build_job_request(account, args.url_or_id, settings.save_root)
        path = args.output / archive_name(args.url_or_id)
        job = await client.create_and_download(
            request,
            path,
            settings.to_poll_config(),
            on_status_update=lambda j: logger.info(f"Job {j.id}: {j.status}"),
        )
        logger.info(f"Job {job.id} finished as '{job.status}'")

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Download failed: {e}")
    finally:
        logger.debug(f"Optimization stats: {client.get_optimization_stats()}")
        await client.close()
        logger.info("WallWhale client stopped")


if __name__ == "__main__":
    asyncio.run(main())

"""
Entry point for one menu + nutrition scrape.

Scheduling lives outside this project (cron, a hosted job runner, ...); each
invocation scrapes the upcoming dates once and exits.
"""

import asyncio
import logging
import os
import sys
from datetime import date
from pathlib import Path

import logfire
from dotenv import load_dotenv

# Add the current directory to Python path to ensure imports work
sys.path.insert(0, str(Path(__file__).parent))

from config.settings import settings
from services.menu_collector import MenuCollector
from storage.blob_storage import BlobStorage, LocalBlobStorage, SupabaseBlobStorage

logger = logging.getLogger(__name__)


def build_storage() -> BlobStorage:
    """Supabase when credentials are configured, otherwise a local directory"""
    if settings.supabase_url and settings.supabase_service_role_key:
        return SupabaseBlobStorage(
            settings.supabase_url,
            settings.supabase_service_role_key,
            bucket=settings.supabase_bucket,
            timeout=settings.request_timeout
        )
    logger.info(f"Supabase not configured, using local storage at {settings.storage_directory}")
    return LocalBlobStorage(settings.storage_directory)


async def run_scrape() -> bool:
    collector = MenuCollector(build_storage())

    initial_status = await collector.cache_status()
    logger.info(f"Current cache: {initial_status.total_entries} entries ({initial_status.cache_size})")

    full_refresh = date.today().weekday() == settings.full_refresh_weekday
    summary = await collector.run(full_refresh=full_refresh)

    final_status = collector.cache.status()
    messages = [
        f"Menus stored: {', '.join(summary.dates_processed) or 'none'}",
        f"Already stored: {len(summary.dates_skipped)} dates",
        f"Failed pages: {len(summary.failed_pages)}",
    ]
    if summary.nutrition:
        result = summary.nutrition
        messages.append(
            f"Nutrition collection: {result.fetched_count} fetched, "
            f"{result.skipped_count} cached, {result.error_count} errors"
        )
    else:
        messages.append("Nutrition collection: SKIPPED (no new menu data)")
    messages.append(f"Cache now contains: {final_status.total_entries} entries")
    logger.info(" | ".join(messages))

    return summary.nutrition is None or summary.nutrition.success


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", settings.log_level),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    logfire.configure(send_to_logfire="if-token-present")

    ok = asyncio.run(run_scrape())
    sys.exit(0 if ok else 1)

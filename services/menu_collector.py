"""
Menu Collector - Orchestrator
Scrapes every location for each date in the upcoming window, stores one normalized
artifact per date, then resolves nutrition for the recipes it found.
"""
import asyncio
import json
import logging
from datetime import date, timedelta
from typing import Awaitable, Callable, Iterable, List, Optional, Set

import httpx
import logfire

from config.settings import Settings, settings as default_settings
from models.menu import DailyMenu, FoodItem, LocationMenu, MenuPage, PeriodIndex, StationIndex
from models.nutrition import CacheStatus, CollectionResult, NutritionRecord, ScrapeSummary
from parsers.menu_parser import parse_menu_page
from services.exceptions import BlobNotFoundError, StorageError
from services.nutrition_cache import NutritionCache
from services.nutrition_fetcher import NutritionFetcher
from storage.blob_storage import BlobStorage

logger = logging.getLogger(__name__)


def artifact_name(menu_date: str) -> str:
    return f"{menu_date}.json"


def normalize_menu_page(daily: DailyMenu, page: MenuPage) -> None:
    """
    Merge one page into the day's artifact.

    Empty stations and meal periods are dropped. Items go into the slug-keyed map;
    when two different items share a slug the first one is kept and the collision
    is counted.
    """
    location_menu = LocationMenu()

    for period_name, period in page.meal_periods.items():
        period_index = PeriodIndex()
        for station_name, station in period.stations.items():
            if not station.items:
                continue

            for slug, item in zip(station.item_ids, station.items):
                existing = daily.items.get(slug)
                if existing is None:
                    daily.items[slug] = item
                elif (existing.name, existing.recipe_id) != (item.name, item.recipe_id):
                    daily.slug_collisions += 1
                    logger.warning(
                        f"Slug collision on '{slug}': keeping '{existing.name}' "
                        f"({existing.recipe_id}), dropping '{item.name}' ({item.recipe_id})"
                    )
            period_index.stations[station_name] = StationIndex(item_ids=list(station.item_ids))

        if period_index.stations:
            location_menu.meal_periods[period_name] = period_index

    if location_menu.meal_periods:
        daily.locations[page.location] = location_menu


class MenuCollector:
    """Owns the nutrition cache for a run and drives scraping and nutrition collection"""

    def __init__(
        self,
        storage: BlobStorage,
        settings: Optional[Settings] = None,
        cache: Optional[NutritionCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: Callable[[], date] = date.today,
        **fetcher_options
    ):
        self.settings = settings or default_settings
        self.storage = storage
        self.cache = cache or NutritionCache(storage, self.settings.cache_filename)
        self.client = client
        self.sleep = sleep
        self.today = today
        self.fetcher_options = fetcher_options

    def _fetcher(self, client: Optional[httpx.AsyncClient]) -> NutritionFetcher:
        return NutritionFetcher(
            self.cache,
            settings=self.settings,
            client=client,
            sleep=self.sleep,
            **self.fetcher_options
        )

    def window_dates(self, start: Optional[date] = None) -> List[str]:
        """Dates (YYYY-MM-DD) from start through the configured number of days ahead"""
        start = start or self.today()
        return [(start + timedelta(days=offset)).isoformat() for offset in range(self.settings.days_ahead)]

    def page_url(self, location: str) -> str:
        return f"{self.settings.base_url.rstrip('/')}/locations/{location}/"

    async def fetch_location_page(
        self,
        client: httpx.AsyncClient,
        location: str,
        menu_date: str
    ) -> str:
        response = await client.get(
            self.page_url(location),
            params={"date": menu_date},
            follow_redirects=True
        )
        response.raise_for_status()
        return response.text

    async def scrape_date(
        self,
        client: httpx.AsyncClient,
        menu_date: str,
        summary: Optional[ScrapeSummary] = None,
        recipe_ids: Optional[Set[int]] = None
    ) -> DailyMenu:
        """
        Scrape every location for one date. Pages that fail to load are skipped.

        recipe_ids, when given, collects every recipe id seen on the parsed pages,
        including items whose slug lost a collision in the artifact.
        """
        daily = DailyMenu(date=menu_date)
        locations = self.settings.locations

        for index, location in enumerate(locations):
            logger.info(f"Fetching food items from {location} for {menu_date}...")
            try:
                html = await self.fetch_location_page(client, location, menu_date)
            except httpx.HTTPError as e:
                logger.warning(f"Failed to fetch {location} for {menu_date}: {str(e)}")
                if summary is not None:
                    summary.failed_pages.append(f"{location}@{menu_date}")
            else:
                page = parse_menu_page(html, location, menu_date)
                normalize_menu_page(daily, page)
                if recipe_ids is not None:
                    recipe_ids.update(
                        item.recipe_number for _, item in page.iter_items()
                        if item.recipe_number is not None
                    )

            if index < len(locations) - 1:
                await self.sleep(self.settings.delay_between_locations)

        return daily

    async def save_daily_menu(self, daily: DailyMenu) -> None:
        payload = json.dumps(daily.to_json_dict(), indent=2, ensure_ascii=False).encode("utf-8")
        await self.storage.put(artifact_name(daily.date), payload, content_type="application/json", upsert=True)
        logger.info(f"Saved {len(daily.items)} items for {daily.date} as {artifact_name(daily.date)}")

    async def load_daily_menu(self, menu_date: str) -> Optional[DailyMenu]:
        """Stored artifact for a date, or None when missing or unreadable"""
        try:
            data = json.loads((await self.storage.get(artifact_name(menu_date))).decode("utf-8"))
            return DailyMenu.model_validate(data)
        except BlobNotFoundError:
            logger.info(f"No data file found for {menu_date}")
            return None
        except (StorageError, ValueError) as e:
            logger.error(f"Error reading menu data for {menu_date}: {str(e)}")
            return None

    async def run(self, full_refresh: bool = False, force_refresh: bool = False) -> ScrapeSummary:
        """
        One scheduled scrape: menus for the date window, then nutrition.

        A date is skipped when its artifact already exists. The artifact is only
        written when every location page loaded, so partial days are retried later.

        Args:
            full_refresh: Also re-fetch every recipe already in the cache
            force_refresh: Look up recipes even when the cache has them

        Returns:
            ScrapeSummary, with nutrition=None when no recipes needed resolving
        """
        summary = ScrapeSummary()
        await self.cache.load()
        recipe_ids = set()

        client = self.client or httpx.AsyncClient(timeout=self.settings.request_timeout)
        try:
            for menu_date in self.window_dates():
                if await self.storage.exists(artifact_name(menu_date)):
                    logger.info(f"Menu for {menu_date} already stored, skipping")
                    summary.dates_skipped.append(menu_date)
                    continue

                failures_before = len(summary.failed_pages)
                daily = await self.scrape_date(client, menu_date, summary, recipe_ids)
                summary.item_count += len(daily.items)

                if len(summary.failed_pages) == failures_before:
                    await self.save_daily_menu(daily)
                    summary.dates_processed.append(menu_date)
                else:
                    logger.warning(f"Not storing incomplete menu for {menu_date}")

            if full_refresh:
                logger.info(f"Full refresh: adding {len(self.cache.recipe_ids())} cached recipes")
                recipe_ids.update(self.cache.recipe_ids())
                force_refresh = True

            if recipe_ids:
                summary.nutrition = await self._fetcher(client).collect(sorted(recipe_ids), force_refresh)
            else:
                logger.info("No recipe IDs found to process, skipping nutrition collection")
        finally:
            if self.client is None:
                await client.aclose()

        logfire.info(
            "menu_scrape_completed",
            dates_processed=summary.dates_processed,
            dates_skipped=summary.dates_skipped,
            failed_pages=len(summary.failed_pages),
            item_count=summary.item_count,
            nutrition_success=summary.nutrition.success if summary.nutrition else None
        )
        return summary

    async def collect_nutrition(
        self,
        recipe_ids: Iterable[int],
        force_refresh: bool = False
    ) -> CollectionResult:
        """Load the cache and resolve nutrition for the given recipe ids"""
        await self.cache.load()
        return await self._fetcher(self.client).collect(recipe_ids, force_refresh)

    async def collect_nutrition_for_menu(self, daily: DailyMenu) -> CollectionResult:
        """Resolve nutrition for every recipe referenced by a stored day"""
        recipe_ids = daily.recipe_numbers()
        logger.info(f"Extracted {len(recipe_ids)} recipe IDs from menu data for {daily.date}")
        return await self.collect_nutrition(recipe_ids)

    async def latest_recipe_ids(self, menu_date: Optional[str] = None) -> List[int]:
        """Recipe ids in the stored artifact for a date (today by default)"""
        daily = await self.load_daily_menu(menu_date or self.today().isoformat())
        return daily.recipe_numbers() if daily else []

    async def cache_status(self) -> CacheStatus:
        await self.cache.load()
        return self.cache.status()

    def resolve_nutrition(self, item: FoodItem) -> NutritionRecord:
        """Nutrition for an item from the loaded cache, empty when unknown"""
        return self.cache.get(item.recipe_id) or {}

"""
Batch nutrition fetcher for the recipe lookup endpoint.

The endpoint rate limits hard, so lookups run in batches of concurrency groups:
every group is started together and fully awaited before the next one, with a
short pause after each group and a longer one between batches. 429 answers are
retried a bounded number of times, waiting Retry-After plus jitter.
"""
import asyncio
import logging
import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Optional

import httpx
import logfire

from config.settings import Settings, settings as default_settings
from models.nutrition import CollectionResult, NutritionRecord
from parsers.nutrition_parser import parse_nutrition_response
from services.exceptions import NutritionParseError, RateLimitedError
from services.nutrition_cache import NutritionCache

logger = logging.getLogger(__name__)

RECIPE_PATH = "/wp-content/themes/nmc_dining/ajax-content/recipe.php"


class FetchState(str, Enum):
    """Final state of one recipe lookup"""
    CACHE_HIT = "cache_hit"
    NOT_FOUND = "not_found"
    SUCCESS = "success"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class FetchOutcome:
    recipe_id: int
    state: FetchState
    record: NutritionRecord = field(default_factory=dict)
    error: Optional[str] = None
    attempts: int = 0


def _default_jitter() -> float:
    return random.uniform(0, 2)


def _chunk(values: List[int], size: int) -> List[List[int]]:
    return [values[i:i + size] for i in range(0, len(values), size)]


class NutritionFetcher:
    """Resolves nutrition records for many recipe ids through the cache"""

    def __init__(
        self,
        cache: NutritionCache,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[], float] = _default_jitter,
        concurrent_requests: Optional[int] = None,
        batch_size: Optional[int] = None,
        delay_between_items: Optional[float] = None,
        delay_between_batches: Optional[float] = None
    ):
        self.settings = settings or default_settings
        self.cache = cache
        self.client = client
        self.sleep = sleep
        self.jitter = jitter

        self.concurrent_requests = max(1, concurrent_requests or self.settings.concurrent_requests)
        self.batch_size = max(1, batch_size or self.settings.batch_size)
        self.delay_between_items = (
            self.settings.delay_between_items if delay_between_items is None else delay_between_items
        )
        self.delay_between_batches = (
            self.settings.delay_between_batches if delay_between_batches is None else delay_between_batches
        )
        self.max_retries = self.settings.max_rate_limit_retries
        self.recipe_url = self.settings.base_url.rstrip("/") + RECIPE_PATH

    def _retry_after(self, response: httpx.Response) -> float:
        """Retry-After in seconds, capped at max_retry_after. Unusable values fall back to the default."""
        default = self.settings.default_retry_after
        header = response.headers.get("retry-after")
        if header is None:
            return min(default, self.settings.max_retry_after)
        try:
            retry_after = float(header)
        except ValueError:
            retry_after = default
        if not math.isfinite(retry_after) or retry_after < 0:
            logger.warning(f"Ignoring unusable Retry-After header: {header!r}")
            retry_after = default
        return min(retry_after, self.settings.max_retry_after)

    async def fetch_recipe(
        self,
        client: httpx.AsyncClient,
        recipe_id: int,
        force_refresh: bool = False
    ) -> FetchOutcome:
        """
        Look up one recipe.

        Never raises for lookup problems: failures come back as FetchState.FAILED
        with an error message.
        """
        key = str(recipe_id)
        if not force_refresh:
            cached = self.cache.get(key)
            if cached:
                return FetchOutcome(recipe_id, FetchState.CACHE_HIT, cached)

        attempt = 0
        try:
            while True:
                logger.info(f"Fetching nutrition for recipe ID: {recipe_id}")
                response = await client.get(self.recipe_url, params={"recipe": key})

                if response.status_code == 404:
                    logger.warning(f"Recipe {recipe_id} not found (404). Skipping.")
                    return FetchOutcome(recipe_id, FetchState.NOT_FOUND, attempts=attempt + 1)

                if response.status_code == 429:
                    retry_after = self._retry_after(response)
                    if attempt >= self.max_retries:
                        raise RateLimitedError(key, attempt + 1, retry_after)
                    wait_time = retry_after + self.jitter()
                    logger.info(
                        f"Rate limited for {recipe_id}. Waiting {wait_time:.1f}s "
                        f"before retry {attempt + 1}"
                    )
                    await self.sleep(wait_time)
                    attempt += 1
                    continue

                response.raise_for_status()
                try:
                    envelope = response.json()
                except ValueError as e:
                    raise NutritionParseError(key, f"body is not JSON ({str(e)})") from e

                nutrition = parse_nutrition_response(envelope, key)
                if not nutrition:
                    logger.warning(f"No nutrition data extracted for recipe {recipe_id}")
                    return FetchOutcome(recipe_id, FetchState.EMPTY, attempts=attempt + 1)

                self.cache.put(key, nutrition)
                logger.info(f"Successfully fetched nutrition for recipe {recipe_id}")
                return FetchOutcome(recipe_id, FetchState.SUCCESS, nutrition, attempts=attempt + 1)

        except (httpx.HTTPError, NutritionParseError, RateLimitedError) as e:
            if isinstance(e, httpx.HTTPStatusError):
                message = f"Status: {e.response.status_code}, Message: {str(e)}"
            else:
                message = str(e)
            error = f"Error fetching nutrition for recipe {recipe_id}: {message}"
            logger.error(error)
            return FetchOutcome(recipe_id, FetchState.FAILED, error=error, attempts=attempt + 1)

    def _record(self, result: CollectionResult, outcome: FetchOutcome) -> None:
        if outcome.state == FetchState.SUCCESS:
            result.fetched_count += 1
        elif outcome.state == FetchState.NOT_FOUND:
            result.not_found_count += 1
        elif outcome.state == FetchState.EMPTY:
            result.empty_count += 1
        elif outcome.state == FetchState.CACHE_HIT:
            result.skipped_count += 1
        elif outcome.state == FetchState.FAILED:
            result.error_count += 1
            result.missing_recipes.append(outcome.recipe_id)
            result.errors.append(f"Recipe {outcome.recipe_id}: {outcome.error}")

    async def _run_batches(
        self,
        client: httpx.AsyncClient,
        recipe_ids: List[int],
        force_refresh: bool,
        result: CollectionResult
    ) -> None:
        batches = _chunk(recipe_ids, self.batch_size)
        logger.info(
            f"Processing {len(batches)} batches with {self.concurrent_requests} concurrent requests each"
        )

        for batch_index, batch in enumerate(batches):
            logger.info(f"Processing batch {batch_index + 1}/{len(batches)} ({len(batch)} items)")

            for group in _chunk(batch, self.concurrent_requests):
                outcomes = await asyncio.gather(
                    *(self.fetch_recipe(client, recipe_id, force_refresh) for recipe_id in group)
                )
                for outcome in outcomes:
                    self._record(result, outcome)
                await self.sleep(self.delay_between_items)

            processed = (
                result.fetched_count + result.error_count + result.not_found_count
                + result.empty_count + result.skipped_count
            )
            logfire.info(
                "nutrition_batch_completed",
                batch=batch_index + 1,
                batch_count=len(batches),
                processed=processed,
                total=len(recipe_ids),
                fetched=result.fetched_count,
                errors=result.error_count
            )
            logger.info(
                f"Progress: {processed}/{len(recipe_ids)} "
                f"({round(processed / len(recipe_ids) * 100)}%) - "
                f"Fetched: {result.fetched_count}, Errors: {result.error_count}"
            )

            if batch_index < len(batches) - 1:
                logger.info(f"Waiting {self.delay_between_batches}s before next batch...")
                await self.sleep(self.delay_between_batches)

    async def collect(
        self,
        recipe_ids: Iterable[int],
        force_refresh: bool = False
    ) -> CollectionResult:
        """
        Resolve nutrition for every recipe id and persist the cache.

        The cache is expected to be loaded already. Saving it is the only step that
        can raise.

        Args:
            recipe_ids: Recipe ids, duplicates and non-positive ids allowed
            force_refresh: Look up ids even when the cache has them

        Returns:
            CollectionResult with counts and per-recipe errors
        """
        recipe_ids = list(recipe_ids)
        result = CollectionResult(total_recipes=len(recipe_ids))

        unique_ids = list(dict.fromkeys(int(recipe_id) for recipe_id in recipe_ids))
        unique_ids = [recipe_id for recipe_id in unique_ids if recipe_id > 0]
        if force_refresh:
            to_fetch = unique_ids
        else:
            to_fetch = [recipe_id for recipe_id in unique_ids if not self.cache.has(recipe_id)]

        logfire.info(
            "nutrition_collection_started",
            total=len(recipe_ids),
            unique=len(unique_ids),
            to_fetch=len(to_fetch),
            force_refresh=force_refresh
        )
        logger.info(
            f"Need to fetch nutrition data for {len(to_fetch)} out of "
            f"{len(unique_ids)} unique recipe IDs"
        )

        if not to_fetch:
            logger.info("All recipe IDs already have nutrition data in cache.")
            result.skipped_count = len(unique_ids)
            result.success = True
            return result

        if self.client is not None:
            await self._run_batches(self.client, to_fetch, force_refresh, result)
        else:
            async with httpx.AsyncClient(timeout=self.settings.request_timeout) as client:
                await self._run_batches(client, to_fetch, force_refresh, result)

        await self.cache.save()

        result.skipped_count = len(unique_ids) - len(to_fetch)
        result.success = result.error_count < len(to_fetch) / 2

        logfire.info(
            "nutrition_collection_completed",
            fetched=result.fetched_count,
            skipped=result.skipped_count,
            errors=result.error_count,
            not_found=result.not_found_count,
            empty=result.empty_count,
            cache_entries=len(self.cache),
            success=result.success
        )
        logger.info(
            f"Nutrition collection completed - Fetched: {result.fetched_count}, "
            f"Skipped: {result.skipped_count}, Errors: {result.error_count}, "
            f"Missing: {', '.join(map(str, result.missing_recipes)) or 'None'}"
        )
        return result

"""
Tests for batched nutrition fetching: cache skips, 429 retries, benign outcomes
and group/batch pacing.
"""

import asyncio

import httpx
import pytest

from services.nutrition_cache import NutritionCache
from services.nutrition_fetcher import FetchState, NutritionFetcher
from conftest import EXPECTED_NUTRITION, NUTRITION_HTML


def ok_response():
    return httpx.Response(200, json={"success": True, "html": NUTRITION_HTML})


class RecipeEndpoint:
    """Mock recipe endpoint that counts calls per recipe id"""

    def __init__(self, responder=None):
        self.calls = {}
        self.responder = responder or (lambda recipe_id, attempt: ok_response())

    def __call__(self, request: httpx.Request) -> httpx.Response:
        recipe_id = int(request.url.params["recipe"])
        attempt = self.calls.get(recipe_id, 0)
        self.calls[recipe_id] = attempt + 1
        return self.responder(recipe_id, attempt)

    @property
    def total_calls(self):
        return sum(self.calls.values())


def make_fetcher(cache, settings, endpoint, sleep, **options):
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    return NutritionFetcher(
        cache,
        settings=settings,
        client=client,
        sleep=sleep,
        jitter=lambda: 0.5,
        **options
    )


class TestCacheUse:

    @pytest.mark.asyncio
    async def test_cached_ids_are_skipped_without_network(self, cache, test_settings, sleep_recorder):
        for recipe_id in (1, 2, 3):
            cache.put(recipe_id, {"Calories": "10"})
        endpoint = RecipeEndpoint()
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        result = await fetcher.collect([1, 2, 3, 2])

        assert result.skipped_count == 3
        assert result.fetched_count == 0
        assert result.success is True
        assert endpoint.total_calls == 0

    @pytest.mark.asyncio
    async def test_force_refresh_fetches_cached_ids(self, cache, test_settings, sleep_recorder):
        cache.put(1, {"Calories": "10"})
        endpoint = RecipeEndpoint()
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        result = await fetcher.collect([1], force_refresh=True)

        assert endpoint.calls == {1: 1}
        assert result.fetched_count == 1
        assert result.skipped_count == 0
        assert cache.get(1) == EXPECTED_NUTRITION

    @pytest.mark.asyncio
    async def test_duplicates_and_non_positive_ids_are_dropped(self, cache, test_settings, sleep_recorder):
        endpoint = RecipeEndpoint()
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        result = await fetcher.collect([5, 5, 0, -3])

        assert result.total_recipes == 4
        assert endpoint.calls == {5: 1}

    @pytest.mark.asyncio
    async def test_fetch_recipe_returns_cache_hit(self, cache, test_settings, sleep_recorder):
        cache.put(8, {"Calories": "10"})
        endpoint = RecipeEndpoint()
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        outcome = await fetcher.fetch_recipe(fetcher.client, 8)

        assert outcome.state == FetchState.CACHE_HIT
        assert outcome.record == {"Calories": "10"}
        assert endpoint.total_calls == 0


class TestRateLimiting:

    @pytest.mark.asyncio
    async def test_always_429_is_tried_four_times(self, cache, test_settings, sleep_recorder):
        endpoint = RecipeEndpoint(lambda recipe_id, attempt: httpx.Response(429, headers={"Retry-After": "1"}))
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        result = await fetcher.collect([7], force_refresh=True)

        assert endpoint.calls == {7: 4}
        assert result.missing_recipes == [7]
        assert result.error_count == 1
        assert result.errors[0].startswith("Recipe 7: ")
        assert result.success is False
        # three retry waits of Retry-After + jitter, then the group pause
        assert sleep_recorder.calls == [1.5, 1.5, 1.5, 0]

    @pytest.mark.asyncio
    async def test_default_retry_after_when_header_missing(self, cache, test_settings, sleep_recorder):
        def responder(recipe_id, attempt):
            return httpx.Response(429) if attempt == 0 else ok_response()

        endpoint = RecipeEndpoint(responder)
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        result = await fetcher.collect([3])

        assert endpoint.calls == {3: 2}
        assert result.fetched_count == 1
        assert result.error_count == 0
        assert sleep_recorder.calls[0] == 5.5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header,expected_wait", [
        ("inf", 5.5),
        ("nan", 5.5),
        ("-3", 5.5),
        ("soon", 5.5),
        ("3600", 60.5),
    ])
    async def test_unusable_or_huge_retry_after_is_bounded(
        self, cache, test_settings, sleep_recorder, header, expected_wait
    ):
        def responder(recipe_id, attempt):
            if attempt == 0:
                return httpx.Response(429, headers={"Retry-After": header})
            return ok_response()

        endpoint = RecipeEndpoint(responder)
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        result = await fetcher.collect([1], force_refresh=True)

        assert endpoint.calls == {1: 2}
        assert result.fetched_count == 1
        assert sleep_recorder.calls[0] == expected_wait


class TestOutcomes:

    @pytest.mark.asyncio
    async def test_not_found_is_benign(self, cache, test_settings, sleep_recorder):
        endpoint = RecipeEndpoint(lambda recipe_id, attempt: httpx.Response(404))
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        result = await fetcher.collect([404])

        assert result.not_found_count == 1
        assert result.error_count == 0
        assert result.fetched_count == 0
        assert result.missing_recipes == []
        assert result.success is True
        assert 404 not in cache

    @pytest.mark.asyncio
    async def test_empty_parse_is_not_cached_or_counted_as_error(self, cache, test_settings, sleep_recorder):
        empty_table = '<table class="nutrition-facts-table"><tr><td>n/a</td></tr></table>'
        endpoint = RecipeEndpoint(
            lambda recipe_id, attempt: httpx.Response(200, json={"success": True, "html": empty_table})
        )
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        result = await fetcher.collect([9])

        assert result.empty_count == 1
        assert result.error_count == 0
        assert 9 not in cache

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response,expected", [
        (httpx.Response(200, json={"success": False, "html": ""}), "Invalid response format"),
        (httpx.Response(200, text="<html>maintenance</html>"), "not JSON"),
        (httpx.Response(500), "Status: 500"),
    ])
    async def test_failures_are_reported_per_recipe(
        self, cache, test_settings, sleep_recorder, response, expected
    ):
        endpoint = RecipeEndpoint(lambda recipe_id, attempt: response)
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        result = await fetcher.collect([11])

        assert endpoint.calls == {11: 1}
        assert result.error_count == 1
        assert result.missing_recipes == [11]
        assert expected in result.errors[0]

    @pytest.mark.asyncio
    async def test_transport_error_is_a_failure(self, cache, test_settings, sleep_recorder):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = NutritionFetcher(cache, settings=test_settings, client=client, sleep=sleep_recorder)

        result = await fetcher.collect([12])

        assert result.missing_recipes == [12]
        assert "connection refused" in result.errors[0]


class TestCollection:

    @pytest.mark.asyncio
    async def test_sample_ids_against_empty_cache(self, storage, cache, test_settings, sleep_recorder):
        def responder(recipe_id, attempt):
            return httpx.Response(500) if recipe_id == 37 else ok_response()

        endpoint = RecipeEndpoint(responder)
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        result = await fetcher.collect([10, 17, 20, 37, 38])

        assert result.fetched_count + result.error_count == 5
        assert result.skipped_count == 0
        assert result.error_count == 1
        assert result.success is True

        reloaded = NutritionCache(storage, "nutrition_cache.json")
        await reloaded.load()
        assert sorted(reloaded.recipe_ids()) == [10, 17, 20, 38]

    @pytest.mark.asyncio
    async def test_half_failing_is_not_success(self, cache, test_settings, sleep_recorder):
        def responder(recipe_id, attempt):
            return httpx.Response(500) if recipe_id % 2 else ok_response()

        endpoint = RecipeEndpoint(responder)
        fetcher = make_fetcher(cache, test_settings, endpoint, sleep_recorder)

        result = await fetcher.collect([1, 2, 3, 4])

        assert result.error_count == 2
        assert result.success is False

    @pytest.mark.asyncio
    async def test_groups_and_batches_are_paced(self, cache, test_settings, sleep_recorder):
        in_flight = 0
        peak = 0

        async def handler(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return ok_response()

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = NutritionFetcher(
            cache,
            settings=test_settings,
            client=client,
            sleep=sleep_recorder,
            concurrent_requests=2,
            batch_size=4,
            delay_between_items=0.1,
            delay_between_batches=1.0
        )

        result = await fetcher.collect([1, 2, 3, 4, 5])

        assert result.fetched_count == 5
        assert peak == 2
        # batch 1: two groups, then the batch pause; batch 2: one group, no trailing pause
        assert sleep_recorder.calls == [0.1, 0.1, 1.0, 0.1]

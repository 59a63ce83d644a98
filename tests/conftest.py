"""
Shared fixtures: sample markup, settings without delays, temp storage and a
recording sleep so retry and pacing waits don't slow the suite down.
"""

import logfire
import pytest

from config.settings import Settings
from services.nutrition_cache import NutritionCache
from storage.blob_storage import LocalBlobStorage

logfire.configure(send_to_logfire=False, console=False)


NUTRITION_HTML = """
<table class="nutrition-facts-table">
  <thead>
    <tr class="main-line"><th colspan="2">Amount Per Serving 1 each</th></tr>
  </thead>
  <tbody>
    <tr class="main-line"><td><b>Calories</b> 90</td><td></td></tr>
    <tr><td colspan="2">% Daily Value*</td></tr>
    <tr class="main-line"><td><b>Total Fat</b> 3g</td><td>5%</td></tr>
    <tr><td>Saturated Fat</td><td>1g</td></tr>
    <tr><td>Trans Fat</td><td>0g</td></tr>
    <tr><td>Cholesterol</td><td>10mg</td><td>3%</td></tr>
    <tr><td>Sodium:</td><td>140mg</td></tr>
    <tr class="main-line"><td><b>Total Carbohydrate</b> 12g</td><td>4%</td></tr>
    <tr><td>Dietary Fiber *</td><td>2g</td></tr>
    <tr><td>Sugars</td><td>3g</td></tr>
    <tr class="main-line"><td><b>Protein</b> 4g</td><td></td></tr>
    <tr><td>Vitamin D</td><td>2%</td></tr>
    <tr><td class="blank-cell"></td><td>1g</td></tr>
    <tr><td>Calcium</td><td>20</td></tr>
  </tbody>
</table>
"""

EXPECTED_NUTRITION = {
    "Serving Size": "1 each",
    "Calories": "90",
    "Fat": "3g",
    "Saturated Fat": "1g",
    "Trans Fat": "0g",
    "Cholesterol": "10mg",
    "Sodium": "140mg",
    "Carbohydrate": "12g",
    "Dietary Fiber": "2g",
    "Sugars": "3g",
    "Protein": "4g",
}

TABBED_MENU_HTML = """
<html><body>
<div class="c-tabs">
  <ul class="c-tabs-nav">
    <li><a class="c-tabs-nav__link" data-content-id="tab-breakfast"><span class="c-tabs-nav__link-inner">Breakfast</span></a></li>
    <li><a class="c-tabs-nav__link" data-content-id="tab-lunch"><span class="c-tabs-nav__link-inner">Lunch</span></a></li>
  </ul>
  <div class="c-tab" id="tab-breakfast">
    <div class="menu-station">
      <h4 class="station-title">Griddle</h4>
      <a class="show-nutrition prop-vegetarian" data-recipe="101">Buttermilk Pancakes</a>
      <a class="show-nutrition" data-recipe="102">Turkey Sausage</a>
    </div>
  </div>
  <div class="c-tab" id="tab-lunch">
    <div class="menu-station">
      <h4 class="station-title">Grill</h4>
      <a class="show-nutrition" data-recipe="201">Cheeseburger</a>
    </div>
    <div class="menu-station">
      <h4 class="station-title">Salad Bar</h4>
      <a class="show-nutrition prop-vegan prop-vegetarian prop-made_without_gluten" data-recipe="202">Garden Salad</a>
    </div>
    <a class="show-nutrition" data-recipe="203">Fruit Cup</a>
  </div>
</div>
</body></html>
"""

HEADING_MENU_HTML = """
<html><body>
<h2 class="f-hbold">Today's Menu</h2>
<div class="menu">
  <h3 class="menu-section-title">Lunch</h3>
  <div class="menu-station"><h5>Deli</h5><a class="show-nutrition" data-recipe="301">Turkey Club</a></div>
  <h3 class="menu-section-title">Dinner</h3>
  <div class="menu-station"><h5>Pasta</h5><a class="show-nutrition" data-recipe="302">Penne Marinara</a></div>
</div>
</body></html>
"""

PLAIN_MENU_HTML = """
<html><body>
<div class="menu-station">
  <h4 class="station-title">Soup</h4>
  <a class="show-nutrition" data-recipe="401">Tomato Soup</a>
</div>
<div class="promo"><a class="show-nutrition" data-recipe="402">Grilled Cheese</a></div>
</body></html>
"""


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested waits"""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def test_settings():
    return Settings(
        base_url="https://dining.test",
        locations=["hall-lunch", "cafe"],
        days_ahead=2,
        concurrent_requests=5,
        batch_size=25,
        delay_between_items=0,
        delay_between_batches=0,
        delay_between_locations=0,
        max_rate_limit_retries=3,
        default_retry_after=5.0,
    )


@pytest.fixture
def storage(tmp_path):
    return LocalBlobStorage(str(tmp_path / "blobs"))


@pytest.fixture
def cache(storage):
    return NutritionCache(storage, "nutrition_cache.json")


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()

"""
Menu page parser for dining location pages.

Turns one rendered location/date page into meal period -> station -> item structure.
The markup differs between locations, so meal periods are detected with tiered
strategies, each tried in order until one finds something:

    Tier 1: tab navigation (each tab points at its content panel)
    Tier 2: section headings such as "Breakfast" or "Late Night"
    Tier 3: a single period guessed from the location slug

If the detected periods end up with no items even though the page has item links,
every item link is put into one fallback period.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from models.menu import FoodItem, MealPeriod, MenuPage
from parsers.slug import generate_slug

logger = logging.getLogger(__name__)

ITEM_SELECTOR = "a.show-nutrition"
TAB_SELECTOR = ".c-tabs-nav__link"
TAB_LABEL_SELECTOR = ".c-tabs-nav__link-inner"
TAB_CLASS = "c-tabs-nav__link"
CONTENT_ID_ATTR = "data-content-id"
HEADING_SELECTOR = ".menu-section-title, h2.f-hbold, h3.f-hbold"
EXCLUDED_HEADING_WORDS = ("Menu", "Options")
STATION_CLASS = "menu-station"
STATION_TITLE_SELECTOR = ".station-title"
DEFAULT_STATION = "Unknown"
DEFAULT_PERIOD = "All Day"

VEGETARIAN_CLASS = "prop-vegetarian"
VEGAN_CLASS = "prop-vegan"
GLUTEN_FREE_CLASS = "prop-made_without_gluten"


@dataclass
class PeriodRegion:
    """A detected meal period and the elements that hold its items"""
    period_id: str
    name: str
    elements: Optional[List[Tag]] = None  # None means search the whole page


PeriodStrategy = Callable[[BeautifulSoup, str], List[PeriodRegion]]


def infer_default_period(location: str) -> str:
    """Guess the meal period from the location slug, e.g. "hall-lunch" -> "Lunch" """
    slug = location.lower()
    for keyword in ("breakfast", "lunch", "dinner"):
        if keyword in slug:
            return keyword.capitalize()
    return DEFAULT_PERIOD


def _find_tab_panel(soup: BeautifulSoup, content_id: str) -> Optional[Tag]:
    panel = soup.find(id=content_id)
    if panel is not None:
        return panel
    for candidate in soup.find_all(attrs={CONTENT_ID_ATTR: content_id}):
        if TAB_CLASS not in (candidate.get("class") or []):
            return candidate
    return None


def detect_tab_periods(soup: BeautifulSoup, location: str) -> List[PeriodRegion]:
    """
    Tier 1: Meal periods from tab navigation.

    Each tab link carries a content id naming the panel that holds its menu.
    Tabs whose panel can't be found still count, their items are searched page-wide.
    """
    regions = []
    for index, link in enumerate(soup.select(TAB_SELECTOR)):
        label = link.select_one(TAB_LABEL_SELECTOR) or link
        name = label.get_text(" ", strip=True)
        if not name:
            continue

        content_id = (link.get(CONTENT_ID_ATTR) or "").strip()
        panel = _find_tab_panel(soup, content_id) if content_id else None
        if panel is None:
            logger.debug(f"No content panel for tab '{name}' at {location}")

        regions.append(PeriodRegion(
            period_id=content_id or f"period-{index}",
            name=name,
            elements=[panel] if panel is not None else None
        ))
    return regions


def detect_heading_periods(soup: BeautifulSoup, location: str) -> List[PeriodRegion]:
    """
    Tier 2: Meal periods from section headings.

    Headings mentioning "Menu" or "Options" are page titles, not periods. A heading's
    content is every following sibling up to the next period heading. A heading that
    stands alone in a wrapper element takes the siblings of that wrapper instead.
    """
    headings = []
    for index, heading in enumerate(soup.select(HEADING_SELECTOR)):
        text = heading.get_text(" ", strip=True)
        if text and not any(word in text for word in EXCLUDED_HEADING_WORDS):
            headings.append((index, heading, text))

    heading_ids = {id(heading) for _, heading, _ in headings}

    def is_boundary(element: Tag) -> bool:
        if id(element) in heading_ids:
            return True
        return any(id(nested) in heading_ids for nested in element.select(HEADING_SELECTOR))

    def content_anchor(heading: Tag) -> Tag:
        # Headings wrapped in their own container: their content follows the wrapper
        anchor = heading
        while not any(isinstance(s, Tag) for s in anchor.find_next_siblings()):
            if anchor.parent is None or isinstance(anchor.parent, BeautifulSoup):
                break
            anchor = anchor.parent
        return anchor

    regions = []
    for index, heading, text in headings:
        section = []
        for sibling in content_anchor(heading).find_next_siblings():
            if not isinstance(sibling, Tag):
                continue
            if is_boundary(sibling):
                break
            section.append(sibling)

        regions.append(PeriodRegion(
            period_id=f"section-{index}",
            name=text,
            elements=section or None
        ))
    return regions


def detect_default_period(soup: BeautifulSoup, location: str) -> List[PeriodRegion]:
    """Tier 3: One period named after the location, covering the whole page"""
    return [PeriodRegion(period_id="default", name=infer_default_period(location))]


PERIOD_STRATEGIES: List[PeriodStrategy] = [
    detect_tab_periods,
    detect_heading_periods,
    detect_default_period,
]


def detect_meal_periods(soup: BeautifulSoup, location: str) -> List[PeriodRegion]:
    """Run the period strategies in order and keep the first non-empty result"""
    for strategy in PERIOD_STRATEGIES:
        regions = strategy(soup, location)
        if regions:
            logger.debug(
                f"{strategy.__name__} found {len(regions)} meal periods for {location}: "
                f"{[region.name for region in regions]}"
            )
            return regions
    return []


def find_item_markers(soup: BeautifulSoup, region: PeriodRegion) -> List[Tag]:
    """Item links inside a period's elements, or on the whole page"""
    if region.elements is None:
        return soup.select(ITEM_SELECTOR)

    markers = []
    for element in region.elements:
        if element.name == "a" and "show-nutrition" in (element.get("class") or []):
            markers.append(element)
        markers.extend(element.select(ITEM_SELECTOR))
    return markers


def resolve_station_name(marker: Tag) -> str:
    """Name of the nearest enclosing station container"""
    for parent in marker.parents:
        if STATION_CLASS not in (parent.get("class") or []):
            continue
        title = parent.select_one(STATION_TITLE_SELECTOR) or parent.find(["h4", "h5"])
        name = title.get_text(" ", strip=True) if title else ""
        return name or DEFAULT_STATION
    return DEFAULT_STATION


def parse_food_item(marker: Tag, time_fetched: str) -> Tuple[FoodItem, str]:
    """Build a FoodItem from an item link. Returns (item, station name)."""
    classes = marker.get("class") or []
    item = FoodItem(
        name=marker.get_text(" ", strip=True),
        recipe_id=(marker.get("data-recipe") or "").strip(),
        vegetarian=VEGETARIAN_CLASS in classes,
        vegan=VEGAN_CLASS in classes,
        gluten_free=GLUTEN_FREE_CLASS in classes,
        time_fetched=time_fetched,
    )
    return item, resolve_station_name(marker)


def _add_markers(period: MealPeriod, markers: List[Tag], time_fetched: str) -> None:
    for marker in markers:
        item, station_name = parse_food_item(marker, time_fetched)
        period.station(station_name).add(item, generate_slug(item.name, item.recipe_id))


def parse_menu_page(
    html: str,
    location: str,
    date: str,
    time_fetched: Optional[str] = None
) -> MenuPage:
    """
    Parse one location/date page.

    Never raises: a page that can't be parsed comes back with no meal periods.

    Args:
        html: Rendered page markup
        location: Location slug, also used to guess the default meal period
        date: Menu date (YYYY-MM-DD)
        time_fetched: ISO timestamp stamped on every item (defaults to now)

    Returns:
        MenuPage with meal periods in detection order
    """
    time_fetched = time_fetched or datetime.now().isoformat()
    page = MenuPage(location=location, date=date)

    try:
        soup = BeautifulSoup(html, 'html.parser')
        periods = {}
        for region in detect_meal_periods(soup, location):
            period = periods.setdefault(region.name, MealPeriod())
            _add_markers(period, find_item_markers(soup, region), time_fetched)

        if sum(period.item_count for period in periods.values()) == 0:
            markers = soup.select(ITEM_SELECTOR)
            if markers:
                fallback_name = infer_default_period(location)
                logger.info(
                    f"Meal periods for {location} on {date} held no items, "
                    f"attaching {len(markers)} items to '{fallback_name}'"
                )
                fallback = MealPeriod()
                _add_markers(fallback, markers, time_fetched)
                periods = {fallback_name: fallback}

        page.meal_periods = periods
    except Exception as e:
        logger.error(f"Failed to parse menu for {location} on {date}: {str(e)}")
        page.meal_periods = {}

    logger.info(f"Total items found for {location} on {date}: {page.item_count}")
    return page

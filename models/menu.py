from datetime import datetime
from typing import Dict, List, Optional
from pydantic import Field

from .base import CamelModel


class FoodItem(CamelModel):
    """A single menu item. Nutrition lives in the nutrition cache, keyed by recipe id."""
    name: str = Field(..., description="Display name of the item")
    recipe_id: str = Field("", description="Raw recipe id from the menu markup", alias="recipeId")
    vegetarian: bool = False
    vegan: bool = False
    gluten_free: bool = Field(False, alias="glutenFree")
    time_fetched: str = Field(
        default_factory=lambda: datetime.now().isoformat(),
        description="ISO timestamp of the page fetch",
        alias="timeFetched",
    )

    @property
    def recipe_number(self) -> Optional[int]:
        """Numeric recipe id, or None when the raw id is empty, zero or not a number"""
        raw = self.recipe_id.strip()
        if not raw.isdigit():
            return None
        number = int(raw)
        return number if number > 0 else None


class Station(CamelModel):
    """A serving counter. items and item_ids are parallel sequences in document order."""
    items: List[FoodItem] = Field(default_factory=list)
    item_ids: List[str] = Field(default_factory=list, alias="itemIDs")

    def add(self, item: FoodItem, slug: str) -> None:
        self.items.append(item)
        self.item_ids.append(slug)


class MealPeriod(CamelModel):
    stations: Dict[str, Station] = Field(default_factory=dict)

    def station(self, name: str) -> Station:
        if name not in self.stations:
            self.stations[name] = Station()
        return self.stations[name]

    @property
    def item_count(self) -> int:
        return sum(len(station.items) for station in self.stations.values())


class MenuPage(CamelModel):
    """Extraction result for one location on one date"""
    location: str
    date: str
    meal_periods: Dict[str, MealPeriod] = Field(default_factory=dict, alias="mealPeriods")

    @property
    def item_count(self) -> int:
        return sum(period.item_count for period in self.meal_periods.values())

    def iter_items(self):
        """Yield (slug, item) pairs across every period and station"""
        for period in self.meal_periods.values():
            for station in period.stations.values():
                yield from zip(station.item_ids, station.items)


# Normalized per-date artifact

class StationIndex(CamelModel):
    item_ids: List[str] = Field(default_factory=list, alias="itemIDs")


class PeriodIndex(CamelModel):
    stations: Dict[str, StationIndex] = Field(default_factory=dict)


class LocationMenu(CamelModel):
    meal_periods: Dict[str, PeriodIndex] = Field(default_factory=dict, alias="mealPeriods")


class DailyMenu(CamelModel):
    """All locations for one date, with items flattened into a slug-keyed map"""
    date: str
    locations: Dict[str, LocationMenu] = Field(default_factory=dict)
    items: Dict[str, FoodItem] = Field(default_factory=dict)
    slug_collisions: int = Field(0, alias="slugCollisions")

    def recipe_numbers(self) -> List[int]:
        """Distinct positive recipe ids referenced by any station, in first-seen order"""
        seen = {}
        for location in self.locations.values():
            for period in location.meal_periods.values():
                for station in period.stations.values():
                    for slug in station.item_ids:
                        item = self.items.get(slug)
                        if item and item.recipe_number is not None:
                            seen.setdefault(item.recipe_number, None)
        return list(seen)

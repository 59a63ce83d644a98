from typing import Dict, List, Optional
from pydantic import Field

from .base import CamelModel


# Nutrient label -> display value, e.g. {"Calories": "90", "Sodium": "140mg"}
NutritionRecord = Dict[str, str]


class CollectionResult(CamelModel):
    """Outcome of one nutrition collection run"""
    success: bool = False
    total_recipes: int = Field(0, alias="totalRecipes")
    fetched_count: int = Field(0, alias="fetchedCount")
    skipped_count: int = Field(0, alias="skippedCount")
    error_count: int = Field(0, alias="errorCount")
    not_found_count: int = Field(0, alias="notFoundCount")
    empty_count: int = Field(0, alias="emptyCount")
    missing_recipes: List[int] = Field(default_factory=list, alias="missingRecipes")
    errors: List[str] = Field(default_factory=list)

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": True,
                "totalRecipes": 5,
                "fetchedCount": 4,
                "skippedCount": 0,
                "errorCount": 1,
                "notFoundCount": 0,
                "emptyCount": 0,
                "missingRecipes": [37],
                "errors": ["Recipe 37: Rate limited after 3 retries"]
            }
        }
    }


class CacheStatus(CamelModel):
    total_entries: int = Field(..., alias="totalEntries")
    cache_size: str = Field(..., alias="cacheSize")
    last_updated: str = Field(..., alias="lastUpdated")


class ScrapeSummary(CamelModel):
    """What one scheduled scrape did across the date window"""
    dates_processed: List[str] = Field(default_factory=list, alias="datesProcessed")
    dates_skipped: List[str] = Field(default_factory=list, alias="datesSkipped")
    failed_pages: List[str] = Field(default_factory=list, alias="failedPages")
    item_count: int = Field(0, alias="itemCount")
    nutrition: Optional[CollectionResult] = None

"""
Nutrition facts parser for the recipe lookup endpoint.

The endpoint answers {"success": true, "html": "<table class='nutrition-facts-table'>..."}.
Parses that fragment into a label -> value mapping like:
{
    "Serving Size": "1 each",
    "Calories": "90",
    "Fat": "3g",
    "Carbohydrate": "12g",
    "Protein": "4g",
    "Sodium": "140mg"
}
"""

import re
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup

from services.exceptions import NutritionParseError

TABLE_SELECTOR = "table.nutrition-facts-table"
SERVING_SELECTOR = f"{TABLE_SELECTOR} thead tr.main-line th"
PRIMARY_ROW_SELECTOR = f"{TABLE_SELECTOR} tr.main-line"
ROW_SELECTOR = f"{TABLE_SELECTOR} tr"

SERVING_PATTERN = re.compile(r"Amount Per Serving\s+(.*)", re.IGNORECASE)

# (trigger text, pattern, stored label)
PRIMARY_NUTRIENTS = [
    ("Calories", re.compile(r"Calories\s+(\d+)", re.IGNORECASE), "Calories"),
    ("Fat", re.compile(r"Total Fat\s+([\d.]+\s*g)", re.IGNORECASE), "Fat"),
    ("Carbohydrate", re.compile(r"Total Carbohydrate\s+([\d.]+\s*g)", re.IGNORECASE), "Carbohydrate"),
    ("Protein", re.compile(r"Protein\s+([\d.]+\s*g)", re.IGNORECASE), "Protein"),
]

# Rows handled above, or header rows without a value
SKIPPED_ROW_MARKERS = (
    "Amount Per Serving",
    "Calories",
    "Total Fat",
    "Total Carbohydrate",
    "Protein",
    "% Daily Value",
)

LABEL_TRAILING_PATTERN = re.compile(r"[\s*:]+$")
VALUE_PATTERN = re.compile(r"[\d.]+\s*[a-z]+", re.IGNORECASE)
VALUE_TRAILING_PERCENT_PATTERN = re.compile(r"\s*\d+%?$")


def _validate_envelope(envelope: Any, recipe_id: Optional[str]) -> str:
    if not isinstance(envelope, dict):
        raise NutritionParseError(recipe_id, "response is not a JSON object")
    if not envelope.get("success"):
        raise NutritionParseError(recipe_id, "success flag is false")
    html = envelope.get("html")
    if not isinstance(html, str) or not html.strip():
        raise NutritionParseError(recipe_id, "html is empty")
    return html


def parse_nutrition_html(html: str) -> Dict[str, str]:
    """
    Parse a nutrition facts table fragment.

    Returns an empty dict when nothing recognizable is in the table. That is a normal
    outcome for items the dining site has no facts for.
    """
    soup = BeautifulSoup(html, 'html.parser')
    nutrition: Dict[str, str] = {}

    # Serving size lives in the table header
    serving_text = " ".join(th.get_text(" ", strip=True) for th in soup.select(SERVING_SELECTOR))
    serving_match = SERVING_PATTERN.search(serving_text)
    if serving_match and serving_match.group(1).strip():
        nutrition["Serving Size"] = serving_match.group(1).strip()

    # The four primary nutrients
    for row in soup.select(PRIMARY_ROW_SELECTOR):
        text = row.get_text(" ", strip=True)
        for trigger, pattern, label in PRIMARY_NUTRIENTS:
            if trigger not in text:
                continue
            match = pattern.search(text)
            if match:
                nutrition[label] = match.group(1).strip()

    # Everything else: two-cell label/value rows
    for row in soup.select(ROW_SELECTOR):
        row_text = row.get_text(" ", strip=True)
        if any(marker in row_text for marker in SKIPPED_ROW_MARKERS):
            continue

        cells = row.find_all(["td", "th"])
        if len(cells) < 2:
            continue

        name = LABEL_TRAILING_PATTERN.sub("", cells[0].get_text(" ", strip=True)).strip()
        value = cells[1].get_text(" ", strip=True)

        if (
            name
            and value
            and "blank-cell" not in name
            and "%" not in value
            and VALUE_PATTERN.search(value)
        ):
            value = VALUE_TRAILING_PERCENT_PATTERN.sub("", value).strip()
            if value:
                nutrition[name] = value

    return nutrition


def parse_nutrition_response(envelope: Any, recipe_id: Optional[str] = None) -> Dict[str, str]:
    """
    Parse a recipe lookup response envelope.

    Args:
        envelope: Decoded JSON body, expected {"success": bool, "html": str}
        recipe_id: Only used in error messages

    Returns:
        Nutrient label -> value mapping, possibly empty

    Raises:
        NutritionParseError: success is false or html is missing
    """
    html = _validate_envelope(envelope, recipe_id)
    return parse_nutrition_html(html)

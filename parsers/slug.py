"""
Stable item identifiers for menu items.

The slug only depends on (name, recipe id), so the same dish gets the same key
every time a page is scraped.
"""
import re
import uuid
from typing import Optional

MAX_NAME_LENGTH = 50
RECIPE_SUFFIX_LENGTH = 6

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def _slugify(text: str) -> str:
    return _NON_ALNUM.sub("-", text.lower()).strip("-")


def generate_slug(name: str, recipe_id: Optional[str] = None) -> str:
    """
    Build a slug like "grilled-chicken-breast-001234".

    Args:
        name: Item name as shown on the menu
        recipe_id: Raw recipe id string; "0" and empty values are ignored

    Returns:
        Slug matching ^[a-z0-9-]+$
    """
    base = _slugify(name or "")[:MAX_NAME_LENGTH].rstrip("-")
    recipe_part = _slugify(str(recipe_id)) if recipe_id is not None else ""
    has_recipe = bool(recipe_part) and str(recipe_id).strip() != "0"

    if not base:
        return f"item-{recipe_part if has_recipe else uuid.uuid4().hex[:8]}"

    if has_recipe:
        return f"{base}-{recipe_part[-RECIPE_SUFFIX_LENGTH:].lstrip('-')}"
    return base

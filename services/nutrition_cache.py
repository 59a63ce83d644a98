"""
Nutrition cache persisted as one JSON object in blob storage.

Maps recipe id (as a string) to its nutrition record. Empty records are never
stored, so recipes that came back empty are looked up again on the next run.
"""
import json
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from models.nutrition import CacheStatus, NutritionRecord
from services.exceptions import BlobNotFoundError, StorageError
from storage.blob_storage import BlobStorage

logger = logging.getLogger(__name__)


class NutritionCache:
    """In-memory recipe id -> nutrition mapping with explicit load/save"""

    def __init__(self, storage: BlobStorage, filename: str = "nutrition_cache.json"):
        self.storage = storage
        self.filename = filename
        self.entries: Dict[str, NutritionRecord] = {}
        self.last_updated: Optional[datetime] = None

    async def load(self) -> None:
        """Load the cache from storage. Missing or unreadable data gives an empty cache."""
        logger.info(f"Loading nutrition cache ({self.filename})...")
        try:
            if not await self.storage.exists(self.filename):
                logger.info(f"Nutrition cache ({self.filename}) not found. Initializing empty cache.")
                self.entries = {}
                return

            data = json.loads((await self.storage.get(self.filename)).decode("utf-8"))
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")

            self.entries = {
                str(recipe_id): {str(k): str(v) for k, v in record.items()}
                for recipe_id, record in data.items()
                if isinstance(record, dict) and record
            }
            self.last_updated = datetime.now()
            logger.info(f"Loaded {len(self.entries)} cached nutrition items.")
        except (BlobNotFoundError, StorageError, ValueError, UnicodeDecodeError) as e:
            logger.error(f"Error loading nutrition cache: {str(e)}")
            logger.info("Initializing empty nutrition cache due to error.")
            self.entries = {}

    async def save(self) -> None:
        """Write the whole cache back. Storage failures propagate."""
        payload = json.dumps(self.entries, indent=2, ensure_ascii=False).encode("utf-8")
        await self.storage.put(
            self.filename,
            payload,
            content_type="application/json",
            upsert=True
        )
        self.last_updated = datetime.now()
        logger.info(f"Successfully saved {len(self.entries)} nutrition items as {self.filename}")

    def get(self, recipe_id) -> Optional[NutritionRecord]:
        """Copy of the cached record, or None when absent or empty"""
        record = self.entries.get(str(recipe_id))
        if not record:
            return None
        return dict(record)

    def put(self, recipe_id, record: NutritionRecord) -> bool:
        """Store a copy of a non-empty record. Returns whether it was stored."""
        if not record:
            return False
        self.entries[str(recipe_id)] = dict(record)
        return True

    def has(self, recipe_id) -> bool:
        return bool(self.entries.get(str(recipe_id)))

    def recipe_ids(self) -> List[int]:
        """Numeric ids of every usable entry"""
        return [int(key) for key, record in self.entries.items() if record and key.isdigit()]

    def missing(self, recipe_ids: Iterable) -> List[str]:
        """Ids (as strings) without a usable entry, in input order"""
        seen = set()
        missing = []
        for recipe_id in recipe_ids:
            key = str(recipe_id)
            if key in seen:
                continue
            seen.add(key)
            if not self.has(key):
                missing.append(key)
        return missing

    def status(self) -> CacheStatus:
        size_kb = round(len(json.dumps(self.entries).encode("utf-8")) / 1024)
        return CacheStatus(
            total_entries=len(self.entries),
            cache_size=f"{size_kb} KB",
            last_updated=(self.last_updated or datetime.now()).isoformat(),
        )

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, recipe_id) -> bool:
        return self.has(recipe_id)

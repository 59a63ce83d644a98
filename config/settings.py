from typing import List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Dining site
    base_url: str = "https://www.hoyaeats.com"
    locations: List[str] = [
        "fresh-food-company",
        "leo-mkt-5spice",
        "leo-mkt-olive-branch",
        "leo-mkt-whisk",
        "leo-mkt-bodega",
        "leo-mkt-sazon",
        "leo-mkt-launch",
        "mccourt",
        "hoya-court-chop-chop",
        "royal-jacket-deli",
        "epicurean-pizza",
        "epi-noodle-bar",
        "epicurean-and-company",
    ]
    days_ahead: int = 7

    # Rate limiting for the nutrition endpoint
    concurrent_requests: int = 5
    batch_size: int = 25
    delay_between_items: float = 0.2  # seconds
    delay_between_batches: float = 1.0
    delay_between_locations: float = 1.0
    max_rate_limit_retries: int = 3
    default_retry_after: float = 5.0
    max_retry_after: float = 60.0  # cap on a server-supplied Retry-After
    request_timeout: float = 30.0

    # Storage
    cache_filename: str = "nutrition_cache.json"
    storage_directory: str = "storage/data"
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    supabase_bucket: str = "menus"

    # Runs on this weekday (Monday=0) re-fetch every cached recipe
    full_refresh_weekday: int = 6
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False  # Allow SUPABASE_URL or supabase_url
        extra = "ignore"


# Create singleton instance
settings = Settings()

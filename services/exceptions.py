"""
Custom exception classes for menu and nutrition collection
"""
from typing import Optional


class MenuCollectorError(Exception):
    """Base exception for menu and nutrition collection"""
    pass


class NutritionParseError(MenuCollectorError):
    """Raised when a nutrition lookup returns an unusable envelope"""
    def __init__(self, recipe_id: Optional[str], reason: str):
        self.recipe_id = recipe_id
        self.reason = reason
        super().__init__(f"Invalid response format: {reason}")


class RateLimitedError(MenuCollectorError):
    """Raised when the nutrition endpoint keeps answering 429"""
    def __init__(self, recipe_id: str, attempts: int, retry_after: float):
        self.recipe_id = recipe_id
        self.attempts = attempts
        self.retry_after = retry_after
        super().__init__(f"Rate limited after {attempts - 1} retries (status 429)")


class StorageError(MenuCollectorError):
    """Raised when the blob store rejects a read or write"""
    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Storage operation on '{name}' failed: {reason}")


class BlobNotFoundError(StorageError):
    """Raised when a requested blob does not exist"""
    def __init__(self, name: str):
        super().__init__(name, "object not found")

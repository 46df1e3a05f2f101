"""
Exception types shared by the asset explorer components.
"""

from typing import Any, Dict, Optional


class AssetExplorerError(Exception):
    """Base class for asset explorer errors."""


class FilterValidationError(AssetExplorerError):
    """Filter specification could not be compiled into a query."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or {}


class QueryExecutionError(AssetExplorerError):
    """Backing store failed while counting or fetching a page."""


class HierarchyPathNotFound(AssetExplorerError):
    """An id in a hierarchy path does not belong to its claimed parent."""

    def __init__(self, message: str, level: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.level = level


class ApiError(AssetExplorerError):
    """Non-success response from the portal API."""

    def __init__(self, status: int, message: str, data: Optional[Any] = None):
        super().__init__(f"API error {status}: {message}")
        self.status = status
        self.message = message
        self.data = data

    @property
    def is_transient(self) -> bool:
        return self.status >= 500 or self.status == 429

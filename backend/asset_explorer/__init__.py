"""
Asset Explorer - Filtered asset view and lazy hierarchy browsing

Core of the clinical asset browser, independent of the web service.

Components:
    - filter_compiler: FilterSpec → parameterized WHERE clause, sort and page window
    - query_executor: count + page fetch against a StoragePort, AssetRecord normalization
    - hierarchy_cache: generic keyed cache with per-key load state
    - hierarchy_explorer: Site → Subject → Event → Procedure → Asset disclosure
    - api_client: requests client for the portal API and the matching hierarchy loader
    - country_codes / formatting: static lookups and display helpers

Usage:
    from asset_explorer import FilterSpec, QueryExecutor, compile_filters

    query = compile_filters(FilterSpec.from_dict({"trials": ["Trial A"], "limit": 50}))
    result = QueryExecutor().execute(query, store)
    response = result.to_response()

    explorer = HierarchyExplorer(ApiHierarchyLoader(PortalApiClient("http://localhost:8000")))
    explorer.toggle_expand(HierarchyPath.of(42))
    await explorer.settle()
"""

__version__ = "1.0.0"

from asset_explorer.errors import (
    ApiError,
    AssetExplorerError,
    FilterValidationError,
    HierarchyPathNotFound,
    QueryExecutionError,
)

# Filtering
from asset_explorer.data_models import (
    AssetRecord,
    CompiledQuery,
    DataViewMode,
    DateRange,
    FilterSpec,
    ProcessedStatus,
    ReviewStatus,
    SortDirection,
    SortSpec,
    WhereClause,
)
from asset_explorer.filter_compiler import PredicateBuilder, compile_filters
from asset_explorer.query_executor import QueryExecutor, QueryResult, StoragePort, normalize_asset_row

# Hierarchy
from asset_explorer.hierarchy_models import CacheEntry, CacheStatus, HierarchyLevel, HierarchyPath, Page
from asset_explorer.hierarchy_cache import HierarchyNodeCache
from asset_explorer.hierarchy_explorer import Breadcrumb, HierarchyExplorer, HierarchyLoader

# API client
from asset_explorer.api_client import ApiHierarchyLoader, PortalApiClient

__all__ = [
    # Errors
    "ApiError",
    "AssetExplorerError",
    "FilterValidationError",
    "HierarchyPathNotFound",
    "QueryExecutionError",
    # Filtering
    "AssetRecord",
    "CompiledQuery",
    "DataViewMode",
    "DateRange",
    "FilterSpec",
    "ProcessedStatus",
    "ReviewStatus",
    "SortDirection",
    "SortSpec",
    "WhereClause",
    "PredicateBuilder",
    "compile_filters",
    "QueryExecutor",
    "QueryResult",
    "StoragePort",
    "normalize_asset_row",
    # Hierarchy
    "CacheEntry",
    "CacheStatus",
    "HierarchyLevel",
    "HierarchyPath",
    "Page",
    "HierarchyNodeCache",
    "Breadcrumb",
    "HierarchyExplorer",
    "HierarchyLoader",
    # API client
    "ApiHierarchyLoader",
    "PortalApiClient",
]

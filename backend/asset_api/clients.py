"""
Portal API client and hierarchy explorer configured from application settings.
"""

from typing import Callable, Optional

from asset_explorer.api_client import ApiHierarchyLoader, PortalApiClient
from asset_explorer.hierarchy_explorer import HierarchyExplorer

from asset_api.config import get_settings

TokenProvider = Callable[[], Optional[str]]


def create_api_client(get_auth_token: Optional[TokenProvider] = None) -> PortalApiClient:
    """PortalApiClient pointed at API_BASE_URL with the configured retry policy."""
    settings = get_settings()
    return PortalApiClient(
        settings.api_base_url,
        get_auth_token=get_auth_token,
        timeout=settings.api_timeout_seconds,
        max_attempts=settings.api_retry_max_attempts,
        base_delay=settings.api_retry_base_delay,
        max_delay=settings.api_retry_max_delay,
    )


def create_hierarchy_explorer(
    get_auth_token: Optional[TokenProvider] = None,
    timeout: Optional[float] = None,
) -> HierarchyExplorer:
    """HierarchyExplorer over the portal API, paged per EXPLORER_PAGE_SIZE."""
    return HierarchyExplorer(
        ApiHierarchyLoader(create_api_client(get_auth_token)),
        page_size=get_settings().explorer_page_size,
        timeout=timeout,
    )

"""
Incident API Client - pull query and liveness collaborator.

Wraps the incident server's REST endpoints used by the sync engine:
the paginated incident listing and the health endpoint.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from src.core.config import settings

from .errors import ResyncError
from .models import IncidentFilter, IncidentPage

logger = logging.getLogger(__name__)


class IncidentApiClient:
    """
    Client for the incident server's REST API.

    ``get_incidents`` raises ResyncError on any failure so the resync
    scheduler can apply its backoff; ``check_health`` never raises.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_token: str = "",
        page_limit: Optional[int] = None,
        request_timeout: float = 30.0,
        health_timeout: Optional[float] = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url: API root. Defaults to settings.api_base_url.
            auth_token: Bearer token for authenticated requests.
            page_limit: Page size for the incident listing.
            request_timeout: Total timeout for listing requests (seconds).
            health_timeout: Total timeout for the health check (seconds).
        """
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.auth_token = auth_token
        self.page_limit = page_limit or settings.page_limit
        self.request_timeout = request_timeout
        self.health_timeout = health_timeout or settings.health_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    @staticmethod
    def _query_params(incident_filter: IncidentFilter, page: int, limit: int) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = [
            ("page", str(page)),
            ("limit", str(limit)),
            ("sortBy", "createdAt"),
            ("sortOrder", "desc"),
        ]
        for key, values in incident_filter.to_query().items():
            params.extend((key, value) for value in values)
        return params

    async def get_incidents(
        self,
        incident_filter: IncidentFilter,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> IncidentPage:
        """
        Fetch one page of incidents matching the filter.

        Args:
            incident_filter: The active view's filter.
            page: Page number (1-based).
            limit: Page size, defaults to page_limit.

        Returns:
            The parsed IncidentPage.

        Raises:
            ResyncError: On transport errors, timeouts or error statuses.
        """
        url = f"{self.base_url}{settings.incidents_path}"
        params = self._query_params(incident_filter, page, limit or self.page_limit)

        try:
            session = await self._get_session()
            async with session.get(
                url,
                params=params,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise ResyncError(
                        f"Incident listing failed ({response.status}): {error_text[:200]}",
                        status=response.status,
                    )
                body: Dict[str, Any] = await response.json()

        except aiohttp.ClientError as e:
            raise ResyncError(f"Incident listing connection error: {e}") from e
        except asyncio.TimeoutError as e:
            raise ResyncError("Incident listing timed out") from e

        # The server wraps the page in {"data": {...}}
        if isinstance(body.get("data"), dict):
            body = body["data"]

        page_result = IncidentPage.from_dict(body)
        logger.debug(
            f"Fetched {len(page_result.data)} incidents "
            f"(page {page_result.page}/{page_result.total_pages}, total {page_result.total})"
        )
        return page_result

    async def check_health(self) -> bool:
        """Lightweight liveness check. Returns False on any failure."""
        try:
            session = await self._get_session()
            async with session.head(
                f"{self.base_url}{settings.health_path}",
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.health_timeout),
            ) as response:
                return response.status < 400
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Health check failed: {e}")
            return False


__all__ = ["IncidentApiClient"]

"""
Defender for Cloud Apps API client.
MDCA list endpoints page with skip/limit in a POST body and report hasNext.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Optional

import httpx

from ..config import CLOUD_APPS_PAGE_SIZE, MAX_PAGES_PER_ENDPOINT
from ..safety.guardian import ChangeGuard
from .base import ApiClient

logger = logging.getLogger("defender_toolkit.clients.cloud_apps")

# IP address range categories as numbered by the portal
SUBNET_CATEGORIES = {
    "corporate": 1,
    "administrative": 2,
    "risky": 3,
    "vpn": 4,
    "cloud_provider": 5,
    "other": 6,
}


class CloudAppsClient(ApiClient):
    """Client for https://<tenant>.portal.cloudappsecurity.com/api/v1."""

    service_name = "defender_cloud_apps"

    def __init__(
        self,
        portal_url: str,
        access_token: str,
        guard: ChangeGuard,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(f"{portal_url.rstrip('/')}/api/v1", access_token, guard, transport)

    async def list_stream(
        self,
        endpoint: str,
        filters: Optional[dict] = None,
    ) -> AsyncGenerator[dict, None]:
        """Stream records from a skip/limit list endpoint."""
        skip = 0
        pages = 0
        while pages < MAX_PAGES_PER_ENDPOINT:
            body = {"skip": skip, "limit": CLOUD_APPS_PAGE_SIZE}
            if filters:
                body["filters"] = filters
            data = await self.post(endpoint, body)
            records = data.get("data", [])
            for record in records:
                yield record
            pages += 1
            if not data.get("hasNext") or not records:
                return
            skip += len(records)

        logger.warning(
            f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) "
            f"for endpoint: {endpoint}"
        )

    async def list_all(self, endpoint: str, filters: Optional[dict] = None) -> list[dict]:
        return [record async for record in self.list_stream(endpoint, filters)]

    async def list_subnets(self) -> list[dict]:
        return await self.list_all("subnet/")

    async def create_subnet(
        self,
        name: str,
        category: str,
        subnets: list[str],
        organization: str = "",
        tags: Optional[list[str]] = None,
    ) -> dict:
        if category not in SUBNET_CATEGORIES:
            raise ValueError(
                f"Unknown IP range category '{category}'. "
                f"Expected one of: {', '.join(SUBNET_CATEGORIES)}"
            )
        body = {
            "name": name,
            "category": SUBNET_CATEGORIES[category],
            "subnets": subnets,
            "organization": organization,
            "tags": tags or [],
        }
        return await self.post("subnet/create_rule/", body)

    async def count_open_alerts(self) -> int:
        data = await self.post(
            "alerts/",
            {"skip": 0, "limit": 1, "filters": {"resolutionStatus": {"eq": [0]}}},
        )
        return int(data.get("total", len(data.get("data", []))))

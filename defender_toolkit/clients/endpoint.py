"""
Defender for Endpoint API client — machine inventory and device tags.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..config import ENDPOINT_API_URL
from ..safety.guardian import ChangeGuard
from .base import ApiClient

logger = logging.getLogger("defender_toolkit.clients.endpoint")


class EndpointClient(ApiClient):
    """Client for https://api.securitycenter.microsoft.com/api."""

    service_name = "defender_endpoint"

    def __init__(
        self,
        access_token: str,
        guard: ChangeGuard,
        base_url: str = ENDPOINT_API_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, access_token, guard, transport)

    async def list_machines(self, odata_filter: str = "") -> list[dict]:
        params = {"$filter": odata_filter} if odata_filter else None
        return await self.get_all_pages("machines", params=params)

    async def add_machine_tag(self, machine_id: str, tag: str) -> dict:
        return await self.post(
            f"machines/{machine_id}/tags",
            {"Value": tag, "Action": "Add"},
        )

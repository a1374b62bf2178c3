"""
Microsoft Graph client — security incidents and Secure Score for the XDR portal.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..config import GRAPH_BASE_URL, GRAPH_API_VERSION, GRAPH_BETA_VERSION
from ..safety.guardian import ChangeGuard
from .base import ApiClient

logger = logging.getLogger("defender_toolkit.clients.graph")


class GraphClient(ApiClient):
    """Graph v1.0 client; pass beta=True for the beta endpoint."""

    service_name = "graph"

    def __init__(
        self,
        access_token: str,
        guard: ChangeGuard,
        beta: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        version = GRAPH_BETA_VERSION if beta else GRAPH_API_VERSION
        super().__init__(f"{GRAPH_BASE_URL}/{version}", access_token, guard, transport)

    def _default_headers(self) -> dict:
        headers = super()._default_headers()
        headers["ConsistencyLevel"] = "eventual"  # Required for $count, $search
        return headers

    async def list_incidents(
        self,
        odata_filter: str = "",
        limit: Optional[int] = None,
    ) -> list[dict]:
        params = {"$top": "50"}
        if odata_filter:
            params["$filter"] = odata_filter
        return await self.get_all_pages("security/incidents", params=params, limit=limit)

    async def update_incident_tags(self, incident_id: str, tags: list[str]) -> dict:
        return await self.patch(f"security/incidents/{incident_id}", {"customTags": tags})

    async def latest_secure_score(self) -> Optional[dict]:
        data = await self.get(
            "security/secureScores",
            params={"$top": "1", "$orderby": "createdDateTime desc"},
        )
        scores = data.get("value", [])
        return scores[0] if scores else None

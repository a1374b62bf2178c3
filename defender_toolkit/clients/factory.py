"""
Client factory — builds API clients with per-resource tokens on demand,
so a run that only touches one product never authenticates against the others.
"""

from __future__ import annotations

from typing import Optional

import httpx

from ..auth.authenticator import Authenticator
from ..config import GRAPH_SCOPE, ENDPOINT_SCOPE, CLOUD_APPS_SCOPE
from ..safety.guardian import ChangeGuard
from .graph import GraphClient
from .endpoint import EndpointClient
from .cloud_apps import CloudAppsClient


class ClientFactory:
    """Creates un-entered clients; callers use them with `async with`."""

    def __init__(
        self,
        authenticator: Authenticator,
        guard: ChangeGuard,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.authenticator = authenticator
        self.guard = guard
        self.transport = transport
        self.created: list = []

    async def graph(self, beta: bool = False) -> GraphClient:
        token = await self.authenticator.acquire_token(GRAPH_SCOPE)
        client = GraphClient(token, self.guard, beta=beta, transport=self.transport)
        self.created.append(client)
        return client

    async def endpoint(self) -> EndpointClient:
        token = await self.authenticator.acquire_token(ENDPOINT_SCOPE)
        client = EndpointClient(token, self.guard, transport=self.transport)
        self.created.append(client)
        return client

    async def cloud_apps(self, portal_url: str) -> CloudAppsClient:
        token = await self.authenticator.acquire_token(CLOUD_APPS_SCOPE)
        client = CloudAppsClient(portal_url, token, self.guard, transport=self.transport)
        self.created.append(client)
        return client

    def get_stats(self) -> list[dict]:
        return [c.get_stats() for c in self.created]

"""
Defender for Cloud Apps deployer
Registers corporate IP address ranges and reports the open alert count.
"""

from __future__ import annotations

import logging
import time

from ..clients.base import ApiError
from ..clients.cloud_apps import SUBNET_CATEGORIES
from ..config import CloudAppsDeployConfig
from .base import BaseDeployer, DeploymentError, DeploymentResult, PASS, FAIL, SKIPPED, PLANNED

logger = logging.getLogger("defender_toolkit.deployers.cloud_apps")


class CloudAppsDeployer(BaseDeployer):
    name = "cloud_apps"
    product = "mdca"
    description = "Defender for Cloud Apps IP ranges and alert snapshot"

    config: CloudAppsDeployConfig

    def validate(self):
        if not self.config.portal_url:
            raise DeploymentError("portal_url is required (https://<tenant>.portal.cloudappsecurity.com)")
        for ip_range in self.config.ip_ranges:
            if not ip_range.get("name") or not ip_range.get("subnets"):
                raise DeploymentError(f"IP range needs a name and subnets: {ip_range}")
            subnets = ip_range["subnets"]
            if not isinstance(subnets, list) or not all(isinstance(s, str) for s in subnets):
                raise DeploymentError(
                    f"subnets for '{ip_range['name']}' must be a list of CIDR strings, got {subnets!r}"
                )
            category = ip_range.get("category", "corporate")
            if category not in SUBNET_CATEGORIES:
                raise DeploymentError(
                    f"Unknown IP range category '{category}' for '{ip_range['name']}'"
                )

    async def deploy(self, result: DeploymentResult):
        async with await self.clients.cloud_apps(self.config.portal_url) as api:
            existing = await self._list_ranges(api, result)
            if existing is not None:
                await self._create_ranges(api, result, existing)
            await self._alerts_snapshot(api, result)

    async def _list_ranges(self, api, result: DeploymentResult) -> set[str] | None:
        started = time.monotonic()
        try:
            subnets = await api.list_subnets()
        except ApiError as e:
            result.add_step("list_ip_ranges", FAIL, str(e), started=started)
            return None
        names = {s.get("name") for s in subnets if s.get("name")}
        result.add_step(
            "list_ip_ranges", PASS, f"{len(names)} IP range rules present",
            data=sorted(names), started=started,
        )
        return names

    async def _create_ranges(self, api, result: DeploymentResult, existing: set[str]):
        started = time.monotonic()
        if not self.config.ip_ranges:
            result.add_step("ip_ranges", SKIPPED, "No IP ranges configured")
            return

        created, present, planned, failed = [], [], [], []
        for ip_range in self.config.ip_ranges:
            name = ip_range["name"]
            if name in existing:
                present.append(name)
                continue
            try:
                response = await api.create_subnet(
                    name=name,
                    category=ip_range.get("category", "corporate"),
                    subnets=list(ip_range["subnets"]),
                    organization=ip_range.get("organization", ""),
                    tags=ip_range.get("tags"),
                )
            except ApiError as e:
                logger.warning(f"Creating IP range {name} failed: {e}")
                failed.append(name)
                continue
            (planned if response.get("_dry_run") else created).append(name)

        data = {"created": created, "present": present, "planned": planned, "failed": failed}
        if failed:
            result.add_step("ip_ranges", FAIL, f"Failed: {', '.join(failed)}", data=data, started=started)
        elif planned:
            result.add_step(
                "ip_ranges", PLANNED,
                f"{len(planned)} would be created, {len(present)} already present",
                data=data, started=started,
            )
        else:
            result.add_step(
                "ip_ranges", PASS,
                f"{len(created)} created, {len(present)} already present",
                data=data, started=started,
            )

    async def _alerts_snapshot(self, api, result: DeploymentResult):
        started = time.monotonic()
        try:
            open_alerts = await api.count_open_alerts()
        except ApiError as e:
            result.add_step("alerts_snapshot", FAIL, str(e), started=started)
            return
        result.add_step(
            "alerts_snapshot", PASS, f"{open_alerts} open alerts",
            data={"open_alerts": open_alerts}, started=started,
        )

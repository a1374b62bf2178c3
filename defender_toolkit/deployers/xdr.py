"""
Defender XDR portal deployer
Reads Secure Score and tags the active incident queue for triage routing.
"""

from __future__ import annotations

import logging
import time

from ..clients.base import ApiError
from ..config import XdrDeployConfig
from .base import BaseDeployer, DeploymentError, DeploymentResult, PASS, FAIL, SKIPPED, PLANNED

logger = logging.getLogger("defender_toolkit.deployers.xdr")

SEVERITY_ORDER = ["informational", "low", "medium", "high"]
INCIDENT_STATUSES = ("active", "inProgress", "resolved", "redirected", "awaitingAction")


def build_incident_filter(config: XdrDeployConfig) -> str:
    """OData filter for incidents at or above the minimum severity."""
    clauses = []
    if config.incident_status:
        clauses.append(f"status eq '{config.incident_status}'")
    severities = SEVERITY_ORDER[SEVERITY_ORDER.index(config.minimum_severity):]
    if len(severities) < len(SEVERITY_ORDER):
        clauses.append("(" + " or ".join(f"severity eq '{s}'" for s in severities) + ")")
    return " and ".join(clauses)


class XdrDeployer(BaseDeployer):
    name = "xdr"
    product = "xdr"
    description = "Defender XDR Secure Score and incident tagging"

    config: XdrDeployConfig

    def validate(self):
        if self.config.minimum_severity not in SEVERITY_ORDER:
            raise DeploymentError(
                f"minimum_severity must be one of {SEVERITY_ORDER}, got '{self.config.minimum_severity}'"
            )
        if self.config.incident_status and self.config.incident_status not in INCIDENT_STATUSES:
            raise DeploymentError(f"Unknown incident status '{self.config.incident_status}'")

    async def deploy(self, result: DeploymentResult):
        async with await self.clients.graph() as graph:
            await self._secure_score(graph, result)
            incidents = await self._list_incidents(graph, result)
            if incidents is not None:
                await self._tag_incidents(graph, result, incidents)

    async def _secure_score(self, graph, result: DeploymentResult):
        started = time.monotonic()
        try:
            latest = await graph.latest_secure_score()
        except ApiError as e:
            result.add_step("secure_score", FAIL, str(e), started=started)
            return
        if not latest:
            result.add_step("secure_score", SKIPPED, "No Secure Score snapshot available")
            return
        current = latest.get("currentScore") or 0
        maximum = latest.get("maxScore") or 0
        pct = (current / maximum * 100) if maximum else 0.0
        result.add_step(
            "secure_score", PASS, f"{current:.1f}/{maximum:.1f} ({pct:.0f}%)",
            data={
                "currentScore": current,
                "maxScore": maximum,
                "createdDateTime": latest.get("createdDateTime"),
            },
            started=started,
        )

    async def _list_incidents(self, graph, result: DeploymentResult) -> list[dict] | None:
        started = time.monotonic()
        odata_filter = build_incident_filter(self.config)
        try:
            incidents = await graph.list_incidents(odata_filter, limit=self.config.max_incidents)
        except ApiError as e:
            result.add_step("list_incidents", FAIL, str(e), started=started)
            return None
        result.add_step(
            "list_incidents", PASS, f"{len(incidents)} incidents",
            data=[
                {
                    "id": i.get("id"),
                    "displayName": i.get("displayName"),
                    "severity": i.get("severity"),
                    "status": i.get("status"),
                    "customTags": i.get("customTags", []),
                }
                for i in incidents
            ],
            started=started,
        )
        return incidents

    async def _tag_incidents(self, graph, result: DeploymentResult, incidents: list[dict]):
        started = time.monotonic()
        tag = self.config.incident_tag
        if not tag:
            result.add_step("tag_incidents", SKIPPED, "No incident tag configured")
            return

        tagged, unchanged, planned, failed = [], [], [], []
        for incident in incidents:
            incident_id = str(incident.get("id"))
            tags = list(incident.get("customTags") or [])
            if tag in tags:
                unchanged.append(incident_id)
                continue
            try:
                response = await graph.update_incident_tags(incident_id, tags + [tag])
            except ApiError as e:
                logger.warning(f"Tagging incident {incident_id} failed: {e}")
                failed.append(incident_id)
                continue
            (planned if response.get("_dry_run") else tagged).append(incident_id)

        data = {"tagged": tagged, "unchanged": unchanged, "planned": planned, "failed": failed}
        if failed:
            result.add_step(
                "tag_incidents", FAIL,
                f"Tag '{tag}' failed on incidents: {', '.join(failed)}",
                data=data, started=started,
            )
        elif planned:
            result.add_step(
                "tag_incidents", PLANNED,
                f"Tag '{tag}' would be added to {len(planned)} incidents",
                data=data, started=started,
            )
        else:
            result.add_step(
                "tag_incidents", PASS,
                f"Tag '{tag}' added to {len(tagged)} incidents ({len(unchanged)} already tagged)",
                data=data, started=started,
            )

"""
Defender for Endpoint deployer
Runs the local onboarding package, checks the Sense service, then lists the
tenant's machines and tags them for device-group targeting.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from ..clients.base import ApiError
from ..config import EndpointDeployConfig
from .base import BaseDeployer, DeploymentResult, PASS, FAIL, SKIPPED, PLANNED

logger = logging.getLogger("defender_toolkit.deployers.endpoint")

SENSE_SERVICE = "Sense"


def build_machine_filter(config: EndpointDeployConfig) -> str:
    """Compose the OData $filter for the machine listing."""
    clauses = []
    if config.name_prefix:
        clauses.append(f"startswith(computerDnsName,'{_odata_str(config.name_prefix)}')")
    if config.os_platform:
        clauses.append(f"osPlatform eq '{_odata_str(config.os_platform)}'")
    if config.health_status:
        clauses.append(f"healthStatus eq '{_odata_str(config.health_status)}'")
    if config.onboarding_status:
        clauses.append(f"onboardingStatus eq '{_odata_str(config.onboarding_status)}'")
    return " and ".join(clauses)


def _odata_str(value: str) -> str:
    return value.replace("'", "''")


class EndpointDeployer(BaseDeployer):
    name = "endpoint"
    product = "mde"
    description = "Defender for Endpoint onboarding and device tagging"

    config: EndpointDeployConfig

    async def deploy(self, result: DeploymentResult):
        ran_script = await self._run_onboarding_script(result)
        await self._verify_sense(result, ran_script)

        async with await self.clients.endpoint() as api:
            machines = await self._list_machines(api, result)
            if machines is not None:
                await self._tag_machines(api, result, machines)

    async def _run_onboarding_script(self, result: DeploymentResult) -> bool:
        started = time.monotonic()
        script_path = self.config.onboarding_script_path
        if not script_path:
            result.add_step("onboarding_script", SKIPPED, "No onboarding package configured")
            return False

        script = Path(script_path)
        if not script.exists():
            result.add_step("onboarding_script", FAIL, f"Onboarding script not found: {script}")
            return False

        # The packaged .cmd prompts for confirmation on stdin.
        res = await self.runner.run(
            ["cmd.exe", "/c", str(script)],
            description="Run MDE onboarding script",
            input=b"Y\n",
        )
        if res.dry_run:
            result.add_step("onboarding_script", PLANNED, f"Would run {script.name}", started=started)
            return True
        if not res.success:
            result.add_step(
                "onboarding_script", FAIL,
                f"Onboarding script exited {res.returncode}: {res.first_error}",
                started=started,
            )
            return False
        result.add_step("onboarding_script", PASS, f"{script.name} completed", started=started)
        return True

    async def _verify_sense(self, result: DeploymentResult, ran_script: bool):
        started = time.monotonic()
        if not (ran_script or self.config.verify_local_sensor):
            result.add_step("sense_service", SKIPPED, "Local sensor not checked")
            return
        if self.dry_run and ran_script:
            result.add_step("sense_service", SKIPPED, "Onboarding only planned")
            return

        status = await self.runner.service_status(SENSE_SERVICE)
        if status == "Running":
            result.add_step("sense_service", PASS, "Sense service running", started=started)
        else:
            result.add_step("sense_service", FAIL, f"Sense service status: {status}", started=started)

    async def _list_machines(self, api, result: DeploymentResult) -> list[dict] | None:
        started = time.monotonic()
        odata_filter = build_machine_filter(self.config)
        try:
            machines = await api.list_machines(odata_filter)
        except ApiError as e:
            result.add_step("list_machines", FAIL, str(e), started=started)
            return None

        summary = [
            {
                "id": m.get("id"),
                "computerDnsName": m.get("computerDnsName"),
                "osPlatform": m.get("osPlatform"),
                "healthStatus": m.get("healthStatus"),
                "machineTags": m.get("machineTags", []),
            }
            for m in machines
        ]
        detail = f"{len(machines)} machines"
        if odata_filter:
            detail += f" matching {odata_filter}"
        result.add_step("list_machines", PASS, detail, data=summary, started=started)
        return machines

    async def _tag_machines(self, api, result: DeploymentResult, machines: list[dict]):
        started = time.monotonic()
        tag = self.config.device_tag
        if not tag:
            result.add_step("tag_machines", SKIPPED, "No device tag configured")
            return

        tagged, unchanged, planned, failed = [], [], [], []
        for machine in machines:
            machine_id = machine.get("id")
            if tag in (machine.get("machineTags") or []):
                unchanged.append(machine_id)
                continue
            try:
                response = await api.add_machine_tag(machine_id, tag)
            except ApiError as e:
                logger.warning(f"Tagging {machine_id} failed: {e}")
                failed.append(machine_id)
                continue
            if response.get("_dry_run"):
                planned.append(machine_id)
            else:
                tagged.append(machine_id)

        data = {"tagged": tagged, "unchanged": unchanged, "planned": planned, "failed": failed}
        if failed:
            result.add_step(
                "tag_machines", FAIL,
                f"Tag '{tag}' failed on {len(failed)} machines: {', '.join(failed)}",
                data=data, started=started,
            )
        elif planned:
            result.add_step(
                "tag_machines", PLANNED,
                f"Tag '{tag}' would be added to {len(planned)} machines ({len(unchanged)} already tagged)",
                data=data, started=started,
            )
        else:
            result.add_step(
                "tag_machines", PASS,
                f"Tag '{tag}' added to {len(tagged)} machines ({len(unchanged)} already tagged)",
                data=data, started=started,
            )

"""
Defender for Identity deployer
Configures DC auditing, provisions the sensor gMSA, installs the sensor and
confirms its services are running.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from ..config import IdentityDeployConfig, MDI_SENSOR_SERVICES
from ..shell.runner import ps_quote
from .base import BaseDeployer, DeploymentError, DeploymentResult, PASS, FAIL, SKIPPED, PLANNED

logger = logging.getLogger("defender_toolkit.deployers.identity")

# Installer exit code asking for a reboot to finish
EXIT_REBOOT_REQUIRED = 3010


class IdentityDeployer(BaseDeployer):
    name = "identity"
    product = "mdi"
    description = "Defender for Identity sensor on domain controllers"

    config: IdentityDeployConfig

    def validate(self):
        if not self.config.installer_path:
            raise DeploymentError("installer_path is required for the sensor install")

    async def deploy(self, result: DeploymentResult):
        await self._configure_auditing(result)
        await self._ensure_gmsa(result)
        installed = await self._install_sensor(result)
        await self._verify_services(result, installed)

    async def _configure_auditing(self, result: DeploymentResult):
        """Enable the Advanced Audit Policy subcategories the sensor reads."""
        started = time.monotonic()
        if not self.config.configure_auditing:
            result.add_step("audit_policy", SKIPPED, "Auditing disabled in config")
            return

        failed = []
        planned = 0
        for subcategory in self.config.audit_subcategories:
            res = await self.runner.run(
                [
                    "auditpol", "/set",
                    f"/subcategory:{subcategory}",
                    "/success:enable", "/failure:enable",
                ],
                description=f"Enable auditing: {subcategory}",
            )
            if res.dry_run:
                planned += 1
            elif not res.success:
                failed.append(subcategory)
                logger.debug(f"auditpol failed for {subcategory}: {res.stderr.strip() or res.stdout.strip()}")

        total = len(self.config.audit_subcategories)
        if failed:
            result.add_step(
                "audit_policy", FAIL,
                f"{len(failed)}/{total} subcategories failed: {', '.join(failed)}",
                data={"failed": failed}, started=started,
            )
        elif planned:
            result.add_step("audit_policy", PLANNED, f"{planned} subcategories would be enabled", started=started)
        else:
            result.add_step("audit_policy", PASS, f"{total} subcategories enabled", started=started)

    async def _ensure_gmsa(self, result: DeploymentResult):
        """Create the directory service gMSA when it does not exist yet."""
        started = time.monotonic()
        name = self.config.gmsa_name
        if not name:
            result.add_step("gmsa", SKIPPED, "No gMSA configured")
            return

        lookup = await self.runner.run_powershell(
            f"Import-Module ActiveDirectory; $n = {ps_quote(name)}; "
            "$a = Get-ADServiceAccount -Filter \"Name -eq '$n'\"; "
            "if ($a) { 'RESULT:EXISTS' } else { 'RESULT:MISSING' }",
            description=f"Look up gMSA {name}",
            mutating=False,
        )
        if not lookup.success:
            result.add_step("gmsa", FAIL, f"gMSA lookup failed: {lookup.first_error}", started=started)
            return

        if "RESULT:EXISTS" not in lookup.lines():
            if self.config.gmsa_dns_host_name:
                dns_host = ps_quote(self.config.gmsa_dns_host_name)
            else:
                dns_host = f"\"{name}.$((Get-ADDomain).DNSRoot)\""
            create = await self.runner.run_powershell(
                "Import-Module ActiveDirectory; "
                f"New-ADServiceAccount -Name {ps_quote(name)} -DNSHostName {dns_host} "
                f"-PrincipalsAllowedToRetrieveManagedPassword {ps_quote(self.config.gmsa_principals_group)}; "
                "'RESULT:CREATED'",
                description=f"Create gMSA {name}",
            )
            if create.dry_run:
                result.add_step("gmsa", PLANNED, f"gMSA {name} would be created", started=started)
                return
            if not create.success:
                result.add_step("gmsa", FAIL, f"gMSA creation failed: {create.first_error}", started=started)
                return

        test = await self.runner.run_powershell(
            "Import-Module ActiveDirectory; "
            f"if (Test-ADServiceAccount -Identity {ps_quote(name)}) {{ 'RESULT:VALID' }} else {{ 'RESULT:INVALID' }}",
            description=f"Test gMSA {name}",
            mutating=False,
        )
        if "RESULT:VALID" in test.lines():
            result.add_step("gmsa", PASS, f"gMSA {name} ready", started=started)
        else:
            result.add_step(
                "gmsa", FAIL,
                f"gMSA {name} cannot be used from this host: {test.first_error or 'Test-ADServiceAccount returned False'}",
                started=started,
            )

    async def _install_sensor(self, result: DeploymentResult) -> bool:
        """
        Run the sensor installer silently.
        Returns True when the sensor is (or would be) installed.
        """
        started = time.monotonic()
        existing = await self.runner.service_status(MDI_SENSOR_SERVICES[0])
        if existing not in ("NotFound", "Unknown") and not self.config.force_reinstall:
            result.add_step("sensor_install", SKIPPED, f"Sensor already installed ({existing})")
            return True

        installer = Path(self.config.installer_path)
        if not installer.exists():
            result.add_step("sensor_install", FAIL, f"Installer not found: {installer}")
            return False

        access_key = self.config.resolve_access_key()
        if not access_key:
            result.add_step("sensor_install", FAIL, "No access key (set access_key or MDI_ACCESS_KEY)")
            return False

        argv = [
            str(installer),
            "/quiet",
            "NetFrameworkCommandLineArguments=/q",
            f"AccessKey={access_key}",
        ]
        if self.config.proxy_url:
            argv.append(f"ProxyUrl={self.config.proxy_url}")

        res = await self.runner.run(argv, description="Install MDI sensor", secrets=[access_key])
        if res.dry_run:
            result.add_step("sensor_install", PLANNED, f"Would run {installer.name} /quiet", started=started)
            return True
        if res.returncode == EXIT_REBOOT_REQUIRED:
            result.add_step("sensor_install", PASS, "Sensor installed, reboot required", started=started)
            result.add_warning("Reboot required to complete the sensor install")
            return True
        if not res.success:
            result.add_step(
                "sensor_install", FAIL,
                f"Installer exited {res.returncode}: {res.first_error}",
                started=started,
            )
            return False
        result.add_step("sensor_install", PASS, "Sensor installed", started=started)
        return True

    async def _verify_services(self, result: DeploymentResult, installed: bool):
        started = time.monotonic()
        if not installed:
            result.add_step("sensor_service", SKIPPED, "Sensor not installed")
            return
        if self.dry_run and result.step("sensor_install").status == PLANNED:
            result.add_step("sensor_service", SKIPPED, "Sensor install only planned")
            return

        statuses = {svc: await self.runner.service_status(svc) for svc in MDI_SENSOR_SERVICES}
        not_running = {svc: st for svc, st in statuses.items() if st != "Running"}
        if not_running:
            detail = ", ".join(f"{svc}={st}" for svc, st in not_running.items())
            result.add_step("sensor_service", FAIL, f"Not running: {detail}", data=statuses, started=started)
        else:
            result.add_step("sensor_service", PASS, "AATPSensor and AATPSensorUpdater running", data=statuses, started=started)

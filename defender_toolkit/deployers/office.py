"""
Defender for Office 365 deployer
Applies the preset security policy and a Safe Links / Safe Attachments
baseline through app-only Exchange Online PowerShell.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from ..config import OfficeDeployConfig
from ..shell.runner import CommandResult, ps_array, ps_quote
from .base import BaseDeployer, DeploymentError, DeploymentResult, PASS, FAIL, SKIPPED, PLANNED

logger = logging.getLogger("defender_toolkit.deployers.office")

PRESET_TIERS = ("Standard", "Strict")
RESULT_PREFIX = "RESULT:"


def parse_result(res: CommandResult) -> Optional[str]:
    """Return the token of the last RESULT:<token> line a script printed."""
    token = None
    for line in res.lines():
        if line.startswith(RESULT_PREFIX):
            token = line[len(RESULT_PREFIX):]
    return token


class OfficeDeployer(BaseDeployer):
    name = "office"
    product = "mdo"
    description = "Defender for Office 365 preset policies, Safe Links and Safe Attachments"

    config: OfficeDeployConfig

    def validate(self):
        missing = [
            field for field in ("organization", "app_id", "certificate_thumbprint")
            if not getattr(self.config, field)
        ]
        if missing:
            raise DeploymentError(f"Exchange Online connection needs: {', '.join(missing)}")
        if self.config.preset_policy not in PRESET_TIERS:
            raise DeploymentError(
                f"preset_policy must be one of {PRESET_TIERS}, got '{self.config.preset_policy}'"
            )

    async def deploy(self, result: DeploymentResult):
        if not await self._check_module(result):
            for step in ("preset_policies", "safe_links", "safe_attachments"):
                result.add_step(step, SKIPPED, "ExchangeOnlineManagement unavailable")
            return

        await self._enable_preset(result)

        if self.config.enable_safe_links:
            await self._ensure_policy(
                result,
                step="safe_links",
                name=self.config.safe_links_policy_name,
                get_cmdlet="Get-SafeLinksPolicy",
                create=(
                    "New-SafeLinksPolicy -Name $name -EnableSafeLinksForEmail $true "
                    "-EnableSafeLinksForTeams $true -EnableSafeLinksForOffice $true "
                    "-TrackClicks $true -AllowClickThrough $false -ScanUrls $true "
                    "-EnableForInternalSenders $true -DeliverMessageAfterScan $true | Out-Null; "
                    f"New-SafeLinksRule -Name $name -SafeLinksPolicy $name -RecipientDomainIs {self._domains()} | Out-Null"
                ),
            )
        else:
            result.add_step("safe_links", SKIPPED, "Safe Links disabled in config")

        if self.config.enable_safe_attachments:
            await self._ensure_policy(
                result,
                step="safe_attachments",
                name=self.config.safe_attachments_policy_name,
                get_cmdlet="Get-SafeAttachmentPolicy",
                create=(
                    "New-SafeAttachmentPolicy -Name $name -Enable $true -Action Block | Out-Null; "
                    f"New-SafeAttachmentRule -Name $name -SafeAttachmentPolicy $name -RecipientDomainIs {self._domains()} | Out-Null"
                ),
            )
        else:
            result.add_step("safe_attachments", SKIPPED, "Safe Attachments disabled in config")

    def _domains(self) -> str:
        if self.config.recipient_domains:
            return ps_array(self.config.recipient_domains)
        return "(Get-AcceptedDomain).DomainName"

    def _exo_script(self, body: str) -> str:
        """Wrap a script body in an app-only Exchange Online session."""
        return (
            "$ErrorActionPreference = 'Stop'; "
            "Import-Module ExchangeOnlineManagement; "
            f"Connect-ExchangeOnline -AppId {ps_quote(self.config.app_id)} "
            f"-CertificateThumbprint {ps_quote(self.config.certificate_thumbprint)} "
            f"-Organization {ps_quote(self.config.organization)} -ShowBanner:$false; "
            f"try {{ {body} }} finally {{ Disconnect-ExchangeOnline -Confirm:$false }}"
        )

    async def _check_module(self, result: DeploymentResult) -> bool:
        started = time.monotonic()
        res = await self.runner.run_powershell(
            "if (Get-Module -ListAvailable -Name ExchangeOnlineManagement) "
            "{ 'RESULT:AVAILABLE' } else { 'RESULT:MISSING' }",
            description="Check ExchangeOnlineManagement module",
            mutating=False,
        )
        if parse_result(res) == "AVAILABLE":
            result.add_step("exchange_module", PASS, "ExchangeOnlineManagement available", started=started)
            return True
        detail = res.first_error if not res.success else "Install-Module ExchangeOnlineManagement first"
        result.add_step("exchange_module", FAIL, f"ExchangeOnlineManagement missing: {detail}", started=started)
        return False

    async def _enable_preset(self, result: DeploymentResult):
        started = time.monotonic()
        rule = f"{self.config.preset_policy} Preset Security Policy"
        scope = ""
        if self.config.recipient_domains:
            domains = ps_array(self.config.recipient_domains)
            scope = (
                f"Set-EOPProtectionPolicyRule -Identity $rule -RecipientDomainIs {domains}; "
                f"Set-ATPProtectionPolicyRule -Identity $rule -RecipientDomainIs {domains}; "
            )
        res = await self.runner.run_powershell(
            self._exo_script(
                f"$rule = {ps_quote(rule)}; {scope}"
                "Enable-EOPProtectionPolicyRule -Identity $rule; "
                "Enable-ATPProtectionPolicyRule -Identity $rule; "
                "'RESULT:ENABLED'"
            ),
            description=f"Enable {rule}",
        )
        if res.dry_run:
            result.add_step("preset_policies", PLANNED, f"{rule} would be enabled", started=started)
        elif res.success and parse_result(res) == "ENABLED":
            result.add_step("preset_policies", PASS, f"{rule} enabled", started=started)
        else:
            result.add_step("preset_policies", FAIL, f"{rule}: {res.first_error}", started=started)

    async def _ensure_policy(
        self,
        result: DeploymentResult,
        step: str,
        name: str,
        get_cmdlet: str,
        create: str,
    ):
        """Create a policy + rule pair unless a policy with that name exists."""
        started = time.monotonic()
        lookup = await self.runner.run_powershell(
            self._exo_script(
                f"$name = {ps_quote(name)}; "
                f"if ({get_cmdlet} -Identity $name -ErrorAction SilentlyContinue) "
                "{ 'RESULT:EXISTS' } else { 'RESULT:MISSING' }"
            ),
            description=f"Look up {name}",
            mutating=False,
        )
        state = parse_result(lookup)
        if not lookup.success or state is None:
            result.add_step(step, FAIL, f"Lookup of '{name}' failed: {lookup.first_error}", started=started)
            return
        if state == "EXISTS":
            result.add_step(step, PASS, f"Policy '{name}' already present", started=started)
            return

        res = await self.runner.run_powershell(
            self._exo_script(f"$name = {ps_quote(name)}; {create}; 'RESULT:CREATED'"),
            description=f"Create {name}",
        )
        if res.dry_run:
            result.add_step(step, PLANNED, f"Policy '{name}' would be created", started=started)
        elif res.success and parse_result(res) == "CREATED":
            result.add_step(step, PASS, f"Policy '{name}' created", started=started)
        else:
            result.add_step(step, FAIL, f"Creating '{name}' failed: {res.first_error}", started=started)

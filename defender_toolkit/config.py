"""
Configuration module for the Defender Deployment Toolkit.
Defines API endpoints, retry settings, per-product deployment settings
and the JSON config file loader.
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone


class ConfigError(Exception):
    """Raised when the run cannot be configured (missing tenant, bad config file)."""
    pass


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty
    thumbprint: str = ""

@dataclass
class DelegatedAuth:
    """Delegated (device code) authentication configuration."""
    tenant_id: str
    client_id: str

@dataclass
class AuthConfig:
    """Authentication configuration — supports both modes."""
    mode: str = "certificate"  # "certificate" or "delegated"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None


# ─── API Settings ───────────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_BETA_VERSION = "beta"

ENDPOINT_API_URL = "https://api.securitycenter.microsoft.com/api"

# Resource scopes for client-credential tokens
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
ENDPOINT_SCOPE = "https://api.securitycenter.microsoft.com/.default"
CLOUD_APPS_SCOPE = "05a65629-4c1b-48c1-a78b-804c4abdd4af/.default"

# Rate limiting / throttling
MAX_CONCURRENT_REQUESTS = 4       # Parallel requests per client
MAX_RETRIES = 5                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 120.0       # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor

# Pagination
DEFAULT_PAGE_SIZE = 999           # Graph $top
CLOUD_APPS_PAGE_SIZE = 100        # MDCA "limit"
MAX_PAGES_PER_ENDPOINT = 1000     # Safety cap on pagination loops

# Local commands
COMMAND_TIMEOUT_SECONDS = 600     # Installer runs can be slow
POWERSHELL_EXECUTABLE = "powershell.exe" if os.name == "nt" else "pwsh"

DEFAULT_LEDGER_PATH = str(Path.home() / ".defender_toolkit" / "runs.db")


# ─── Product Deployment Settings ─────────────────────────────────────────────

MDI_AUDIT_SUBCATEGORIES = [
    "Credential Validation",
    "Kerberos Authentication Service",
    "Kerberos Service Ticket Operations",
    "Computer Account Management",
    "Distribution Group Management",
    "Security Group Management",
    "User Account Management",
    "Directory Service Access",
    "Directory Service Changes",
    "Security System Extension",
]

MDI_SENSOR_SERVICES = ["AATPSensor", "AATPSensorUpdater"]


@dataclass
class IdentityDeployConfig:
    """Defender for Identity sensor deployment on a domain controller."""
    enabled: bool = True
    installer_path: str = "Azure ATP Sensor Setup.exe"
    access_key: str = ""                  # Falls back to MDI_ACCESS_KEY
    proxy_url: str = ""
    configure_auditing: bool = True
    audit_subcategories: list[str] = field(
        default_factory=lambda: list(MDI_AUDIT_SUBCATEGORIES)
    )
    gmsa_name: str = ""                   # Skip gMSA step when empty
    gmsa_dns_host_name: str = ""
    gmsa_principals_group: str = "Domain Controllers"
    force_reinstall: bool = False

    def resolve_access_key(self) -> str:
        return self.access_key or os.environ.get("MDI_ACCESS_KEY", "")


@dataclass
class EndpointDeployConfig:
    """Defender for Endpoint onboarding and device tagging."""
    enabled: bool = True
    onboarding_script_path: str = ""      # WindowsDefenderATPLocalOnboardingScript.cmd
    verify_local_sensor: bool = False
    device_tag: str = ""
    name_prefix: str = ""                 # computerDnsName startswith
    os_platform: str = ""                 # e.g. "Windows11", "WindowsServer2022"
    health_status: str = ""               # e.g. "Active"
    onboarding_status: str = "Onboarded"


@dataclass
class OfficeDeployConfig:
    """Defender for Office 365 policy baseline via Exchange Online PowerShell."""
    enabled: bool = True
    organization: str = ""                # contoso.onmicrosoft.com
    app_id: str = ""                      # Defaults to the auth client_id
    certificate_thumbprint: str = ""      # Cert in the local store; defaults to auth thumbprint
    preset_policy: str = "Standard"       # "Standard" or "Strict"
    recipient_domains: list[str] = field(default_factory=list)
    safe_links_policy_name: str = "Baseline Safe Links"
    safe_attachments_policy_name: str = "Baseline Safe Attachments"
    enable_safe_links: bool = True
    enable_safe_attachments: bool = True


@dataclass
class CloudAppsDeployConfig:
    """Defender for Cloud Apps tenant configuration."""
    enabled: bool = True
    portal_url: str = ""                  # https://<tenant>.portal.cloudappsecurity.com
    ip_ranges: list[dict] = field(default_factory=list)


@dataclass
class XdrDeployConfig:
    """Defender XDR portal incident onboarding."""
    enabled: bool = True
    incident_tag: str = ""
    incident_status: str = "active"
    minimum_severity: str = "medium"      # low, medium, high
    max_incidents: int = 500


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Output directory and format settings."""
    base_dir: str = ""
    timestamp: str = ""
    formats: list[str] = field(default_factory=lambda: [
        "json", "csv", "markdown"
    ])

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(
                os.getcwd(),
                f"defender_deployment_{self.timestamp}"
            )

    @property
    def run_dir(self) -> Path:
        return Path(self.base_dir)

    @property
    def json_dir(self) -> Path:
        return self.run_dir / "json"

    @property
    def csv_dir(self) -> Path:
        return self.run_dir / "csv"

    @property
    def reports_dir(self) -> Path:
        return self.run_dir / "reports"

    def create_directories(self):
        for d in [self.json_dir, self.csv_dir, self.reports_dir]:
            d.mkdir(parents=True, exist_ok=True)


# ─── Master Configuration ───────────────────────────────────────────────────

_PRODUCT_SECTIONS = ("identity", "endpoint", "office", "cloud_apps", "xdr")


@dataclass
class ToolkitConfig:
    """Top-level configuration for a deployment run."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    identity: IdentityDeployConfig = field(default_factory=IdentityDeployConfig)
    endpoint: EndpointDeployConfig = field(default_factory=EndpointDeployConfig)
    office: OfficeDeployConfig = field(default_factory=OfficeDeployConfig)
    cloud_apps: CloudAppsDeployConfig = field(default_factory=CloudAppsDeployConfig)
    xdr: XdrDeployConfig = field(default_factory=XdrDeployConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    dry_run: bool = False
    continue_on_error: bool = False
    powershell: str = POWERSHELL_EXECUTABLE
    command_timeout: int = COMMAND_TIMEOUT_SECONDS
    ledger_path: str = ""
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str) -> "ToolkitConfig":
        """Load configuration from a JSON file."""
        with open(path, "r") as f:
            data = json.load(f)
        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                    thumbprint=c.get("thumbprint", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
        for name in _PRODUCT_SECTIONS:
            section = getattr(config, name)
            for k, v in data.get(name, {}).items():
                if hasattr(section, k):
                    setattr(section, k, v)
        if "output" in data:
            for k, v in data["output"].items():
                if hasattr(config.output, k):
                    setattr(config.output, k, v)
        config.dry_run = data.get("dry_run", False)
        config.continue_on_error = data.get("continue_on_error", False)
        config.powershell = data.get("powershell", POWERSHELL_EXECUTABLE)
        config.command_timeout = data.get("command_timeout", COMMAND_TIMEOUT_SECONDS)
        config.ledger_path = data.get("ledger_path", "")
        config.verbose = data.get("verbose", False)
        return config

    def tenant_id(self) -> str:
        if self.auth.mode == "delegated" and self.auth.delegated:
            return self.auth.delegated.tenant_id
        if self.auth.certificate:
            return self.auth.certificate.tenant_id
        return ""


# ─── Required API Permissions ────────────────────────────────────────────

REQUIRED_PERMISSIONS = {
    # Microsoft Graph
    "SecurityIncident.ReadWrite.All": "List XDR incidents and add custom tags",
    "SecurityEvents.Read.All": "Read Microsoft Secure Score",

    # WindowsDefenderATP (Defender for Endpoint API)
    "Machine.Read.All": "List onboarded machines",
    "Machine.ReadWrite.All": "Add device tags to machines",

    # Microsoft Cloud App Security
    "discovery.manage": "Create IP address range rules",
    "investigation.read": "Read alerts",

    # Office 365 Exchange Online
    "Exchange.ManageAsApp": "App-only Exchange Online PowerShell session",
}

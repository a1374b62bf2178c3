"""
Tenant Profile Manager — Named profiles for multi-tenant deployments.

Profiles are stored in:
    ~/.defender_toolkit/profiles.json

Each profile holds the app registration used for the run (tenant_id,
client_id, cert_path) plus the per-tenant product endpoints that are
otherwise easy to get wrong: the Exchange Online organization domain and
the Defender for Cloud Apps portal URL.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger("defender_toolkit.profiles")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CONFIG_DIR = Path.home() / ".defender_toolkit"
PROFILES_FILE = CONFIG_DIR / "profiles.json"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class TenantProfile:
    """A single named tenant profile."""
    name: str                          # Unique short name (e.g. "contoso-prod")
    tenant_id: str                     # Entra tenant ID
    client_id: str                     # App registration client ID
    cert_path: str = "./base64.txt"    # Path to the base64-encoded PFX certificate
    tenant_display_name: str = ""      # Friendly name shown in reports
    organization: str = ""             # Exchange Online org, e.g. contoso.onmicrosoft.com
    cloud_apps_url: str = ""           # https://<tenant>.portal.cloudappsecurity.com
    notes: str = ""

    def resolve_cert_path(self) -> str:
        """Return absolute cert path, resolving ~ and relative paths."""
        p = Path(self.cert_path).expanduser()
        if not p.is_absolute():
            p = Path.cwd() / p
        return str(p)

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "cert_path": self.cert_path,
            "tenant_display_name": self.tenant_display_name,
            "organization": self.organization,
            "cloud_apps_url": self.cloud_apps_url,
            "notes": self.notes,
        }


@dataclass
class ProfileStore:
    """Manages the collection of tenant profiles on disk."""
    profiles: dict[str, TenantProfile] = field(default_factory=dict)
    default_profile: str = ""
    path: Path = PROFILES_FILE

    # --- Persistence ---

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ProfileStore":
        """Load profiles from disk. Returns an empty store if the file doesn't exist."""
        path = Path(path) if path else PROFILES_FILE
        if not path.exists():
            return cls(path=path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            store = cls(path=path)
            store.default_profile = data.get("default_profile", "")
            for name, pdata in data.get("profiles", {}).items():
                store.profiles[name] = TenantProfile(
                    name=name,
                    tenant_id=pdata["tenant_id"],
                    client_id=pdata["client_id"],
                    cert_path=pdata.get("cert_path", "./base64.txt"),
                    tenant_display_name=pdata.get("tenant_display_name", ""),
                    organization=pdata.get("organization", ""),
                    cloud_apps_url=pdata.get("cloud_apps_url", ""),
                    notes=pdata.get("notes", ""),
                )
            return store
        except (json.JSONDecodeError, KeyError) as e:
            logger.warning(f"Failed to parse {path}: {e}")
            print(f"  ⚠  Failed to parse profiles.json: {e}")
            return cls(path=path)

    def save(self) -> None:
        """Persist profiles to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "default_profile": self.default_profile,
            "profiles": {name: p.to_dict() for name, p in self.profiles.items()},
        }
        self.path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")

    # --- CRUD ---

    def add(self, profile: TenantProfile, set_default: bool = False) -> None:
        """Add or overwrite a profile."""
        self.profiles[profile.name] = profile
        if set_default or not self.default_profile:
            self.default_profile = profile.name
        self.save()

    def remove(self, name: str) -> bool:
        """Remove a profile by name. Returns True if it existed."""
        profile = self.get(name)
        if profile is None:
            return False
        del self.profiles[profile.name]
        if self.default_profile == profile.name:
            self.default_profile = next(iter(self.profiles), "")
        self.save()
        return True

    def get(self, name: str) -> Optional[TenantProfile]:
        """Get a profile by name (case-insensitive)."""
        key = name.lower()
        for pname, profile in self.profiles.items():
            if pname.lower() == key:
                return profile
        return None

    def get_default(self) -> Optional[TenantProfile]:
        """Get the default profile, or the first one when no default is set."""
        if self.default_profile and self.default_profile in self.profiles:
            return self.profiles[self.default_profile]
        if self.profiles:
            return next(iter(self.profiles.values()))
        return None

    def set_default(self, name: str) -> bool:
        """Set the default profile. Returns True if the profile exists."""
        profile = self.get(name)
        if profile is None:
            return False
        self.default_profile = profile.name
        self.save()
        return True

    def list_profiles(self) -> list[TenantProfile]:
        """Return all profiles sorted by name."""
        return sorted(self.profiles.values(), key=lambda p: p.name)


# ---------------------------------------------------------------------------
# Convenience: resolve profile for a run
# ---------------------------------------------------------------------------

def resolve_profile(
    profile_name: Optional[str] = None,
    path: Optional[Path] = None,
) -> Optional[TenantProfile]:
    """
    Look up a tenant profile by name.
    If no name given, returns the default profile.
    Returns None if no profiles are configured.
    """
    store = ProfileStore.load(path)
    if profile_name:
        return store.get(profile_name)
    return store.get_default()

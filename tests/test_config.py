"""Tests for the JSON configuration loader and output layout."""

import json

from defender_toolkit.config import (
    MDI_AUDIT_SUBCATEGORIES,
    OutputConfig,
    ToolkitConfig,
)


class TestFromFile:

    def test_full_file(self, tmp_path):
        path = tmp_path / "deploy.json"
        path.write_text(json.dumps({
            "auth": {
                "mode": "certificate",
                "certificate": {"tenant_id": "tid", "client_id": "cid", "thumbprint": "AB12"},
            },
            "identity": {"installer_path": "C:/mdi/setup.exe", "gmsa_name": "svc-mdi"},
            "endpoint": {"device_tag": "Pilot", "enabled": False},
            "cloud_apps": {"portal_url": "https://contoso.portal.cloudappsecurity.com",
                           "ip_ranges": [{"name": "HQ", "subnets": ["203.0.113.0/24"]}]},
            "xdr": {"minimum_severity": "high", "unknown_key": 1},
            "output": {"formats": ["json"]},
            "continue_on_error": True,
            "ledger_path": "/tmp/runs.db",
        }))
        config = ToolkitConfig.from_file(str(path))

        assert config.tenant_id() == "tid"
        assert config.auth.certificate.thumbprint == "AB12"
        assert config.auth.certificate.certificate_path == "./base64.txt"
        assert config.identity.gmsa_name == "svc-mdi"
        assert config.identity.audit_subcategories == MDI_AUDIT_SUBCATEGORIES
        assert config.endpoint.enabled is False
        assert config.cloud_apps.ip_ranges[0]["name"] == "HQ"
        assert config.xdr.minimum_severity == "high"
        assert not hasattr(config.xdr, "unknown_key")
        assert config.output.formats == ["json"]
        assert config.continue_on_error is True
        assert config.dry_run is False
        assert config.ledger_path == "/tmp/runs.db"

    def test_delegated_tenant(self, tmp_path):
        path = tmp_path / "deploy.json"
        path.write_text(json.dumps({
            "auth": {"mode": "delegated", "delegated": {"tenant_id": "dtid", "client_id": "dcid"}},
        }))
        assert ToolkitConfig.from_file(str(path)).tenant_id() == "dtid"

    def test_defaults(self):
        config = ToolkitConfig()
        assert config.tenant_id() == ""
        assert config.office.preset_policy == "Standard"
        assert config.xdr.minimum_severity == "medium"


class TestIdentityConfig:

    def test_access_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("MDI_ACCESS_KEY", "env-key")
        assert ToolkitConfig().identity.resolve_access_key() == "env-key"

    def test_explicit_access_key_wins(self, monkeypatch):
        monkeypatch.setenv("MDI_ACCESS_KEY", "env-key")
        config = ToolkitConfig()
        config.identity.access_key = "file-key"
        assert config.identity.resolve_access_key() == "file-key"


class TestOutputConfig:

    def test_layout(self, tmp_path):
        output = OutputConfig(base_dir=str(tmp_path / "run"))
        output.create_directories()
        for sub in ("json", "csv", "reports"):
            assert (tmp_path / "run" / sub).is_dir()

    def test_default_dir_is_timestamped(self):
        output = OutputConfig(timestamp="20261018T120000Z")
        assert output.run_dir.name == "defender_deployment_20261018T120000Z"

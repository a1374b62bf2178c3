"""Tests for the ChangeGuard write allowlist, dry-run planning and audit record."""

import pytest

from defender_toolkit.safety.guardian import ChangeGuard, SafetyViolation

MDE = "https://api.securitycenter.microsoft.com/api"
GRAPH = "https://graph.microsoft.com/v1.0"
MDCA = "https://contoso.portal.cloudappsecurity.com/api/v1"


class TestRequestValidation:

    def test_reads_always_allowed(self):
        guard = ChangeGuard()
        assert guard.validate_request("GET", f"{MDE}/machines") is True
        assert guard.validate_request("get", f"{GRAPH}/security/incidents?$top=50") is True
        assert guard.checks_performed == 2
        assert guard.applied_changes == []

    def test_allowlisted_writes_are_applied(self):
        guard = ChangeGuard()
        assert guard.validate_request("POST", f"{MDE}/machines/abc123/tags", {"Value": "t"}) is True
        assert guard.validate_request("PATCH", f"{GRAPH}/security/incidents/42") is True
        assert guard.validate_request("POST", f"{MDCA}/subnet/create_rule/") is True
        assert len(guard.applied_changes) == 3
        assert guard.applied_changes[0]["payload"] == {"Value": "t"}

    def test_read_only_posts_are_not_changes(self):
        guard = ChangeGuard()
        assert guard.validate_request("POST", f"{MDCA}/alerts/") is True
        assert guard.validate_request("POST", f"{MDCA}/subnet/") is True
        assert guard.validate_request("POST", f"{GRAPH}/$batch") is True
        assert guard.applied_changes == []

    def test_write_outside_allowlist_blocked(self):
        guard = ChangeGuard()
        with pytest.raises(SafetyViolation):
            guard.validate_request("DELETE", f"{MDE}/machines/abc123")
        with pytest.raises(SafetyViolation):
            guard.validate_request("PATCH", f"{GRAPH}/users/someone")
        assert len(guard.violations) == 2

    @pytest.mark.parametrize("action", ["offboard", "isolate", "runAntiVirusScan", "StopAndQuarantineFile"])
    def test_response_actions_always_blocked(self, action):
        guard = ChangeGuard()
        with pytest.raises(SafetyViolation, match="Response action blocked"):
            guard.validate_request("POST", f"{MDE}/machines/abc123/{action}")

    def test_blocked_even_for_get(self):
        guard = ChangeGuard()
        with pytest.raises(SafetyViolation):
            guard.validate_request("GET", f"{GRAPH}/deviceManagement/managedDevices/1/wipe")


class TestDryRun:

    def test_allowed_write_is_planned_not_sent(self):
        guard = ChangeGuard(dry_run=True)
        assert guard.validate_request("POST", f"{MDE}/machines/abc/tags", {"Value": "t"}) is False
        assert len(guard.planned_changes) == 1
        assert guard.applied_changes == []

    def test_reads_still_sent(self):
        guard = ChangeGuard(dry_run=True)
        assert guard.validate_request("GET", f"{MDE}/machines") is True

    def test_blocked_write_still_raises(self):
        guard = ChangeGuard(dry_run=True)
        with pytest.raises(SafetyViolation):
            guard.validate_request("POST", f"{MDE}/machines/abc/offboard")

    def test_commands_planned(self):
        guard = ChangeGuard(dry_run=True)
        assert guard.validate_command("Install MDI sensor", ["setup.exe", "/quiet"]) is False
        change = guard.planned_changes[0]
        assert change["kind"] == "command"
        assert change["target"] == "Install MDI sensor"
        assert change["payload"] == {"argv": ["setup.exe", "/quiet"]}


class TestAuditRecord:

    def test_clean_record(self):
        guard = ChangeGuard()
        guard.validate_request("GET", f"{MDE}/machines")
        guard.validate_command("auditpol", ["auditpol", "/set"])
        audit = guard.get_audit_record()["change_guard"]
        assert audit["mode"] == "APPLY"
        assert audit["status"] == "CLEAN"
        assert audit["checks_performed"] == 2
        assert len(audit["applied_changes"]) == 1

    def test_violations_reported(self):
        guard = ChangeGuard(dry_run=True)
        with pytest.raises(SafetyViolation):
            guard.validate_request("DELETE", f"{GRAPH}/security/incidents/1")
        audit = guard.get_audit_record()["change_guard"]
        assert audit["mode"] == "DRY-RUN"
        assert audit["status"] == "VIOLATIONS_DETECTED"
        assert audit["violations_detected"] == 1

    def test_banner_prints_mode(self, capsys):
        ChangeGuard(dry_run=True).print_banner()
        assert "DRY-RUN" in capsys.readouterr().out

"""Tests for the Defender XDR deployer."""

import httpx
import pytest

from defender_toolkit.config import XdrDeployConfig
from defender_toolkit.deployers import XdrDeployer, PASS, FAIL, SKIPPED, PLANNED
from defender_toolkit.deployers.xdr import build_incident_filter

from conftest import FakeApi, make_factory

INCIDENTS = {
    "value": [
        {"id": 101, "displayName": "Phish", "severity": "high", "status": "active", "customTags": []},
        {"id": 102, "displayName": "Malware", "severity": "medium", "status": "active", "customTags": ["SOC-T1"]},
        {"id": 103, "displayName": "Spray", "severity": "medium", "status": "active", "customTags": ["VIP"]},
    ]
}

SCORE = {"value": [{"currentScore": 61.5, "maxScore": 123.0, "createdDateTime": "2026-10-17T00:00:00Z"}]}


def _api():
    return (
        FakeApi()
        .add("GET", "/security/secureScores", SCORE)
        .add("GET", "/security/incidents", INCIDENTS)
        .add("PATCH", "/security/incidents/101", {})
        .add("PATCH", "/security/incidents/103", {})
    )


def _deployer(config, runner, api):
    return XdrDeployer(config=config, runner=runner, clients=make_factory(runner.guard, api), guard=runner.guard)


class TestIncidentFilter:

    def test_default(self):
        assert build_incident_filter(XdrDeployConfig()) == (
            "status eq 'active' and (severity eq 'medium' or severity eq 'high')"
        )

    def test_informational_includes_all(self):
        config = XdrDeployConfig(minimum_severity="informational", incident_status="")
        assert build_incident_filter(config) == ""

    def test_high_only(self):
        config = XdrDeployConfig(minimum_severity="high", incident_status="inProgress")
        assert build_incident_filter(config) == "status eq 'inProgress' and (severity eq 'high')"


class TestXdrDeployer:

    @pytest.mark.asyncio
    async def test_score_and_tagging(self, runner):
        api = _api()
        result = await _deployer(XdrDeployConfig(incident_tag="SOC-T1"), runner, api).execute()

        assert result.success
        assert result.step("secure_score").detail == "61.5/123.0 (50%)"
        assert result.step("list_incidents").detail == "3 incidents"
        step = result.step("tag_incidents")
        assert step.status == PASS
        assert step.detail == "Tag 'SOC-T1' added to 2 incidents (1 already tagged)"
        # Existing tags are kept alongside the new one.
        assert api.sent("PATCH", "/security/incidents/103") == [{"customTags": ["VIP", "SOC-T1"]}]

    @pytest.mark.asyncio
    async def test_incident_limit(self, runner):
        api = _api()
        result = await _deployer(XdrDeployConfig(max_incidents=2), runner, api).execute()
        assert result.step("list_incidents").detail == "2 incidents"
        assert result.step("tag_incidents").status == SKIPPED

    @pytest.mark.asyncio
    async def test_no_score_snapshot(self, runner):
        api = FakeApi().add("GET", "/security/secureScores", {"value": []})
        api.add("GET", "/security/incidents", {"value": []})
        result = await _deployer(XdrDeployConfig(), runner, api).execute()
        assert result.step("secure_score").status == SKIPPED
        assert result.success

    @pytest.mark.asyncio
    async def test_incident_permission_error(self, runner):
        api = FakeApi().add("GET", "/security/secureScores", SCORE)
        api.add("GET", "/security/incidents", {"error": {"message": "Insufficient privileges"}}, status=403)
        result = await _deployer(XdrDeployConfig(incident_tag="x"), runner, api).execute()
        assert result.step("list_incidents").status == FAIL
        assert result.step("tag_incidents") is None

    @pytest.mark.asyncio
    async def test_patch_failure(self, runner):
        api = _api().add(
            "PATCH", "/security/incidents/101",
            lambda request: httpx.Response(409, json={"error": {"message": "conflict"}}),
        )
        result = await _deployer(XdrDeployConfig(incident_tag="SOC-T1"), runner, api).execute()
        step = result.step("tag_incidents")
        assert step.status == FAIL
        assert step.data["failed"] == ["101"]
        assert step.data["tagged"] == ["103"]

    @pytest.mark.asyncio
    async def test_bad_severity(self, runner):
        result = await _deployer(XdrDeployConfig(minimum_severity="critical"), runner, FakeApi()).execute()
        assert result.steps[0].name == "configuration"

    @pytest.mark.asyncio
    async def test_bad_status(self, runner):
        result = await _deployer(XdrDeployConfig(incident_status="open"), runner, FakeApi()).execute()
        assert "Unknown incident status" in result.steps[0].detail


class TestXdrDryRun:

    @pytest.mark.asyncio
    async def test_tags_planned(self, dry_runner):
        api = _api()
        result = await _deployer(XdrDeployConfig(incident_tag="SOC-T1"), dry_runner, api).execute()
        step = result.step("tag_incidents")
        assert step.status == PLANNED
        assert step.data["planned"] == ["101", "103"]
        assert [r.method for r in api.requests] == ["GET", "GET"]

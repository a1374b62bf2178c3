"""Tests for the Defender for Cloud Apps deployer."""

import httpx
import pytest

from defender_toolkit.config import CloudAppsDeployConfig
from defender_toolkit.deployers import CloudAppsDeployer, PASS, FAIL, SKIPPED, PLANNED

from conftest import FakeApi, make_factory

PORTAL = "https://contoso.portal.cloudappsecurity.com"

RANGES = [
    {"name": "HQ", "subnets": ["203.0.113.0/24"]},
    {"name": "VPN egress", "subnets": ["198.51.100.10/32"], "category": "vpn", "tags": ["vpn"]},
]


def _api(existing=("HQ",), open_alerts=4):
    return (
        FakeApi()
        .add("POST", "/subnet/", {"data": [{"name": n} for n in existing], "hasNext": False})
        .add("POST", "/subnet/create_rule/", {"id": "new"})
        .add("POST", "/alerts/", {"total": open_alerts, "data": [{"_id": "a1"}]})
    )


def _deployer(config, runner, api):
    return CloudAppsDeployer(
        config=config, runner=runner, clients=make_factory(runner.guard, api), guard=runner.guard,
    )


class TestCloudAppsDeployer:

    @pytest.mark.asyncio
    async def test_creates_only_missing_ranges(self, runner):
        api = _api()
        config = CloudAppsDeployConfig(portal_url=PORTAL, ip_ranges=RANGES)
        result = await _deployer(config, runner, api).execute()

        assert result.success
        assert result.step("list_ip_ranges").data == ["HQ"]
        step = result.step("ip_ranges")
        assert step.status == PASS
        assert step.detail == "1 created, 1 already present"
        bodies = api.sent("POST", "/subnet/create_rule/")
        assert len(bodies) == 1
        assert bodies[0]["name"] == "VPN egress"
        assert bodies[0]["category"] == 4
        assert bodies[0]["tags"] == ["vpn"]

    @pytest.mark.asyncio
    async def test_alert_snapshot(self, runner):
        config = CloudAppsDeployConfig(portal_url=PORTAL)
        result = await _deployer(config, runner, _api(open_alerts=12)).execute()
        step = result.step("alerts_snapshot")
        assert step.detail == "12 open alerts"
        assert step.data == {"open_alerts": 12}
        assert result.step("ip_ranges").status == SKIPPED

    @pytest.mark.asyncio
    async def test_create_failure(self, runner):
        api = _api(existing=()).add(
            "POST", "/subnet/create_rule/",
            lambda request: httpx.Response(400, json={"error": "invalid", "detail": "Overlapping subnet"}),
        )
        config = CloudAppsDeployConfig(portal_url=PORTAL, ip_ranges=RANGES[:1])
        result = await _deployer(config, runner, api).execute()
        step = result.step("ip_ranges")
        assert step.status == FAIL
        assert step.data["failed"] == ["HQ"]
        assert result.step("alerts_snapshot").status == PASS

    @pytest.mark.asyncio
    async def test_list_failure_skips_creation(self, runner):
        api = FakeApi().add("POST", "/subnet/", {"error": {"message": "token"}}, status=401)
        api.add("POST", "/alerts/", {"total": 0})
        config = CloudAppsDeployConfig(portal_url=PORTAL, ip_ranges=RANGES)
        result = await _deployer(config, runner, api).execute()
        assert result.step("list_ip_ranges").status == FAIL
        assert result.step("ip_ranges") is None
        assert api.sent("POST", "/subnet/create_rule/") == []

    @pytest.mark.asyncio
    async def test_requires_portal_url(self, runner):
        result = await _deployer(CloudAppsDeployConfig(), runner, FakeApi()).execute()
        assert result.steps[0].name == "configuration"
        assert "portal_url" in result.steps[0].detail

    @pytest.mark.asyncio
    async def test_rejects_unknown_category(self, runner):
        config = CloudAppsDeployConfig(
            portal_url=PORTAL, ip_ranges=[{"name": "Lab", "subnets": ["10.0.0.0/8"], "category": "lab"}],
        )
        result = await _deployer(config, runner, FakeApi()).execute()
        assert "Unknown IP range category 'lab'" in result.steps[0].detail

    @pytest.mark.asyncio
    async def test_rejects_range_without_subnets(self, runner):
        config = CloudAppsDeployConfig(portal_url=PORTAL, ip_ranges=[{"name": "Empty"}])
        result = await _deployer(config, runner, FakeApi()).execute()
        assert result.steps[0].status == FAIL

    @pytest.mark.asyncio
    async def test_rejects_subnets_given_as_string(self, runner):
        api = _api(existing=())
        config = CloudAppsDeployConfig(portal_url=PORTAL, ip_ranges=[{"name": "HQ", "subnets": "10.0.0.0/8"}])
        result = await _deployer(config, runner, api).execute()
        assert result.steps[0].name == "configuration"
        assert "must be a list of CIDR strings" in result.steps[0].detail
        assert api.requests == []


class TestCloudAppsDryRun:

    @pytest.mark.asyncio
    async def test_ranges_planned(self, dry_runner):
        api = _api()
        config = CloudAppsDeployConfig(portal_url=PORTAL, ip_ranges=RANGES)
        result = await _deployer(config, dry_runner, api).execute()

        assert result.success
        step = result.step("ip_ranges")
        assert step.status == PLANNED
        assert step.detail == "1 would be created, 1 already present"
        assert api.sent("POST", "/subnet/create_rule/") == []
        # Listing and alert queries are reads and still reach the API.
        assert result.step("alerts_snapshot").status == PASS

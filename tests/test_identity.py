"""Tests for the Defender for Identity deployer."""

import pytest

from defender_toolkit.config import IdentityDeployConfig, MDI_AUDIT_SUBCATEGORIES
from defender_toolkit.deployers import IdentityDeployer, PASS, FAIL, SKIPPED, PLANNED

from conftest import make_factory


@pytest.fixture
def installer(tmp_path):
    path = tmp_path / "Azure ATP Sensor Setup.exe"
    path.write_bytes(b"MZ")
    return path


def _deployer(config, runner):
    return IdentityDeployer(config=config, runner=runner, clients=make_factory(runner.guard), guard=runner.guard)


def _config(installer, **overrides):
    values = {"installer_path": str(installer), "access_key": "key-123"}
    values.update(overrides)
    return IdentityDeployConfig(**values)


class TestIdentityDeployer:

    @pytest.mark.asyncio
    async def test_full_install(self, runner, installer):
        runner.respond("Get-ADServiceAccount", stdout="RESULT:EXISTS\n")
        runner.respond("Test-ADServiceAccount", stdout="RESULT:VALID\n")
        runner.service("AATPSensorUpdater", "Running")
        # Not installed on the first lookup, running afterwards.
        statuses = iter(["NotFound", "Running"])

        async def service_status(name):
            if name == "AATPSensor":
                return next(statuses)
            return "Running"

        runner.service_status = service_status
        result = await _deployer(_config(installer, gmsa_name="svc-mdi"), runner).execute()

        assert result.success
        assert [s.name for s in result.steps] == ["audit_policy", "gmsa", "sensor_install", "sensor_service"]
        assert result.step("audit_policy").detail == f"{len(MDI_AUDIT_SUBCATEGORIES)} subcategories enabled"
        assert result.step("sensor_install").status == PASS
        assert not runner.ran("New-ADServiceAccount")

    @pytest.mark.asyncio
    async def test_access_key_redacted(self, runner, installer):
        runner.service("AATPSensor", "NotFound")
        await _deployer(_config(installer, configure_auditing=False), runner).execute()
        install_calls = [argv for argv in runner.calls if argv[0] == str(installer)]
        assert install_calls[0][3] == "AccessKey=********"
        assert "key-123" not in str(runner.guard.get_audit_record())

    @pytest.mark.asyncio
    async def test_auditpol_failure(self, runner, installer):
        runner.respond("/subcategory:Credential Validation", returncode=87, stderr="bad")
        runner.service("AATPSensor", "Running")
        result = await _deployer(_config(installer), runner).execute()
        step = result.step("audit_policy")
        assert step.status == FAIL
        assert step.data == {"failed": ["Credential Validation"]}
        assert not result.success

    @pytest.mark.asyncio
    async def test_already_installed_skips(self, runner, installer):
        runner.service("AATPSensor", "Running").service("AATPSensorUpdater", "Running")
        result = await _deployer(_config(installer, configure_auditing=False), runner).execute()
        assert result.step("sensor_install").status == SKIPPED
        assert result.step("sensor_service").status == PASS

    @pytest.mark.asyncio
    async def test_reboot_required_is_pass_with_warning(self, runner, installer):
        runner.service("AATPSensor", "NotFound")
        runner.respond("/quiet", returncode=3010)
        result = await _deployer(_config(installer, configure_auditing=False), runner).execute()
        assert result.step("sensor_install").detail == "Sensor installed, reboot required"
        assert result.metadata["warnings"]

    @pytest.mark.asyncio
    async def test_missing_installer(self, runner, tmp_path):
        runner.service("AATPSensor", "NotFound")
        config = _config(tmp_path / "absent.exe", configure_auditing=False)
        result = await _deployer(config, runner).execute()
        assert result.step("sensor_install").status == FAIL
        assert result.step("sensor_service").status == SKIPPED

    @pytest.mark.asyncio
    async def test_missing_access_key(self, runner, installer, monkeypatch):
        monkeypatch.delenv("MDI_ACCESS_KEY", raising=False)
        runner.service("AATPSensor", "NotFound")
        config = _config(installer, access_key="", configure_auditing=False)
        result = await _deployer(config, runner).execute()
        assert "No access key" in result.step("sensor_install").detail

    @pytest.mark.asyncio
    async def test_service_stopped(self, runner, installer):
        runner.service("AATPSensor", "Running").service("AATPSensorUpdater", "Stopped")
        result = await _deployer(_config(installer, configure_auditing=False), runner).execute()
        step = result.step("sensor_service")
        assert step.status == FAIL
        assert step.detail == "Not running: AATPSensorUpdater=Stopped"

    @pytest.mark.asyncio
    async def test_validate_requires_installer(self, runner):
        result = await _deployer(IdentityDeployConfig(installer_path=""), runner).execute()
        assert result.steps[0].name == "configuration"
        assert result.steps[0].status == FAIL


class TestIdentityDryRun:

    @pytest.mark.asyncio
    async def test_everything_planned(self, dry_runner, installer):
        dry_runner.service("AATPSensor", "NotFound")
        dry_runner.respond("Get-ADServiceAccount", stdout="RESULT:MISSING\n")
        result = await _deployer(_config(installer, gmsa_name="svc-mdi"), dry_runner).execute()

        assert result.success
        assert result.step("audit_policy").status == PLANNED
        assert result.step("gmsa").status == PLANNED
        assert result.step("sensor_install").status == PLANNED
        assert result.step("sensor_service").status == SKIPPED
        planned = dry_runner.guard.planned_changes
        assert len(planned) == len(MDI_AUDIT_SUBCATEGORIES) + 2
        assert dry_runner.guard.applied_changes == []

"""Tests for CommandRunner: subprocess handling, dry-run, redaction and helpers."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from defender_toolkit.safety.guardian import ChangeGuard
from defender_toolkit.shell.runner import (
    POWERSHELL_ARGS,
    CommandResult,
    CommandRunner,
    ps_array,
    ps_quote,
    redact,
)

SPAWN = "defender_toolkit.shell.runner.asyncio.create_subprocess_exec"


def _proc(returncode=0, stdout=b"", stderr=b""):
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.kill = MagicMock()
    proc.wait = AsyncMock(return_value=returncode)
    return proc


class TestRun:

    @pytest.mark.asyncio
    async def test_success(self):
        runner = CommandRunner(guard=ChangeGuard())
        with patch(SPAWN, new=AsyncMock(return_value=_proc(0, b"ok\n"))) as spawn:
            result = await runner.run(["auditpol", "/get"], "Read audit policy", mutating=False)
        assert result.success
        assert result.stdout == "ok\n"
        assert spawn.call_args.args == ("auditpol", "/get")
        assert spawn.call_args.kwargs["stdin"] == asyncio.subprocess.DEVNULL
        assert runner.history == [result]

    @pytest.mark.asyncio
    async def test_input_sent_on_stdin(self):
        runner = CommandRunner(guard=ChangeGuard())
        proc = _proc(0, b"done\n")
        with patch(SPAWN, new=AsyncMock(return_value=proc)) as spawn:
            result = await runner.run(["cmd.exe", "/c", "C:\\MDE Package\\onboard.cmd"], "Onboard", input=b"Y\n")
        assert result.success
        assert spawn.call_args.kwargs["stdin"] == asyncio.subprocess.PIPE
        assert spawn.call_args.args[-1] == "C:\\MDE Package\\onboard.cmd"
        proc.communicate.assert_awaited_once_with(input=b"Y\n")

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        runner = CommandRunner(guard=ChangeGuard())
        with patch(SPAWN, new=AsyncMock(return_value=_proc(5, b"", b"Access is denied.\r\nmore"))):
            result = await runner.run(["auditpol", "/set"], "Set audit policy")
        assert not result.success
        assert result.returncode == 5
        assert result.first_error == "Access is denied."

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        runner = CommandRunner(guard=ChangeGuard())
        with patch(SPAWN, new=AsyncMock(side_effect=FileNotFoundError())):
            result = await runner.run(["nope.exe"], "Missing", mutating=False)
        assert result.returncode == 127
        assert "nope.exe" in result.stderr

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        runner = CommandRunner(guard=ChangeGuard(), timeout=1)
        proc = _proc()
        proc.communicate = AsyncMock(side_effect=asyncio.TimeoutError())
        with patch(SPAWN, new=AsyncMock(return_value=proc)):
            result = await runner.run(["slow.exe"], "Slow", mutating=False)
        assert result.timed_out
        assert not result.success
        proc.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_dry_run_does_not_spawn(self):
        guard = ChangeGuard(dry_run=True)
        runner = CommandRunner(guard=guard)
        with patch(SPAWN, new=AsyncMock()) as spawn:
            result = await runner.run(["setup.exe", "/quiet"], "Install")
        spawn.assert_not_called()
        assert result.dry_run
        assert result.success
        assert guard.planned_changes[0]["target"] == "Install"

    @pytest.mark.asyncio
    async def test_read_only_runs_in_dry_run(self):
        runner = CommandRunner(guard=ChangeGuard(dry_run=True))
        with patch(SPAWN, new=AsyncMock(return_value=_proc(0, b"STATUS:Running\n"))) as spawn:
            status = await runner.service_status("Sense")
        spawn.assert_called_once()
        assert status == "Running"

    @pytest.mark.asyncio
    async def test_secrets_redacted_everywhere(self):
        guard = ChangeGuard()
        runner = CommandRunner(guard=guard)
        with patch(SPAWN, new=AsyncMock(return_value=_proc())) as spawn:
            result = await runner.run(
                ["setup.exe", "AccessKey=s3cret"], "Install", secrets=["s3cret"]
            )
        # The real value reaches the process, never the records.
        assert "AccessKey=s3cret" in spawn.call_args.args
        assert result.argv == ["setup.exe", "AccessKey=********"]
        assert "s3cret" not in str(guard.get_audit_record())


class TestPowerShell:

    @pytest.mark.asyncio
    async def test_argv_shape(self):
        runner = CommandRunner(guard=ChangeGuard(), powershell="pwsh")
        with patch(SPAWN, new=AsyncMock(return_value=_proc())) as spawn:
            await runner.run_powershell("Get-Date", mutating=False)
        assert list(spawn.call_args.args) == ["pwsh", *POWERSHELL_ARGS, "Get-Date"]

    @pytest.mark.asyncio
    async def test_service_not_found(self):
        runner = CommandRunner(guard=ChangeGuard())
        with patch(SPAWN, new=AsyncMock(return_value=_proc(0, b"STATUS:NotFound\n"))):
            assert await runner.service_status("AATPSensor") == "NotFound"

    @pytest.mark.asyncio
    async def test_service_unknown_without_marker(self):
        runner = CommandRunner(guard=ChangeGuard())
        with patch(SPAWN, new=AsyncMock(return_value=_proc(1, b"", b"boom"))):
            assert await runner.service_status("Sense") == "Unknown"


class TestHelpers:

    def test_ps_quote_escapes(self):
        assert ps_quote("O'Brien") == "'O''Brien'"

    def test_ps_array(self):
        assert ps_array(["a.com", "b.com"]) == "@('a.com', 'b.com')"

    def test_redact_ignores_empty(self):
        assert redact(["a", "b"], [""]) == ["a", "b"]

    def test_lines_strip_blanks(self):
        result = CommandResult(argv=["x"], returncode=0, stdout="one\r\n\r\n two \n")
        assert result.lines() == ["one", "two"]

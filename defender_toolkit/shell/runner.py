"""
Local command runner — executables, auditpol and PowerShell scripts.

Mutating commands are registered with the ChangeGuard first; in dry-run
they are recorded and a synthetic successful result is returned.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..config import COMMAND_TIMEOUT_SECONDS, POWERSHELL_EXECUTABLE
from ..safety.guardian import ChangeGuard

logger = logging.getLogger("defender_toolkit.shell")

POWERSHELL_ARGS = ["-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command"]


@dataclass
class CommandResult:
    """Result of a local command."""
    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def display(self) -> str:
        return " ".join(self.argv[:1] + [a if len(a) < 60 else a[:57] + "..." for a in self.argv[1:]])

    @property
    def first_error(self) -> str:
        text = (self.stderr or self.stdout or "").strip()
        return text.splitlines()[0][:200] if text else ""

    def lines(self) -> list[str]:
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


@dataclass
class CommandRunner:
    """Runs local processes with a timeout, through the change guard."""
    guard: ChangeGuard
    powershell: str = POWERSHELL_EXECUTABLE
    timeout: int = COMMAND_TIMEOUT_SECONDS
    history: list[CommandResult] = field(default_factory=list)

    async def run(
        self,
        argv: list[str],
        description: str = "",
        mutating: bool = True,
        timeout: Optional[int] = None,
        secrets: Sequence[str] = (),
        input: Optional[bytes] = None,
    ) -> CommandResult:
        """
        Run argv; mutating commands go through the guard first.
        Values in `secrets` are masked in everything recorded about the command.
        `input` is written to the process's stdin.
        """
        shown = redact(argv, secrets)
        if mutating and not self.guard.validate_command(description or argv[0], shown):
            result = CommandResult(argv=shown, returncode=0, dry_run=True)
            self.history.append(result)
            return result

        started = time.monotonic()
        logger.debug(f"Running: {argv[0]} ({len(argv) - 1} args)")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            result = CommandResult(
                argv=shown,
                returncode=127,
                stderr=f"Executable not found: {argv[0]}",
                duration_seconds=round(time.monotonic() - started, 2),
            )
            self.history.append(result)
            return result

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(input=input), timeout=timeout or self.timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            result = CommandResult(
                argv=shown,
                returncode=-1,
                stderr=f"Timed out after {timeout or self.timeout}s",
                duration_seconds=round(time.monotonic() - started, 2),
                timed_out=True,
            )
            self.history.append(result)
            logger.warning(f"Command timed out: {result.display}")
            return result

        result = CommandResult(
            argv=shown,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_seconds=round(time.monotonic() - started, 2),
        )
        self.history.append(result)
        if not result.success:
            logger.info(f"Command exited {result.returncode}: {result.display}")
        return result

    async def run_powershell(
        self,
        script: str,
        description: str = "",
        mutating: bool = True,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        """Run a PowerShell script block with the configured shell."""
        argv = [self.powershell, *POWERSHELL_ARGS, script]
        return await self.run(argv, description or "PowerShell script", mutating, timeout)

    async def service_status(self, name: str) -> str:
        """
        Return the Windows service status ("Running", "Stopped", ...),
        or "NotFound" when the service is not installed.
        """
        script = (
            f"$s = Get-Service -Name {ps_quote(name)} -ErrorAction SilentlyContinue; "
            "if ($s) { Write-Output \"STATUS:$($s.Status)\" } else { Write-Output 'STATUS:NotFound' }"
        )
        result = await self.run_powershell(script, f"Query service {name}", mutating=False)
        for line in result.lines():
            if line.startswith("STATUS:"):
                return line.split(":", 1)[1]
        return "Unknown"


def ps_quote(value: str) -> str:
    """Quote a value as a single-quoted PowerShell string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def ps_array(values: list[str]) -> str:
    """Render a PowerShell array literal of quoted strings."""
    return "@(" + ", ".join(ps_quote(v) for v in values) + ")"


def redact(argv: list[str], secrets: Sequence[str]) -> list[str]:
    """Mask secret values inside argv elements."""
    masked = []
    for arg in argv:
        for secret in secrets:
            if secret:
                arg = arg.replace(secret, "********")
        masked.append(arg)
    return masked

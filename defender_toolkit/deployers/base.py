"""
Base deployer class — Abstract interface for all product deployers.
A deployer is a fixed, ordered sequence of steps; each step reports
pass, fail, skipped or planned (dry-run) with a one-line detail.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..clients.factory import ClientFactory
from ..safety.guardian import ChangeGuard
from ..shell.runner import CommandRunner

logger = logging.getLogger("defender_toolkit.deployers")

PASS = "pass"
FAIL = "fail"
SKIPPED = "skipped"
PLANNED = "planned"

STEP_STATUSES = (PASS, FAIL, SKIPPED, PLANNED)


class DeploymentError(Exception):
    """Raised when a deployer is misconfigured."""
    pass


@dataclass
class StepResult:
    """Outcome of a single deployment step."""
    deployer: str
    name: str
    status: str
    detail: str = ""
    data: Any = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status != FAIL

    def to_dict(self) -> dict:
        return {
            "deployer": self.deployer,
            "name": self.name,
            "status": self.status,
            "detail": self.detail,
            "data": self.data,
            "duration_seconds": self.duration_seconds,
        }


class DeploymentResult:
    """Standardized result from a deployer."""

    def __init__(self, deployer_name: str, on_step: Optional[Callable[[StepResult], None]] = None):
        self.deployer_name = deployer_name
        self.steps: list[StepResult] = []
        self.on_step = on_step
        self.metadata: dict[str, Any] = {
            "deployer": deployer_name,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "errors": [],
            "warnings": [],
        }

    @property
    def success(self) -> bool:
        return not self.metadata["errors"] and all(s.ok for s in self.steps)

    def add_step(
        self,
        name: str,
        status: str,
        detail: str = "",
        data: Any = None,
        started: Optional[float] = None,
    ) -> StepResult:
        if status not in STEP_STATUSES:
            raise ValueError(f"Unknown step status: {status}")
        step = StepResult(
            deployer=self.deployer_name,
            name=name,
            status=status,
            detail=detail,
            data=data,
            duration_seconds=round(time.monotonic() - started, 2) if started else 0.0,
        )
        self.steps.append(step)
        log = logger.warning if status == FAIL else logger.info
        log(f"[{self.deployer_name}] {name}: {status.upper()} {detail}")
        if self.on_step:
            try:
                self.on_step(step)
            except Exception as e:
                logger.exception(f"[{self.deployer_name}] Step listener failed for {name}")
                self.add_warning(f"Step {name} not recorded: {type(e).__name__}: {e}")
        return step

    def add_error(self, error: str):
        self.metadata["errors"].append(error)
        logger.error(f"[{self.deployer_name}] {error}")

    def add_warning(self, warning: str):
        self.metadata["warnings"].append(warning)
        logger.warning(f"[{self.deployer_name}] {warning}")

    def step(self, name: str) -> StepResult | None:
        for s in self.steps:
            if s.name == name:
                return s
        return None

    def counts(self) -> dict[str, int]:
        counts = {status: 0 for status in STEP_STATUSES}
        for s in self.steps:
            counts[s.status] += 1
        return counts

    def to_dict(self) -> dict:
        return {
            "deployer": self.deployer_name,
            "success": self.success,
            "steps": [s.to_dict() for s in self.steps],
            "metadata": self.metadata,
        }


class BaseDeployer(ABC):
    """
    Abstract base class for all deployers.

    Subclasses implement deploy() as a linear list of steps.
    The base class provides:
      - Timing and metadata
      - Error handling wrapper (execute() never raises)
      - Dry-run aware step status helpers
    """

    name: str = "base"
    product: str = ""
    description: str = "Base deployer"

    def __init__(
        self,
        config: Any,
        runner: CommandRunner,
        clients: ClientFactory,
        guard: ChangeGuard,
    ):
        self.config = config
        self.runner = runner
        self.clients = clients
        self.guard = guard

    @property
    def dry_run(self) -> bool:
        return self.guard.dry_run

    async def execute(self, on_step: Optional[Callable[[StepResult], None]] = None) -> DeploymentResult:
        """
        Execute the deployer with timing and error handling.
        """
        result = DeploymentResult(self.name, on_step=on_step)
        result.metadata["started_at"] = time.time()
        logger.info(f"[{self.name}] Starting deployment...")

        try:
            self.validate()
            await self.deploy(result)
        except DeploymentError as e:
            result.add_step("configuration", FAIL, str(e))
            result.add_error(f"Configuration error: {e}")
        except Exception as e:
            result.add_step("unexpected_error", FAIL, f"{type(e).__name__}: {e}")
            result.add_error(f"Deployment failed: {type(e).__name__}: {e}")
            logger.exception(f"[{self.name}] Deployment failed")

        result.metadata["completed_at"] = time.time()
        result.metadata["duration_seconds"] = round(
            result.metadata["completed_at"] - result.metadata["started_at"], 2
        )
        logger.info(
            f"[{self.name}] Completed in {result.metadata['duration_seconds']}s — "
            f"{result.counts()}"
        )
        return result

    def validate(self):
        """Raise DeploymentError for configuration that cannot work."""
        return None

    @abstractmethod
    async def deploy(self, result: DeploymentResult):
        """
        Implement the deployment sequence.
        Record outcomes via result.add_step(name, status, detail).
        """
        raise NotImplementedError

    def changed(self, dry_run_result: bool) -> str:
        """Status for a step whose change was applied or only planned."""
        return PLANNED if dry_run_result else PASS

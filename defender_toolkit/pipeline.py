"""
Deployment pipeline — chains the product deployers in a fixed order.

Deployers run one after another (mdi, mde, mdo, mdca, xdr; only those
requested). Every step is printed as it completes and written to the run
ledger. The chain stops at the first failed deployer unless
continue_on_error is set.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from .clients.factory import ClientFactory
from .config import ToolkitConfig
from .deployers import ALL_DEPLOYERS, DeploymentResult, StepResult, PASS, FAIL, SKIPPED, PLANNED
from .ledger.store import RunLedger
from .safety.guardian import ChangeGuard
from .shell.runner import CommandRunner

logger = logging.getLogger("defender_toolkit.pipeline")

PRODUCT_ORDER = list(ALL_DEPLOYERS)

STEP_ICONS = {PASS: "✅", FAIL: "❌", SKIPPED: "⏭ ", PLANNED: "📝"}


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""
    run_id: str
    products: list[str]
    dry_run: bool
    results: list[DeploymentResult] = field(default_factory=list)
    not_run: list[str] = field(default_factory=list)
    audit: dict = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.not_run and all(r.success for r in self.results)

    @property
    def status(self) -> str:
        if not self.success:
            return "failed"
        return "dry_run" if self.dry_run else "succeeded"

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "products": self.products,
            "dry_run": self.dry_run,
            "status": self.status,
            "success": self.success,
            "deployers": [r.to_dict() for r in self.results],
            "not_run": self.not_run,
            **self.audit,
        }


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]


def order_products(
    products: Optional[list[str]],
    config: Optional[ToolkitConfig] = None,
) -> list[str]:
    """
    Canonical order of the requested products. With none requested, every
    product whose config section is enabled.
    """
    if not products:
        if config is None:
            return list(PRODUCT_ORDER)
        return [
            p for p in PRODUCT_ORDER
            if getattr(config, ALL_DEPLOYERS[p].name).enabled
        ]
    unknown = [p for p in products if p not in ALL_DEPLOYERS]
    if unknown:
        raise ValueError(f"Unknown product(s): {', '.join(unknown)}")
    return [p for p in PRODUCT_ORDER if p in products]


def print_step(step: StepResult):
    icon = STEP_ICONS.get(step.status, "  ")
    detail = f" — {step.detail}" if step.detail else ""
    print(f"  {icon} {step.deployer}.{step.name}: {step.status.upper()}{detail}")


def _section_config(config: ToolkitConfig, deployer_cls) -> object:
    return getattr(config, deployer_cls.name)


async def run_pipeline(
    config: ToolkitConfig,
    products: Optional[list[str]],
    runner: CommandRunner,
    clients: ClientFactory,
    guard: ChangeGuard,
    ledger: Optional[RunLedger] = None,
    on_step: Optional[Callable[[StepResult], None]] = print_step,
    run_id: Optional[str] = None,
) -> PipelineResult:
    """
    Run the selected deployers sequentially.

    Returns:
        PipelineResult with one DeploymentResult per deployer that ran.
    """
    selected = order_products(products, config)
    result = PipelineResult(
        run_id=run_id or new_run_id(),
        products=selected,
        dry_run=guard.dry_run,
    )

    if ledger:
        ledger.start_run(
            result.run_id, selected, dry_run=guard.dry_run, tenant_id=config.tenant_id()
        )

    def _on_step(step: StepResult):
        if ledger:
            ledger.record_step(result.run_id, step.deployer, step.name, step.status, step.detail)
        if on_step:
            on_step(step)

    for index, product in enumerate(selected):
        deployer_cls = ALL_DEPLOYERS[product]
        deployer = deployer_cls(
            config=_section_config(config, deployer_cls),
            runner=runner,
            clients=clients,
            guard=guard,
        )
        print(f"\n  ▶ {deployer.description}")
        deployment = await deployer.execute(on_step=_on_step)
        result.results.append(deployment)

        if not deployment.success and not config.continue_on_error:
            result.not_run = selected[index + 1:]
            if result.not_run:
                logger.warning(
                    f"Stopping after {deployer.name} failure; not run: {', '.join(result.not_run)}"
                )
                print(f"\n  ⛔ Stopped after {deployer.name} failed; not run: {', '.join(result.not_run)}")
            break

    result.audit = guard.get_audit_record()
    if ledger:
        ledger.complete_run(result.run_id, result.status)
    return result

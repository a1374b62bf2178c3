"""
Markdown reports — deployment run and compliance reports rendered via Jinja2.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape


TEMPLATE_DIR = Path(__file__).parent / "templates"

STATUS_ICONS = {
    "pass":    "✅",
    "fail":    "❌",
    "skipped": "⏭",
    "planned": "📝",
    "partial": "🟡",
    "info":    "ℹ️",
}


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape([]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _generated_utc() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def export_markdown(
    pipeline_result: Any,
    output_dir: Path,
    tenant_name: str = "Unknown Tenant",
) -> Path:
    """Generate the Markdown deployment report for one run."""
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"deployment_report_{pipeline_result.run_id}.md"

    template = _environment().get_template("deployment_report.md.j2")
    content = template.render(
        run=pipeline_result,
        audit=pipeline_result.audit.get("change_guard", {}),
        tenant_name=tenant_name,
        generated_utc=_generated_utc(),
        icons=STATUS_ICONS,
    )

    with open(filepath, "w", encoding="utf-8") as fh:
        fh.write(content)
    return filepath


def export_compliance_markdown(
    summary: dict,
    output_dir: Path,
    report_id: str,
    tenant_name: str = "",
) -> Path:
    """Generate the Markdown compliance report."""
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"compliance_report_{report_id}.md"

    template = _environment().get_template("compliance_report.md.j2")
    content = template.render(
        summary=summary,
        report_id=report_id,
        tenant_name=tenant_name,
        generated_utc=_generated_utc(),
        icons=STATUS_ICONS,
    )

    with open(filepath, "w", encoding="utf-8") as fh:
        fh.write(content)
    return filepath

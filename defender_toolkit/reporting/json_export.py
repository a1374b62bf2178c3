"""
JSON exporter — Full machine-readable record of a deployment run
or a compliance assessment.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .. import __version__


def export_json(
    pipeline_result: Any,
    output_dir: Path,
    tenant_name: str = "",
    client_stats: list[dict] | None = None,
) -> Path:
    """
    Write a deployment run (deployers, steps, change guard audit) to JSON.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    run = pipeline_result.to_dict()

    payload = {
        "metadata": _metadata(run["run_id"], "DRY-RUN" if run["dry_run"] else "APPLY"),
        "tenant": tenant_name,
        "run": run,
        "api_stats": client_stats or [],
    }

    filepath = output_dir / f"defender_deployment_{run['run_id']}.json"
    _write(filepath, payload)
    return filepath


def export_compliance_json(summary: dict, output_dir: Path, report_id: str) -> Path:
    """Write a compliance summary (scores, controls, recommendations) to JSON."""
    output_dir.mkdir(parents=True, exist_ok=True)
    payload = {
        "metadata": _metadata(report_id, "ASSESSMENT"),
        "compliance": summary,
    }
    filepath = output_dir / f"compliance_{report_id}.json"
    _write(filepath, payload)
    return filepath


def _metadata(report_id: str, mode: str) -> dict:
    return {
        "tool": "Defender Deployment Toolkit",
        "version": __version__,
        "report_id": report_id,
        "generated_utc": datetime.now(timezone.utc).isoformat(),
        "mode": mode,
    }


def _write(filepath: Path, payload: dict):
    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)

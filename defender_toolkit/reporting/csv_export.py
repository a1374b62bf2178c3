"""
CSV exporter — Flat step listings and the compliance control matrix.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any


STEP_FIELDS = ["deployer", "step", "status", "detail", "duration_seconds"]

CONTROL_FIELDS = [
    "capability", "product", "product_name", "status", "status_label",
    "iso27001", "cis", "nist",
]


def export_csv(
    pipeline_result: Any,
    output_dir: Path,
) -> list[Path]:
    """
    Write CSV files for the run's steps and per-deployer summary.

    Returns:
        List of created CSV file paths.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    created = []
    run_id = pipeline_result.run_id

    # --- Steps CSV ---
    steps_path = output_dir / f"deployment_steps_{run_id}.csv"
    with open(steps_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=STEP_FIELDS)
        writer.writeheader()
        for result in pipeline_result.results:
            for step in result.steps:
                writer.writerow({
                    "deployer": step.deployer,
                    "step": step.name,
                    "status": step.status,
                    "detail": step.detail,
                    "duration_seconds": step.duration_seconds,
                })
    created.append(steps_path)

    # --- Deployer summary CSV ---
    summary_path = output_dir / f"deployment_summary_{run_id}.csv"
    with open(summary_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.writer(fh)
        writer.writerow(["deployer", "success", "pass", "fail", "skipped", "planned", "duration_seconds"])
        for result in pipeline_result.results:
            counts = result.counts()
            writer.writerow([
                result.deployer_name,
                result.success,
                counts["pass"],
                counts["fail"],
                counts["skipped"],
                counts["planned"],
                result.metadata.get("duration_seconds", 0),
            ])
        for name in pipeline_result.not_run:
            writer.writerow([name, "not_run", 0, 0, 0, 0, 0])
    created.append(summary_path)

    return created


def export_compliance_csv(summary: dict, output_dir: Path, report_id: str) -> list[Path]:
    """Write the control matrix and framework scores as CSV."""
    output_dir.mkdir(parents=True, exist_ok=True)
    created = []

    matrix_path = output_dir / f"compliance_matrix_{report_id}.csv"
    with open(matrix_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=CONTROL_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for control in summary["controls"]:
            writer.writerow(control)
    created.append(matrix_path)

    scores_path = output_dir / f"compliance_scores_{report_id}.csv"
    with open(scores_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.writer(fh)
        writer.writerow(["scope", "total", "pass", "partial", "fail", "score"])
        overall = summary["overall"]
        writer.writerow(["overall", overall["total"], overall["pass"], overall["partial"], overall["fail"], overall["score"]])
        for key, fw in summary["frameworks"].items():
            writer.writerow([key, fw["total"], fw["pass"], fw["partial"], fw["fail"], fw["score"]])
    created.append(scores_path)

    return created

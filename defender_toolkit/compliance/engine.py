"""
Compliance engine — scores, filters and recommendations over control mappings.

Scoring model:
  - pass counts 1, partial counts 0.5, fail counts 0.
  - score = round((pass + 0.5 * partial) / total * 100), halves rounded up.
  - Every mapping carries a reference in every framework, so the per-framework
    score equals the overall score for the same mapping set.
"""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Iterable, Optional, Union

from .catalog import CONTROL_MAPPINGS, PRODUCT_NAMES
from .models import COMPLIANCE_STATUSES, FRAMEWORKS, ComplianceScore, ControlMapping

STATUS_LABELS = {
    "pass":    "Compliant",
    "partial": "Partial",
    "fail":    "Non-Compliant",
}

MAX_PARTIAL_RECOMMENDATIONS = 5
ALL_COMPLIANT = "All controls are fully compliant."

# Follow-up actions listed next to the recommendations; level is info/partial/fail
DEPLOYMENT_ACTIONS = [
    {"level": "info", "text": "Deploy Safe Attachments baseline", "where": "defender-toolkit deploy --products mdo"},
    {"level": "info", "text": "Run MDI prerequisite checks", "where": "defender-toolkit deploy --products mdi --dry-run"},
    {"level": "partial", "text": "Enable Attack Surface Reduction rules", "where": "Microsoft Defender portal / Intune"},
    {"level": "fail", "text": "Configure DMARC/DKIM/SPF records", "where": "DNS provider"},
    {"level": "fail", "text": "Enable DLP policies", "where": "Microsoft Purview portal"},
]


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (builtin round() is half-even)."""
    return int(math.floor(value + 0.5))


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, "Non-Compliant")


def product_name(product: str) -> str:
    return PRODUCT_NAMES.get(product, product)


def score(mappings: Iterable[ControlMapping]) -> ComplianceScore:
    mappings = list(mappings)
    total = len(mappings)
    passing = sum(1 for m in mappings if m.status == "pass")
    partial = sum(1 for m in mappings if m.status == "partial")
    failing = sum(1 for m in mappings if m.status == "fail")
    value = round_half_up((passing + partial * 0.5) / total * 100) if total else 0
    return ComplianceScore(
        total=total,
        passing=passing,
        partial=partial,
        failing=failing,
        score=value,
    )


def framework_scores(mappings: Iterable[ControlMapping]) -> dict[str, ComplianceScore]:
    """Score per framework, counting only mappings with a reference in it."""
    mappings = list(mappings)
    return {
        key: score(m for m in mappings if getattr(m, key))
        for key in FRAMEWORKS
    }


def filter_mappings(
    mappings: Iterable[ControlMapping],
    status: str = "all",
    product: str = "all",
    search: str = "",
) -> list[ControlMapping]:
    """
    Exact match on status and product ("all" disables either), then a
    case-insensitive substring search over the capability, the three
    framework references and the product display name.
    """
    needle = (search or "").lower()
    filtered = []
    for m in mappings:
        if status != "all" and m.status != status:
            continue
        if product != "all" and m.product != product:
            continue
        if needle:
            haystack = f"{m.capability} {m.iso27001} {m.cis} {m.nist} {product_name(m.product)}".lower()
            if needle not in haystack:
                continue
        filtered.append(m)
    return filtered


def recommendations(mappings: Iterable[ControlMapping]) -> list[dict]:
    """
    Every failing control, then the first few partial ones.
    Returns dicts with level (fail/partial/pass), capability and text.
    """
    mappings = list(mappings)
    failing = [m for m in mappings if m.status == "fail"]
    partials = [m for m in mappings if m.status == "partial"]

    recs = [
        {
            "level": "fail",
            "capability": m.capability,
            "text": f"{m.capability} — Non-compliant. Review {product_name(m.product)} configuration.",
        }
        for m in failing
    ]
    recs.extend(
        {
            "level": "partial",
            "capability": m.capability,
            "text": f"{m.capability} — Partially compliant. Verify {product_name(m.product)} policies.",
        }
        for m in partials[:MAX_PARTIAL_RECOMMENDATIONS]
    )
    if not recs:
        recs.append({"level": "pass", "capability": "", "text": ALL_COMPLIANT})
    return recs


def deployment_actions() -> list[dict]:
    """Deployment follow-ups as {level, text, where}, each rendered as 'text → where'."""
    return [{**a, "display": f"{a['text']} → {a['where']}"} for a in DEPLOYMENT_ACTIONS]


def apply_assessment(
    mappings: Iterable[ControlMapping],
    overrides: dict[str, str],
) -> list[ControlMapping]:
    """
    Copy of the mappings with statuses replaced by capability name.
    Raises ValueError for an unknown capability or invalid status.
    """
    mappings = list(mappings)
    known = {m.capability for m in mappings}
    unknown = [c for c in overrides if c not in known]
    if unknown:
        raise ValueError(f"Unknown capability in assessment: {', '.join(unknown)}")
    invalid = {c: s for c, s in overrides.items() if s not in COMPLIANCE_STATUSES}
    if invalid:
        raise ValueError(
            f"Invalid status in assessment (expected one of {COMPLIANCE_STATUSES}): {invalid}"
        )
    return [
        m.with_status(overrides[m.capability]) if m.capability in overrides else m
        for m in mappings
    ]


def load_assessment(path: Union[str, Path]) -> dict[str, str]:
    """
    Read an assessment file: either {"capability": "status", ...} or
    {"controls": [{"capability": ..., "status": ...}, ...]}.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict) and "controls" in data:
        return {c["capability"]: c["status"] for c in data["controls"]}
    if not isinstance(data, dict):
        raise ValueError("Assessment file must be a JSON object")
    return dict(data)


def build_compliance_summary(
    mappings: Iterable[ControlMapping] = CONTROL_MAPPINGS,
    shown: Optional[Iterable[ControlMapping]] = None,
) -> dict:
    """
    Everything the compliance reports need, as plain data.
    Scores and recommendations cover `mappings`; the control table lists
    `shown` (a filtered subset) when given.
    """
    mappings = list(mappings)
    shown = mappings if shown is None else list(shown)
    overall = score(mappings)
    by_product = {
        product: score(m for m in mappings if m.product == product).to_dict()
        for product in PRODUCT_NAMES
        if any(m.product == product for m in mappings)
    }
    return {
        "overall": overall.to_dict(),
        "frameworks": {
            key: {"name": FRAMEWORKS[key], **s.to_dict()}
            for key, s in framework_scores(mappings).items()
        },
        "products": by_product,
        "controls": [
            {
                **m.to_dict(),
                "product_name": product_name(m.product),
                "status_label": status_label(m.status),
            }
            for m in shown
        ],
        "recommendations": recommendations(mappings),
        "actions": deployment_actions(),
    }

"""Compliance package — control mapping catalog, scoring and product offerings."""

from .catalog import CONTROL_MAPPINGS, PRODUCT_NAMES
from .engine import (
    apply_assessment,
    build_compliance_summary,
    deployment_actions,
    filter_mappings,
    framework_scores,
    load_assessment,
    recommendations,
    round_half_up,
    score,
    status_label,
)
from .models import COMPLIANCE_STATUSES, FRAMEWORKS, ComplianceScore, ControlMapping, Offering
from .offerings import OFFERINGS, get_offering

__all__ = [
    "COMPLIANCE_STATUSES",
    "CONTROL_MAPPINGS",
    "FRAMEWORKS",
    "PRODUCT_NAMES",
    "OFFERINGS",
    "ComplianceScore",
    "ControlMapping",
    "Offering",
    "apply_assessment",
    "build_compliance_summary",
    "deployment_actions",
    "filter_mappings",
    "framework_scores",
    "get_offering",
    "load_assessment",
    "recommendations",
    "round_half_up",
    "score",
    "status_label",
]

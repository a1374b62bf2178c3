"""
Compliance data models — control mappings, offerings and score summaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict, replace

COMPLIANCE_STATUSES = ("pass", "partial", "fail")

FRAMEWORKS = {
    "iso27001": "ISO 27001:2022",
    "cis":      "CIS Controls v8",
    "nist":     "NIST CSF 2.0",
}


@dataclass(frozen=True)
class ControlMapping:
    """One Defender capability mapped to a reference in each framework."""
    capability: str
    iso27001: str
    cis: str
    nist: str
    status: str        # pass | partial | fail
    product: str       # mde | mdi | mdo | mdca | mdvm | xdr

    def with_status(self, status: str) -> "ControlMapping":
        return replace(self, status=status)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ComplianceScore:
    """Pass/partial/fail counts and the 0-100 score derived from them."""
    total: int = 0
    passing: int = 0
    partial: int = 0
    failing: int = 0
    score: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "pass": self.passing,
            "partial": self.partial,
            "fail": self.failing,
            "score": self.score,
        }


@dataclass(frozen=True)
class Offering:
    """Reference card for one Defender product."""
    id: str
    product: str
    name: str
    tag: str
    description: str
    how_to: tuple[str, ...] = field(default_factory=tuple)
    best_practices: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product": self.product,
            "name": self.name,
            "tag": self.tag,
            "description": self.description,
            "how_to": list(self.how_to),
            "best_practices": list(self.best_practices),
        }

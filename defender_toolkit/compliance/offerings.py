"""
Offerings catalog — what each Defender product covers, how to roll it
out and the practices to keep once it is running.
"""

from __future__ import annotations

from typing import Optional

from .models import Offering

OFFERINGS: tuple[Offering, ...] = (
    Offering(
        id="defender-for-endpoint",
        product="mde",
        name="Defender for Endpoint",
        tag="Endpoint",
        description="Threat and vulnerability management, endpoint protection, and EDR coverage for devices.",
        how_to=(
            "Onboard pilot devices by OS family and validate sensor health telemetry.",
            "Enable next-gen protection baseline: AV, cloud-delivered protection, and tamper protection.",
            "Roll out attack surface reduction rules in audit mode before enforce mode.",
            "Integrate with Intune or Configuration Manager for policy deployment at scale.",
        ),
        best_practices=(
            "Use device groups aligned to business criticality and data sensitivity.",
            "Prioritize remediation using exposure score and active threat context.",
            "Automate low-risk responses while requiring approval for disruptive actions.",
            "Review advanced hunting queries weekly and tune custom detections.",
        ),
    ),
    Offering(
        id="defender-for-identity",
        product="mdi",
        name="Defender for Identity",
        tag="Identity",
        description="Detect identity-based attacks across hybrid Active Directory and Entra identities.",
        how_to=(
            "Deploy sensors to all domain controllers and standalone AD FS servers.",
            "Configure directory service accounts with least-privilege permissions.",
            "Validate lateral movement path data quality and entity enrichment.",
            "Connect identity alerts to Defender XDR incidents for triage correlation.",
        ),
        best_practices=(
            "Tune exclusions sparingly and document rationale for each suppression.",
            "Investigate suspicious auth patterns with conditional access and sign-in logs.",
            "Use identity posture assessments to prioritize hardening workstreams.",
            "Run periodic attack simulations for pass-the-hash and Kerberoasting scenarios.",
        ),
    ),
    Offering(
        id="defender-for-office365",
        product="mdo",
        name="Defender for Office 365",
        tag="Email & Collaboration",
        description="Protect collaboration workloads from phishing, malware, and business email compromise.",
        how_to=(
            "Enable preset security policies and align strictness to user risk tiers.",
            "Configure Safe Links and Safe Attachments for email and collaboration tools.",
            "Set up anti-phishing with user/domain impersonation protection.",
            "Enable automated investigation and response for mailbox threats.",
        ),
        best_practices=(
            "Use simulation training to improve user resilience to phishing campaigns.",
            "Monitor top targeted users and protect executives with stricter policies.",
            "Review quarantine and false positive trends to tune filtering actions.",
            "Integrate with SIEM for cross-domain detection and reporting.",
        ),
    ),
    Offering(
        id="defender-for-cloud-apps",
        product="mdca",
        name="Defender for Cloud Apps",
        tag="SaaS Security",
        description="Gain cloud app visibility, apply policy controls, and investigate risky user behavior.",
        how_to=(
            "Connect Microsoft 365 and priority third-party SaaS connectors first.",
            "Import firewall/proxy logs to build your shadow IT baseline.",
            "Create session and app governance policies for high-risk activities.",
            "Enable file and data policies for sensitive information exposure.",
        ),
        best_practices=(
            "Tag sanctioned apps and automatically block unsanctioned categories.",
            "Use anomaly detections as investigations, not direct enforcement signals.",
            "Correlate cloud app alerts with endpoint and identity detections in XDR.",
            "Review OAuth app permissions regularly and revoke risky grants quickly.",
        ),
    ),
    Offering(
        id="defender-vulnerability-management",
        product="mdvm",
        name="Defender Vulnerability Management",
        tag="Exposure Management",
        description="Prioritize and remediate vulnerabilities with risk-based scoring and recommendations.",
        how_to=(
            "Validate device inventory completeness and onboarding consistency.",
            "Define remediation SLAs by severity and business criticality.",
            "Integrate ticketing systems for recommendation-driven workflows.",
            "Track baseline security recommendations and exception approvals.",
        ),
        best_practices=(
            "Prioritize exploitable vulnerabilities observed in active attack campaigns.",
            "Measure remediation success using exposure score trends over time.",
            "Segment reporting by ownership to improve engineering accountability.",
            "Combine misconfiguration and vulnerability data for true risk ranking.",
        ),
    ),
    Offering(
        id="microsoft-defender-xdr",
        product="xdr",
        name="Microsoft Defender XDR",
        tag="Unified Operations",
        description="Correlate incidents, automate responses, and investigate threats across domains.",
        how_to=(
            "Configure RBAC roles for SOC tiers and incident response owners.",
            "Build custom detection rules from advanced hunting outcomes.",
            "Implement automation with approval gates for high-impact playbooks.",
            "Enable incident tagging taxonomy for reporting and lessons learned.",
        ),
        best_practices=(
            "Use correlation insights to avoid duplicate investigations across tools.",
            "Standardize triage runbooks to improve mean time to contain (MTTC).",
            "Run tabletop exercises using real incidents and automation fallbacks.",
            "Track detection coverage gaps and iterate on hunting hypotheses monthly.",
        ),
    ),
)


def get_offering(key: str) -> Optional[Offering]:
    """Look up an offering by id or product code (case-insensitive)."""
    key = key.lower()
    for offering in OFFERINGS:
        if key in (offering.id, offering.product):
            return offering
    return None

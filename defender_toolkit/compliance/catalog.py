"""
Control mapping catalog — Defender XDR capabilities mapped to
ISO 27001, CIS Controls v8 and NIST CSF 2.0.

Statuses here are the reference baseline; a tenant assessment file
overrides them per capability (see engine.apply_assessment).
"""

from __future__ import annotations

from .models import ControlMapping

PRODUCT_NAMES = {
    "mde":  "Defender for Endpoint",
    "mdi":  "Defender for Identity",
    "mdo":  "Defender for Office 365",
    "mdca": "Defender for Cloud Apps",
    "mdvm": "Vulnerability Management",
    "xdr":  "XDR Portal",
}


def _m(capability, iso27001, cis, nist, status, product) -> ControlMapping:
    return ControlMapping(capability, iso27001, cis, nist, status, product)


CONTROL_MAPPINGS: tuple[ControlMapping, ...] = (
    # --- Defender for Endpoint ---
    _m("Endpoint Detection & Response (EDR)",
       "A.8.7 — Malware protection",
       "CIS 10.1 — Deploy anti-malware software",
       "DE.CM-01 — Networks monitored",
       "pass", "mde"),
    _m("Attack Surface Reduction Rules",
       "A.8.8 — Management of technical vulnerabilities",
       "CIS 10.5 — Enable anti-exploitation features",
       "PR.PT-03 — Least functionality principle",
       "pass", "mde"),
    _m("Automated Investigation & Remediation",
       "A.5.25 — Assessment of information security events",
       "CIS 17.4 — Establish incident response process",
       "RS.AN-03 — Analysis performed",
       "pass", "mde"),
    _m("Device Inventory & Health",
       "A.5.9 — Inventory of information assets",
       "CIS 1.1 — Establish enterprise asset inventory",
       "ID.AM-01 — Hardware inventoried",
       "pass", "mde"),
    _m("Network Protection",
       "A.8.20 — Network security",
       "CIS 9.2 — Use DNS filtering services",
       "PR.DS-02 — Data-in-transit protected",
       "partial", "mde"),
    _m("Web Content Filtering",
       "A.8.23 — Web filtering",
       "CIS 9.3 — Maintain URL filtering",
       "PR.PT-03 — Least functionality principle",
       "partial", "mde"),
    _m("Controlled Folder Access",
       "A.8.3 — Information access restriction",
       "CIS 10.4 — Configure anti-malware scanning",
       "PR.DS-01 — Data-at-rest protected",
       "pass", "mde"),

    # --- Defender for Identity ---
    _m("Identity Threat Detection",
       "A.8.16 — Monitoring activities",
       "CIS 8.11 — Conduct audit log reviews",
       "DE.AE-02 — Events analysed for anomalies",
       "pass", "mdi"),
    _m("Lateral Movement Path Detection",
       "A.8.15 — Logging",
       "CIS 13.5 — Manage access control",
       "DE.CM-03 — Personnel activity monitored",
       "pass", "mdi"),
    _m("Compromised Credential Detection",
       "A.5.17 — Authentication information",
       "CIS 5.2 — Use unique passwords",
       "PR.AC-07 — Users authenticated",
       "pass", "mdi"),
    _m("Active Directory Security Posture",
       "A.5.15 — Access control",
       "CIS 5.4 — Restrict administrator privileges",
       "PR.AC-06 — Identities managed",
       "partial", "mdi"),
    _m("Domain Controller Sensor Deployment",
       "A.8.9 — Configuration management",
       "CIS 4.1 — Establish secure configuration process",
       "PR.IP-01 — Baseline configurations",
       "pass", "mdi"),

    # --- Defender for Office 365 ---
    _m("Safe Attachments",
       "A.8.7 — Malware protection",
       "CIS 9.6 — Block unnecessary file types",
       "DE.CM-01 — Networks monitored",
       "pass", "mdo"),
    _m("Safe Links",
       "A.8.23 — Web filtering",
       "CIS 9.3 — Maintain URL filtering",
       "PR.PT-03 — Least functionality principle",
       "pass", "mdo"),
    _m("Anti-Phishing Policies",
       "A.6.3 — Information security awareness",
       "CIS 14.1 — Establish security awareness program",
       "PR.AT-01 — Users informed & trained",
       "partial", "mdo"),
    _m("Zero-hour Auto Purge (ZAP)",
       "A.5.26 — Response to information security incidents",
       "CIS 17.5 — Assign incident response roles",
       "RS.MI-01 — Incidents contained",
       "pass", "mdo"),
    _m("Email Authentication (DMARC/DKIM/SPF)",
       "A.5.14 — Information transfer",
       "CIS 9.5 — Implement DMARC",
       "PR.DS-02 — Data-in-transit protected",
       "fail", "mdo"),

    # --- Defender for Cloud Apps ---
    _m("Shadow IT Discovery",
       "A.5.9 — Inventory of information assets",
       "CIS 2.1 — Establish software inventory",
       "ID.AM-02 — Software inventoried",
       "pass", "mdca"),
    _m("App Governance Policies",
       "A.5.23 — Information security for cloud services",
       "CIS 2.3 — Address unauthorised software",
       "PR.AC-04 — Access permissions managed",
       "partial", "mdca"),
    _m("Session Controls (Conditional Access App Control)",
       "A.8.3 — Information access restriction",
       "CIS 6.8 — Define and maintain role-based access control",
       "PR.AC-04 — Access permissions managed",
       "partial", "mdca"),
    _m("OAuth App Monitoring",
       "A.8.26 — Application security requirements",
       "CIS 16.10 — Apply secure design principles",
       "PR.AC-06 — Identities managed",
       "pass", "mdca"),

    # --- Defender Vulnerability Management ---
    _m("Vulnerability Assessment & Prioritisation",
       "A.8.8 — Management of technical vulnerabilities",
       "CIS 7.1 — Establish vulnerability management process",
       "ID.RA-01 — Vulnerabilities identified",
       "pass", "mdvm"),
    _m("Security Baselines Assessment",
       "A.8.9 — Configuration management",
       "CIS 4.1 — Establish secure configuration process",
       "PR.IP-01 — Baseline configurations",
       "partial", "mdvm"),
    _m("Software Inventory",
       "A.5.9 — Inventory of information assets",
       "CIS 2.1 — Establish software inventory",
       "ID.AM-02 — Software inventoried",
       "pass", "mdvm"),
    _m("Browser Extension Assessment",
       "A.8.26 — Application security requirements",
       "CIS 2.3 — Address unauthorised software",
       "ID.AM-02 — Software inventoried",
       "fail", "mdvm"),

    # --- XDR portal ---
    _m("Unified Incident Queue",
       "A.5.25 — Assessment of information security events",
       "CIS 17.4 — Establish incident response process",
       "DE.AE-04 — Impact of events determined",
       "pass", "xdr"),
    _m("Advanced Hunting (KQL)",
       "A.8.15 — Logging",
       "CIS 8.2 — Collect audit logs",
       "DE.AE-02 — Events analysed for anomalies",
       "pass", "xdr"),
    _m("Automated Investigation & Response",
       "A.5.26 — Response to information security incidents",
       "CIS 17.8 — Conduct post-incident reviews",
       "RS.RP-01 — Response plan executed",
       "pass", "xdr"),
    _m("Secure Score",
       "A.5.36 — Compliance with policies",
       "CIS 18.1 — Establish penetration testing program",
       "ID.GV-03 — Cybersecurity roles established",
       "partial", "xdr"),
    _m("Role-Based Access Control (RBAC)",
       "A.5.15 — Access control",
       "CIS 6.8 — Define and maintain role-based access control",
       "PR.AC-04 — Access permissions managed",
       "pass", "xdr"),
    _m("Threat Analytics Reports",
       "A.5.7 — Threat intelligence",
       "CIS 17.9 — Establish security incident thresholds",
       "ID.RA-02 — Threat intelligence received",
       "pass", "xdr"),
    _m("Data Loss Prevention Integration",
       "A.5.12 — Classification of information",
       "CIS 3.1 — Establish data management process",
       "PR.DS-01 — Data-at-rest protected",
       "fail", "xdr"),
    _m("Multi-Tenant Management",
       "A.5.8 — Information security in project management",
       "CIS 18.3 — Remediate penetration test findings",
       "ID.GV-02 — Cybersecurity roles coordinated",
       "partial", "xdr"),
)

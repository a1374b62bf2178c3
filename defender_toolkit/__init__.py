"""
Defender Deployment Toolkit
===========================
Onboarding automation for the Microsoft Defender family (Identity, Endpoint,
Office 365, Cloud Apps, XDR portal) plus a cross-framework compliance
mapping of Defender capabilities.

Every tenant write and every mutating local command passes through the
ChangeGuard; run with --dry-run to record the plan without applying it.
"""

__version__ = "1.0.0"
__author__ = "Defender Deployment Toolkit"

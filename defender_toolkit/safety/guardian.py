"""
Change Guard — Gates every change the toolkit makes to a tenant or host.
Validates HTTP methods against an onboarding allowlist, blocks destructive
response actions, records planned changes in dry-run mode, and keeps an
audit trail of everything it saw.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("defender_toolkit.safety")

# ─── Write Methods ───────────────────────────────────────────────────────────

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Writes the deployers are allowed to make
ALLOWED_WRITE_ENDPOINTS = [
    ("POST", re.compile(r"/machines/[^/]+/tags$")),                 # MDE device tag
    ("PATCH", re.compile(r"/security/incidents/[^/]+$")),           # XDR incident tags
    ("POST", re.compile(r"/api/v1/subnet/create_rule/?$")),         # MDCA IP ranges
]

# Query endpoints that use POST but change nothing
READ_ONLY_POST_ENDPOINTS = [
    re.compile(r"/\$batch$"),
    re.compile(r"/api/v1/alerts/?$"),
    re.compile(r"/api/v1/subnet/?$"),
    re.compile(r"/security/microsoft\.graph\.security\.runHuntingQuery$"),
]

# Response actions that are never part of onboarding
BLOCKED_URL_PATTERNS = [
    re.compile(r"/offboard$", re.IGNORECASE),
    re.compile(r"/isolate$", re.IGNORECASE),
    re.compile(r"/unisolate$", re.IGNORECASE),
    re.compile(r"/restrictCodeExecution$", re.IGNORECASE),
    re.compile(r"/runAntiVirusScan$", re.IGNORECASE),
    re.compile(r"/collectInvestigationPackage$", re.IGNORECASE),
    re.compile(r"/StopAndQuarantineFile$", re.IGNORECASE),
    re.compile(r"/wipe$", re.IGNORECASE),
    re.compile(r"/retire$", re.IGNORECASE),
    re.compile(r"/resetPassword$", re.IGNORECASE),
    re.compile(r"/revokeSignInSessions$", re.IGNORECASE),
]


class SafetyViolation(Exception):
    """Raised when a change falls outside what the toolkit may do."""
    pass


class ChangeGuard:
    """
    Validates every outbound write before it leaves the process.

    Requests: reads always pass; writes pass only when they match the
    onboarding allowlist. Commands: every mutating local command is
    registered here before it runs. In dry-run mode allowed writes are
    recorded as planned and the caller must not send them.
    """

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.violations: list[dict] = []
        self.planned_changes: list[dict] = []
        self.applied_changes: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = _utcnow()

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate an HTTP request.

        Returns True when the request should be sent, False when it was
        recorded as a dry-run plan. Raises SafetyViolation when blocked.
        """
        self.checks_performed += 1
        method_upper = method.upper()
        path = url.split("?", 1)[0]

        for pattern in BLOCKED_URL_PATTERNS:
            if pattern.search(path):
                self._record_violation(method_upper, url, "Blocked response action")
                raise SafetyViolation(
                    f"SAFETY VIOLATION: Response action blocked: {method_upper} {url}"
                )

        if method_upper in ("GET", "HEAD", "OPTIONS"):
            return True

        if method_upper == "POST":
            for pattern in READ_ONLY_POST_ENDPOINTS:
                if pattern.search(path):
                    return True

        if method_upper in WRITE_METHODS:
            for allowed_method, pattern in ALLOWED_WRITE_ENDPOINTS:
                if allowed_method == method_upper and pattern.search(path):
                    return self._record_change("http", f"{method_upper} {url}", body)

            self._record_violation(method_upper, url, "Write outside onboarding allowlist")
            raise SafetyViolation(
                f"SAFETY VIOLATION: Write method blocked: {method_upper} {url}"
            )

        return True

    def validate_command(self, description: str, argv: list[str]) -> bool:
        """
        Register a mutating local command.
        Returns True when it should run, False when only planned.
        """
        self.checks_performed += 1
        return self._record_change("command", description, {"argv": argv})

    def _record_change(self, kind: str, target: str, payload: Optional[dict]) -> bool:
        change = {
            "timestamp": _utcnow(),
            "kind": kind,
            "target": target,
            "payload": payload,
        }
        if self.dry_run:
            self.planned_changes.append(change)
            logger.info(f"DRY-RUN planned {kind}: {target}")
            return False
        self.applied_changes.append(change)
        logger.debug(f"Applying {kind}: {target}")
        return True

    def _record_violation(self, method: str, url: str, reason: str):
        """Record a safety violation for audit."""
        violation = {
            "timestamp": _utcnow(),
            "method": method,
            "url": url,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the full change audit record."""
        return {
            "change_guard": {
                "mode": "DRY-RUN" if self.dry_run else "APPLY",
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "planned_changes": self.planned_changes,
                "applied_changes": self.applied_changes,
                "violations_detected": len(self.violations),
                "violations": self.violations,
                "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
            }
        }

    def print_banner(self):
        """Print the run-mode banner."""
        import sys
        # Unicode box-drawing only on UTF-8 interactive terminals.
        enc = getattr(sys.stdout, "encoding", "") or ""
        unicode_ok = (
            sys.stdout.isatty()
            and enc.lower().replace("-", "") in ("utf8", "utf16", "utf32")
        )
        if self.dry_run:
            lines = [
                "DRY-RUN — NO CHANGES WILL BE MADE",
                "* Read-only queries and status checks still run",
                "* Every write is recorded as a planned change",
            ]
        else:
            lines = [
                "APPLY MODE — ONBOARDING CHANGES WILL BE MADE",
                "* Writes limited to tags, IP ranges and policies",
                "* Response actions (isolate, offboard, wipe) are blocked",
            ]

        if unicode_ok:
            width = 71
            out = ["╔" + "═" * width + "╗"]
            for line in lines:
                out.append("║   " + line.ljust(width - 3) + "║")
            out.append("╚" + "═" * width + "╝")
            try:
                print("\n".join(out))
                return
            except UnicodeEncodeError:
                pass  # fall through to ASCII banner

        print("=" * 75)
        for line in lines:
            print(f"  {line}")
        print("=" * 75)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()

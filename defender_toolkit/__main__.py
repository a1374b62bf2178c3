"""
Defender Deployment Toolkit — Command line

Usage:
    python -m defender_toolkit deploy --products mdi mde --dry-run
    python -m defender_toolkit deploy --profile contoso-prod --config deploy.json
    python -m defender_toolkit deploy --tenant-id <GUID> --client-id <GUID> --products xdr

Profile management:
    python -m defender_toolkit profile add <name> --tenant-id ... --client-id ...
    python -m defender_toolkit profile list
    python -m defender_toolkit profile remove <name>
    python -m defender_toolkit profile set-default <name>

Reference data:
    python -m defender_toolkit compliance --status fail --formats markdown
    python -m defender_toolkit offerings mdi
    python -m defender_toolkit history --run <RUN_ID>

Exit codes: 0 success, 1 a deployer failed, 2 configuration error.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from . import __version__
from .auth.authenticator import Authenticator, AuthenticationError
from .clients.factory import ClientFactory
from .compliance import (
    CONTROL_MAPPINGS,
    OFFERINGS,
    PRODUCT_NAMES,
    apply_assessment,
    build_compliance_summary,
    filter_mappings,
    get_offering,
    load_assessment,
    status_label,
)
from .config import (
    CertificateAuth,
    ConfigError,
    DEFAULT_LEDGER_PATH,
    DelegatedAuth,
    ToolkitConfig,
)
from .deployers import ALL_DEPLOYERS
from .ledger.store import RunLedger
from .pipeline import PipelineResult, new_run_id, order_products, run_pipeline
from .profiles import ProfileStore, TenantProfile, resolve_profile
from .reporting import (
    export_compliance_csv,
    export_compliance_json,
    export_compliance_markdown,
    export_csv,
    export_json,
    export_markdown,
)
from .safety.guardian import ChangeGuard
from .shell.runner import CommandRunner

logger = logging.getLogger("defender_toolkit.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2

REPORT_FORMATS = ["json", "csv", "markdown"]


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def setup_logging(verbose: bool = False):
    """Diagnostics to stderr; DEBUG with --verbose, WARNING otherwise."""
    root = logging.getLogger("defender_toolkit")
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s", "%H:%M:%S"
        ))
        root.addHandler(handler)


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    print("Usage: python -m defender_toolkit profile {add|list|remove|set-default}")
    return EXIT_OK


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m defender_toolkit profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --cert-path ./base64.txt")
        return EXIT_OK

    print(f"\n  {'Name':<24s} {'Tenant ID':<38s} {'Client ID':<38s} {'Organization':<30s} {'Default'}")
    print(f"  {'─'*24} {'─'*38} {'─'*38} {'─'*30} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        name_col = p.name + (f" ({p.tenant_display_name})" if p.tenant_display_name else "")
        print(f"  {name_col:<24s} {p.tenant_id:<38s} {p.client_id:<38s} {p.organization:<30s}{default_marker}")
    print()
    return EXIT_OK


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        cert_path=args.cert_path or "./base64.txt",
        tenant_display_name=args.display_name or "",
        organization=args.organization or "",
        cloud_apps_url=args.cloud_apps_url or "",
        notes=args.notes or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print("  ✅ Set as default profile.")
    return EXIT_OK


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  ✅ Profile '{args.profile_name}' removed.")
        return EXIT_OK
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_FAILED


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  ✅ Default profile set to '{args.profile_name}'.")
        return EXIT_OK
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_FAILED


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--verbose", "-v", action="store_true", help="Debug logging to stderr")

    parser = argparse.ArgumentParser(
        prog="defender_toolkit",
        description="Microsoft Defender deployment toolkit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # --- deploy ---
    dep = subparsers.add_parser("deploy", parents=[common], help="Run product deployers")
    dep.add_argument(
        "--products",
        nargs="+",
        choices=list(ALL_DEPLOYERS),
        default=None,
        help="Products to deploy, run in canonical order (default: all)",
    )
    dep.add_argument("--dry-run", action="store_true", help="Record planned changes without applying them")
    dep.add_argument("--continue-on-error", action="store_true", help="Keep going after a failed deployer")
    dep.add_argument("--profile", "-p", help="Tenant profile name (run 'profile list' to see available)")
    dep.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    dep.add_argument("--delegated", action="store_true", help="Use device-code authentication")
    dep.add_argument("--cert-path", type=Path, help="Path to base64-encoded PFX (overrides profile)")
    dep.add_argument("--tenant-id", help="Tenant ID (overrides profile)")
    dep.add_argument("--client-id", help="Client ID (overrides profile)")
    dep.add_argument("--tenant-name", help="Display name for the tenant in reports")
    dep.add_argument("--output-dir", "-o", type=Path, help="Output directory for reports")
    dep.add_argument(
        "--formats",
        nargs="*",
        choices=REPORT_FORMATS,
        default=list(REPORT_FORMATS),
        help="Report formats to generate",
    )
    dep.add_argument("--ledger", type=Path, help=f"Run ledger database (default: {DEFAULT_LEDGER_PATH})")
    dep.add_argument("--no-ledger", action="store_true", help="Do not record the run")

    # --- profile ---
    prof_parser = subparsers.add_parser("profile", parents=[common], help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX (default: ./base64.txt)")
    add_p.add_argument("--display-name", help="Friendly tenant display name for reports")
    add_p.add_argument("--organization", help="Exchange Online organization (contoso.onmicrosoft.com)")
    add_p.add_argument("--cloud-apps-url", help="Defender for Cloud Apps portal URL")
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    # --- compliance ---
    comp = subparsers.add_parser("compliance", parents=[common], help="Control mapping scores and report")
    comp.add_argument("--status", choices=["all", "pass", "partial", "fail"], default="all")
    comp.add_argument("--product", choices=["all"] + list(PRODUCT_NAMES), default="all")
    comp.add_argument("--search", default="", help="Case-insensitive text search")
    comp.add_argument("--assessment", type=Path, help="JSON file overriding control statuses")
    comp.add_argument("--tenant-name", default="", help="Tenant name for the report header")
    comp.add_argument("--output-dir", "-o", type=Path, default=Path("."), help="Where to write reports")
    comp.add_argument("--formats", nargs="*", choices=REPORT_FORMATS, default=[], help="Report formats to write")

    # --- offerings ---
    off = subparsers.add_parser("offerings", parents=[common], help="Defender product reference cards")
    off.add_argument("product", nargs="?", help="Product code or offering id")

    # --- history ---
    hist = subparsers.add_parser("history", parents=[common], help="Previous deployment runs")
    hist.add_argument("--limit", type=int, default=10)
    hist.add_argument("--run", help="Show the steps of one run")
    hist.add_argument("--prune", type=int, metavar="DAYS", help="Delete runs older than DAYS")
    hist.add_argument("--ledger", type=Path, help=f"Run ledger database (default: {DEFAULT_LEDGER_PATH})")

    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def build_config(args: argparse.Namespace) -> tuple[ToolkitConfig, Optional[TenantProfile]]:
    """Build toolkit configuration from profile, CLI args, or config file."""
    if args.config:
        if not args.config.exists():
            raise ConfigError(f"Config file not found: {args.config}")
        try:
            config = ToolkitConfig.from_file(str(args.config))
        except (ValueError, KeyError, TypeError) as e:
            raise ConfigError(f"Invalid config file {args.config}: {e}") from e
    else:
        config = ToolkitConfig()

    if args.delegated:
        config.auth.mode = "delegated"

    # --- Resolve tenant identity from profile or CLI flags ---
    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            raise ConfigError(
                f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles."
            )
    elif not args.config and not args.tenant_id:
        profile = resolve_profile()

    existing = config.auth.delegated if config.auth.mode == "delegated" else config.auth.certificate
    if profile:
        tenant_id = args.tenant_id or profile.tenant_id
        client_id = args.client_id or profile.client_id
        cert_path = str(args.cert_path) if args.cert_path else profile.resolve_cert_path()
    elif args.tenant_id and args.client_id:
        tenant_id = args.tenant_id
        client_id = args.client_id
        cert_path = str(args.cert_path) if args.cert_path else "./base64.txt"
    elif existing:
        tenant_id = args.tenant_id or existing.tenant_id
        client_id = args.client_id or existing.client_id
        cert_path = (
            str(args.cert_path) if args.cert_path
            else getattr(existing, "certificate_path", "./base64.txt")
        )
    else:
        raise ConfigError(
            "No tenant credentials found. Use --profile <name>, "
            "--tenant-id X --client-id Y, or --config config.json"
        )

    if config.auth.mode == "delegated":
        config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)
    else:
        previous = config.auth.certificate
        config.auth.certificate = CertificateAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=cert_path,
            certificate_password=previous.certificate_password if previous else "",
            thumbprint=previous.thumbprint if previous else "",
        )

    if profile:
        config.office.organization = config.office.organization or profile.organization
        config.cloud_apps.portal_url = config.cloud_apps.portal_url or profile.cloud_apps_url

    if args.dry_run:
        config.dry_run = True
    if args.continue_on_error:
        config.continue_on_error = True
    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    config.output.formats = list(args.formats)
    config.verbose = config.verbose or args.verbose

    return config, profile


def prepare_office(config: ToolkitConfig, authenticator: Authenticator):
    """App-only Exchange Online reuses the toolkit's own app registration and certificate."""
    if config.auth.mode != "certificate" or not config.auth.certificate:
        return
    if not config.office.app_id:
        config.office.app_id = config.auth.certificate.client_id
    if not config.office.certificate_thumbprint:
        config.office.certificate_thumbprint = authenticator.certificate_thumbprint()


def _ledger_path(args: argparse.Namespace, config: Optional[ToolkitConfig] = None) -> str:
    if getattr(args, "ledger", None):
        return str(args.ledger)
    if config and config.ledger_path:
        return config.ledger_path
    return DEFAULT_LEDGER_PATH


# ---------------------------------------------------------------------------
# deploy
# ---------------------------------------------------------------------------

def generate_reports(
    result: PipelineResult,
    config: ToolkitConfig,
    tenant_name: str,
    client_stats: list[dict],
) -> list[Path]:
    """Generate all requested report formats."""
    output = config.output
    formats = output.formats
    created = []

    if "json" in formats:
        path = export_json(result, output.json_dir, tenant_name, client_stats)
        created.append(path)
        print(f"  📄 JSON:       {path}")

    if "csv" in formats:
        paths = export_csv(result, output.csv_dir)
        created.extend(paths)
        for p in paths:
            print(f"  📊 CSV:        {p}")

    if "markdown" in formats:
        path = export_markdown(result, output.reports_dir, tenant_name)
        created.append(path)
        print(f"  📝 Markdown:   {path}")

    return created


async def run_deploy(args: argparse.Namespace) -> int:
    config, profile = build_config(args)
    try:
        products = order_products(args.products, config)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    guard = ChangeGuard(dry_run=config.dry_run)
    guard.print_banner()

    print("=" * 70)
    print(f" Defender Deployment Toolkit v{__version__}")
    print(f" Mode: {'DRY-RUN' if config.dry_run else 'APPLY'}")
    print("=" * 70)

    run_id = new_run_id()
    tenant_name = args.tenant_name or (profile.tenant_display_name if profile else "") or config.tenant_id()
    profile_label = f" (profile: {profile.name})" if profile else ""
    print(f"\n📋 Run ID:   {run_id}")
    print(f"🏢 Tenant:   {tenant_name}{profile_label}")
    print(f"📦 Products: {', '.join(products)}")

    authenticator = Authenticator(config.auth)
    if "mdo" in products:
        try:
            prepare_office(config, authenticator)
        except AuthenticationError as e:
            print(f"\n❌ {e}")
            return EXIT_FAILED

    runner = CommandRunner(guard=guard, powershell=config.powershell, timeout=config.command_timeout)
    clients = ClientFactory(authenticator, guard)
    ledger = None if args.no_ledger else RunLedger(_ledger_path(args, config))

    print("\n" + "=" * 70)
    print(" DEPLOYMENT")
    print("=" * 70)
    result = await run_pipeline(
        config, products, runner, clients, guard, ledger=ledger, run_id=run_id
    )

    created = []
    if config.output.formats:
        print("\n" + "=" * 70)
        print(" REPORTS")
        print("=" * 70 + "\n")
        config.output.create_directories()
        created = generate_reports(result, config, tenant_name, clients.get_stats())

    print("\n" + "=" * 70)
    print(" RUN COMPLETE")
    print("=" * 70)
    for deployment in result.results:
        icon = "✅" if deployment.success else "❌"
        counts = deployment.counts()
        print(
            f"  {icon} {deployment.deployer_name:12s} pass={counts['pass']} fail={counts['fail']} "
            f"skipped={counts['skipped']} planned={counts['planned']}"
        )
    for name in result.not_run:
        print(f"  ⏭  {name:12s} not run")
    audit = result.audit.get("change_guard", {})
    print(f"\n  Change guard: {audit.get('status')} "
          f"({len(audit.get('planned_changes', []))} planned, "
          f"{len(audit.get('applied_changes', []))} applied)")
    if created:
        print(f"  Files: {len(created)} reports in {config.output.run_dir.resolve()}")
    print()

    return EXIT_OK if result.success else EXIT_FAILED


# ---------------------------------------------------------------------------
# compliance / offerings / history
# ---------------------------------------------------------------------------

def cmd_compliance(args: argparse.Namespace) -> int:
    mappings = list(CONTROL_MAPPINGS)
    if args.assessment:
        try:
            mappings = apply_assessment(mappings, load_assessment(args.assessment))
        except (OSError, ValueError, KeyError) as e:
            raise ConfigError(f"Invalid assessment file {args.assessment}: {e}") from e

    shown = filter_mappings(mappings, status=args.status, product=args.product, search=args.search)
    summary = build_compliance_summary(mappings, shown=shown)

    overall = summary["overall"]
    print(f"\n  Overall: {overall['score']}%  "
          f"({overall['total']} controls, {overall['pass']} compliant, "
          f"{overall['partial']} partial, {overall['fail']} non-compliant)")
    for fw in summary["frameworks"].values():
        print(f"    {fw['name']:20s} {fw['score']:3d}%")

    print(f"\n  {'Capability':<50s} {'Product':<26s} Status")
    print(f"  {'─'*50} {'─'*26} {'─'*13}")
    if not shown:
        print("  No controls match the current filters.")
    for m in shown:
        print(f"  {m.capability:<50s} {PRODUCT_NAMES.get(m.product, m.product):<26s} {status_label(m.status)}")

    print("\n  Recommendations:")
    for rec in summary["recommendations"]:
        print(f"    • {rec['text']}")

    print("\n  Deployment actions:")
    for action in summary["actions"]:
        print(f"    • {action['display']}")
    print()

    report_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    if "json" in args.formats:
        print(f"  📄 JSON:       {export_compliance_json(summary, args.output_dir, report_id)}")
    if "csv" in args.formats:
        for p in export_compliance_csv(summary, args.output_dir, report_id):
            print(f"  📊 CSV:        {p}")
    if "markdown" in args.formats:
        path = export_compliance_markdown(summary, args.output_dir, report_id, args.tenant_name)
        print(f"  📝 Markdown:   {path}")
    return EXIT_OK


def cmd_offerings(args: argparse.Namespace) -> int:
    if not args.product:
        print()
        for o in OFFERINGS:
            print(f"  {o.product:<5s} {o.name:<36s} [{o.tag}]")
            print(f"        {o.description}")
        print()
        return EXIT_OK

    offering = get_offering(args.product)
    if offering is None:
        print(f"  ❌ Unknown offering '{args.product}'. Known: {', '.join(o.product for o in OFFERINGS)}")
        return EXIT_FAILED

    print(f"\n  {offering.name} [{offering.tag}]")
    print(f"  {offering.description}\n")
    print("  How to deploy:")
    for i, item in enumerate(offering.how_to, 1):
        print(f"    {i}. {item}")
    print("\n  Best practices:")
    for item in offering.best_practices:
        print(f"    • {item}")
    print()
    return EXIT_OK


def cmd_history(args: argparse.Namespace) -> int:
    ledger = RunLedger(_ledger_path(args))

    if args.prune is not None:
        removed = ledger.prune(args.prune)
        print(f"  ✅ Pruned {removed} runs older than {args.prune} days.")
        return EXIT_OK

    if args.run:
        run = ledger.get_run(args.run)
        if run is None:
            print(f"  ❌ Run '{args.run}' not found.")
            return EXIT_FAILED
        print(f"\n  Run {run['run_id']}  {run['status']}  products={', '.join(run['products'])}")
        for step in ledger.get_steps(args.run):
            print(f"    {step['deployer']:12s} {step['name']:20s} {step['status'].upper():8s} {step['detail']}")
        print()
        return EXIT_OK

    runs = ledger.get_run_history(limit=args.limit)
    if not runs:
        print("  No runs recorded yet.")
        return EXIT_OK
    print(f"\n  {'Run ID':<26s} {'Started (UTC)':<20s} {'Status':<10s} {'Mode':<8s} Products")
    print(f"  {'─'*26} {'─'*20} {'─'*10} {'─'*8} {'─'*20}")
    for run in runs:
        started = datetime.fromtimestamp(run["started_at"], timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        mode = "dry-run" if run["dry_run"] else "apply"
        print(f"  {run['run_id']:<26s} {started:<20s} {run['status']:<10s} {mode:<8s} {', '.join(run['products'])}")
    print()
    return EXIT_OK


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def dispatch(args: argparse.Namespace) -> int:
    setup_logging(getattr(args, "verbose", False))
    try:
        if args.command == "deploy":
            return asyncio.run(run_deploy(args))
        if args.command == "profile":
            return _cmd_profile(args)
        if args.command == "compliance":
            return cmd_compliance(args)
        if args.command == "offerings":
            return cmd_offerings(args)
        if args.command == "history":
            return cmd_history(args)
    except ConfigError as e:
        print(f"\n❌ {e}")
        return EXIT_CONFIG
    print("Usage: python -m defender_toolkit {deploy|profile|compliance|offerings|history} ...")
    return EXIT_CONFIG


def _enable_utf8_console():
    """Switch the Windows console to UTF-8 so the banner and status icons render."""
    if sys.platform != "win32":
        return
    try:
        import ctypes
        ctypes.windll.kernel32.SetConsoleOutputCP(65001)
        ctypes.windll.kernel32.SetConsoleCP(65001)
    except (AttributeError, OSError):
        logger.debug("Could not switch console code page to UTF-8")
    for stream in (sys.stdout, sys.stderr):
        if hasattr(stream, "reconfigure"):
            stream.reconfigure(encoding="utf-8", errors="replace")


def main(argv: Optional[list[str]] = None):
    """Synchronous entry point for `python -m defender_toolkit`."""
    _enable_utf8_console()
    sys.exit(dispatch(parse_args(argv)))


if __name__ == "__main__":
    main()

"""
CLI interface for mongospectre.

Subcommands:
    scan PATH    Scan source code only and print the ScanResult as JSON
    audit        Inspect the cluster and run inventory rules
    check PATH   Scan source code, inspect the cluster and run every rule
    watch [PATH] Repeat check (or audit) and print what changed
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from mongospectre import __version__
from mongospectre.adapters.atlas import AtlasClient
from mongospectre.adapters.base import AdapterError, Deadline
from mongospectre.adapters.mongo import PyMongoInspector
from mongospectre.analyzers.baseline import diff_baseline, load_snapshot
from mongospectre.analyzers.engine import RuleEngine
from mongospectre.analyzers.exitcode import EXIT_CRITICAL, exit_code
from mongospectre.analyzers.ignore import IgnoreFilter
from mongospectre.config import ConfigError, get_config_template, load_config
from mongospectre.inventory import InventoryError, collect_inventory
from mongospectre.reporter import RENDERERS, build_report, render
from mongospectre.scanner import SourceScanner
from mongospectre.utils import hash_uri, host_from_uri
from mongospectre.watch import EVENT_SHUTDOWN, Watcher, format_event

if TYPE_CHECKING:
    from typing import Any

    from mongospectre.adapters.base import AtlasAPI, DatabaseInspector
    from mongospectre.analyzers.baseline import Snapshot
    from mongospectre.models import Finding, Inventory, ScanResult
    from mongospectre.watch import WatchEvent

logger = logging.getLogger(__name__)

EXIT_ERROR = 1


class CommandError(Exception):
    """Fatal front-end error: printed as "Error: ..." with exit code 1."""


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        metavar="FILE",
        help="Load config from YAML file (default: ./.mongospectre.yml, then ~/.mongospectre.yml)",
    )
    common.add_argument(
        "--format",
        choices=sorted(RENDERERS),
        help="Output format (default from config: json)",
    )
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )

    cluster = argparse.ArgumentParser(add_help=False)
    conn_group = cluster.add_argument_group("Connection")
    conn_group.add_argument("--uri", help="MongoDB connection string (or set MONGODB_URI)")
    conn_group.add_argument("--database", help="Audit one database (default: all non-system databases)")
    conn_group.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Deadline for the whole audit (default from config: 30)",
    )

    rules_group = cluster.add_argument_group("Findings")
    rules_group.add_argument("--baseline", metavar="FILE", help="Compare against a previous JSON report")
    rules_group.add_argument("--no-ignore", action="store_true", help="Bypass .mongospectreignore")
    rules_group.add_argument(
        "--fail-on-missing",
        action="store_true",
        help="Exit 2 when any referenced collection is missing",
    )
    rules_group.add_argument(
        "--lint-uri",
        action="store_true",
        help="Also check the connection string for risky or missing options",
    )

    atlas_group = cluster.add_argument_group("Atlas")
    atlas_group.add_argument("--atlas-public-key", help="Atlas Admin API public key (or ATLAS_PUBLIC_KEY)")
    atlas_group.add_argument("--atlas-private-key", help="Atlas Admin API private key (or ATLAS_PRIVATE_KEY)")
    atlas_group.add_argument("--atlas-project", help="Atlas project ID (resolved from the cluster if omitted)")
    atlas_group.add_argument("--atlas-cluster", help="Atlas cluster name")

    parser = argparse.ArgumentParser(
        prog="mongospectre",
        description="Audit a MongoDB cluster against the code that uses it.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mongospectre scan ./src
  mongospectre audit --uri mongodb://localhost:27017 --format text
  mongospectre check ./src --uri mongodb://localhost:27017 --fail-on-missing
  mongospectre check ./src --baseline last.json --format text
  mongospectre watch ./src --interval 60 --format json
  mongospectre --init-config > .mongospectre.yml
        """,
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a starter config file",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mongospectre {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    scan = subparsers.add_parser("scan", parents=[common], help="Scan source code only")
    scan.add_argument("path", help="Repository root to scan")

    subparsers.add_parser("audit", parents=[common, cluster], help="Run inventory rules against a cluster")

    check = subparsers.add_parser("check", parents=[common, cluster], help="Scan code and audit the cluster")
    check.add_argument("path", help="Repository root to scan")

    watch = subparsers.add_parser("watch", parents=[common, cluster], help="Repeat check and report changes")
    watch.add_argument("path", nargs="?", help="Repository root to scan and watch (omit for audit only)")
    watch.add_argument(
        "--interval",
        type=float,
        metavar="SECONDS",
        help="Seconds between runs (default from config: 300)",
    )
    watch.add_argument(
        "--exit-on-new",
        action="store_true",
        help="Exit 2 on the first new high-severity finding",
    )

    return parser


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def apply_overrides(config: dict[str, Any], args: argparse.Namespace) -> dict[str, Any]:
    """Fold command-line flags into the loaded configuration."""
    if getattr(args, "uri", None):
        config["uri"] = args.uri
    if getattr(args, "database", None):
        config["database"] = args.database
    if getattr(args, "format", None):
        config["defaults"]["format"] = args.format
    if getattr(args, "timeout", None) is not None:
        config["defaults"]["timeout"] = args.timeout
    if getattr(args, "interval", None) is not None:
        config["watch"]["interval"] = args.interval
    if getattr(args, "lint_uri", False):
        config["lint_uri"] = True

    atlas = config["atlas"]
    for flag, key in (
        ("atlas_public_key", "public_key"),
        ("atlas_private_key", "private_key"),
        ("atlas_project", "project_id"),
        ("atlas_cluster", "cluster"),
    ):
        value = getattr(args, flag, None)
        if value:
            atlas[key] = value
    return config


# =============================================================================
# Adapters (module-level so tests can substitute fakes)
# =============================================================================

def open_inspector(uri: str, deadline: Deadline) -> DatabaseInspector:
    return PyMongoInspector.connect(uri, deadline)


def open_atlas(config: dict[str, Any]) -> AtlasAPI | None:
    """Atlas client when both API keys are configured, else None."""
    atlas = config.get("atlas") or {}
    if not atlas.get("public_key") or not atlas.get("private_key"):
        return None
    return AtlasClient(
        atlas["public_key"],
        atlas["private_key"],
        base_url=atlas.get("base_url") or "https://cloud.mongodb.com",
        rate_limit_ms=int(atlas.get("rate_limit_ms", 250)),
    )


# =============================================================================
# Pipeline
# =============================================================================

def scan_source(path: str, config: dict[str, Any]) -> ScanResult:
    root = Path(path).resolve()
    if not root.is_dir():
        raise CommandError(f"Path '{root}' does not exist or is not a directory")
    return SourceScanner(root=root, config=config).scan()


def run_audit(
    config: dict[str, Any],
    deadline: Deadline,
    scan: ScanResult | None,
    use_ignore: bool = True,
    previous: Snapshot | None = None,
) -> tuple[list[Finding], Inventory, int]:
    """
    Collect an inventory and run the rule engine.

    Returns:
        (findings, inventory, suppressed count)

    Raises:
        AdapterError: If the connection cannot be opened.
        InventoryError: If a required inventory call fails.
    """
    uri = config.get("uri") or ""
    if not uri:
        raise CommandError("--uri is required (or set MONGODB_URI)")

    atlas = open_atlas(config)
    try:
        with open_inspector(uri, deadline) as inspector:
            inventory = collect_inventory(
                inspector, deadline, config=config, atlas=atlas, database=config.get("database") or "",
            )
    finally:
        if atlas is not None:
            atlas.close()

    findings = RuleEngine(config, previous=previous).run(scan, inventory)
    suppressed = 0
    if use_ignore:
        findings, suppressed = IgnoreFilter.load().apply(findings)
        if suppressed:
            logger.debug("Suppressed %d findings via ignore file", suppressed)
    return findings, inventory, suppressed


def emit_report(
    command: str,
    config: dict[str, Any],
    args: argparse.Namespace,
    findings: list[Finding],
    inventory: Inventory,
    scan: ScanResult | None,
    suppressed: int,
    previous: Snapshot | None = None,
) -> None:
    uri = config.get("uri") or ""
    report = build_report(
        command,
        findings,
        host=host_from_uri(uri),
        database=config.get("database") or "",
        server_version=inventory.server_version,
        repo_path=scan.repo_path if scan is not None else "",
        uri_hash=hash_uri(uri),
    )
    report.scan = scan
    report.collections = inventory.collections
    report.suppressed = suppressed

    if previous is not None:
        report.baseline = diff_baseline(findings, previous.findings)

    print(render(report, config["defaults"]["format"]))


# =============================================================================
# Commands
# =============================================================================

def load_previous(args: argparse.Namespace) -> Snapshot | None:
    """The --baseline report, or None when the flag is absent."""
    if not getattr(args, "baseline", None):
        return None
    try:
        return load_snapshot(Path(args.baseline))
    except (OSError, ValueError) as e:
        raise CommandError(f"Cannot read baseline: {e}") from e


def cmd_scan(args: argparse.Namespace, config: dict[str, Any]) -> int:
    result = scan_source(args.path, config)
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0


def cmd_audit(args: argparse.Namespace, config: dict[str, Any]) -> int:
    previous = load_previous(args)
    deadline = Deadline.after(config["defaults"]["timeout"])
    findings, inventory, suppressed = run_audit(
        config, deadline, None, use_ignore=not args.no_ignore, previous=previous,
    )
    emit_report("audit", config, args, findings, inventory, None, suppressed, previous)
    return exit_code(findings, fail_on_missing=args.fail_on_missing)


def cmd_check(args: argparse.Namespace, config: dict[str, Any]) -> int:
    scan = scan_source(args.path, config)
    previous = load_previous(args)
    deadline = Deadline.after(config["defaults"]["timeout"])
    findings, inventory, suppressed = run_audit(
        config, deadline, scan, use_ignore=not args.no_ignore, previous=previous,
    )
    emit_report("check", config, args, findings, inventory, scan, suppressed, previous)
    return exit_code(findings, fail_on_missing=args.fail_on_missing)


def cmd_watch(args: argparse.Namespace, config: dict[str, Any]) -> int:
    if not config.get("uri"):
        raise CommandError("--uri is required (or set MONGODB_URI)")
    fmt = config["defaults"]["format"]
    watch_path = Path(args.path).resolve() if args.path else None
    if watch_path is not None and not watch_path.is_dir():
        raise CommandError(f"Path '{watch_path}' does not exist or is not a directory")

    def audit_once(deadline: Deadline) -> list[Finding]:
        scan = scan_source(str(watch_path), config) if watch_path is not None else None
        findings, _, _ = run_audit(config, deadline, scan, use_ignore=not args.no_ignore)
        return findings

    def emit(event: WatchEvent) -> None:
        text = format_event(event, fmt)
        if event.type == EVENT_SHUTDOWN and fmt != "json":
            print(f"\n{text}", file=sys.stderr, flush=True)
        else:
            print(text, flush=True)

    interval = float(config["watch"]["interval"])
    watcher = Watcher(
        audit_once,
        interval=interval,
        timeout=config["defaults"]["timeout"],
        watch_path=watch_path,
        emit=emit,
        exit_on_new=args.exit_on_new,
    )

    def handle_signal(signum: int, frame: Any) -> None:
        watcher.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    print(f"Watch mode: auditing every {interval:g}s", file=sys.stderr, flush=True)
    summary = watcher.run()
    if summary.stopped_on_new_high:
        print("New high-severity finding detected, exiting", file=sys.stderr)
        return EXIT_CRITICAL
    return 0


COMMANDS = {
    "scan": cmd_scan,
    "audit": cmd_audit,
    "check": cmd_check,
    "watch": cmd_watch,
}


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.init_config:
        print(get_config_template())
        return

    if not args.command:
        parser.print_help(sys.stderr)
        sys.exit(EXIT_ERROR)

    setup_logging(args.verbose)

    try:
        config = load_config(Path(args.config) if args.config else None)
    except FileNotFoundError:
        print(f"Error: Config file '{args.config}' does not exist", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)

    if config["defaults"].get("verbose") and not args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    config = apply_overrides(config, args)

    try:
        code = COMMANDS[args.command](args, config)
    except (CommandError, InventoryError, AdapterError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    sys.exit(code)


if __name__ == "__main__":
    main()

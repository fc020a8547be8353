"""sysguard: command line entry point for backups and health diagnostics.

Usage examples::

    # Full backup with retention cleanup and operation timing
    sysguard backup run --type=full --cleanup --monitor

    # Database-only backup, verified afterwards, JSON summary on stdout
    sysguard backup run --type=database --verify --json

    # Health report for selected probes; exit status 0 only when healthy
    sysguard system health --check database --check cache --detailed
"""
from __future__ import annotations

import argparse
import json
import sys
from typing import TYPE_CHECKING, Any, Sequence

from sysguard.logging import configure_logging, get_logger

if TYPE_CHECKING:
    from sysguard.services.backups.manager import BackupManager
    from sysguard.services.health.monitor import PerformanceMonitor
    from sysguard.services.health.service import HealthDiagnostics

__all__ = ["build_parser", "main"]

BACKUP_TYPES = ("full", "database", "files", "config")
STATUS_ICONS = {
    "healthy": "[ok]",
    "warning": "[warn]",
    "critical": "[fail]",
    "error": "[error]",
    "skipped": "[skip]",
}

logger = get_logger()


def log(message: str) -> None:
    """Emit a message on stderr without disrupting stdout capture."""

    print(message, file=sys.stderr)


def _build_manager() -> "BackupManager":
    from sysguard.services.backups.manager import BackupManager

    return BackupManager.create()


def _build_diagnostics() -> "HealthDiagnostics":
    from sysguard.services.health.service import HealthDiagnostics

    return HealthDiagnostics.create()


def _build_monitor() -> "PerformanceMonitor":
    from sysguard.db.session import get_engine
    from sysguard.services.health.monitor import PerformanceMonitor

    return PerformanceMonitor(engine=get_engine())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sysguard", description="Backups and system health diagnostics")
    subparsers = parser.add_subparsers(dest="group", required=True)

    backup = subparsers.add_parser("backup", help="Backup operations")
    backup_commands = backup.add_subparsers(dest="command", required=True)

    run = backup_commands.add_parser("run", help="Create a backup")
    run.add_argument("--type", dest="backup_type", choices=BACKUP_TYPES, default="full", help="Type of backup")
    run.add_argument("--verify", action="store_true", help="Verify backup after creation")
    run.add_argument("--cleanup", action="store_true", help="Cleanup old backups")
    run.add_argument("--monitor", action="store_true", help="Monitor performance during backup")
    run.add_argument("--json", dest="as_json", action="store_true", help="Output in JSON format")

    listing = backup_commands.add_parser("list", help="List stored backups, newest first")
    listing.add_argument("--json", dest="as_json", action="store_true", help="Output in JSON format")

    backup_commands.add_parser("cleanup", help="Delete backups older than the retention period")

    verify = backup_commands.add_parser("verify", help="Verify the artifacts of a backup run")
    verify.add_argument("backup_id")

    restore = backup_commands.add_parser("restore", help="Restore from a backup run")
    restore.add_argument("backup_id")
    restore.add_argument("--skip-database", action="store_true", help="Do not restore the database")
    restore.add_argument("--skip-files", action="store_true", help="Do not restore files")
    restore.add_argument("--keep-cache", action="store_true", help="Do not clear caches afterwards")

    system = subparsers.add_parser("system", help="System diagnostics")
    system_commands = system.add_subparsers(dest="command", required=True)

    health = system_commands.add_parser("health", help="Check system health and performance metrics")
    health.add_argument("--detailed", action="store_true", help="Show detailed information")
    health.add_argument("--json", dest="as_json", action="store_true", help="Output in JSON format")
    health.add_argument(
        "--check",
        dest="checks",
        action="append",
        default=[],
        help="Specific check to run (database, cache, storage, security, performance); repeatable",
    )
    return parser


# Backup commands -------------------------------------------------------------------


def run_backup(args: argparse.Namespace) -> int:
    manager = _build_manager()
    monitor = _build_monitor() if args.monitor else None
    monitor_id = monitor.start_monitoring(f"backup_{args.backup_type}") if monitor else None

    if not args.as_json:
        log(f"Starting {args.backup_type} backup...")

    run = manager.run(args.backup_type, cleanup=args.cleanup, verify=args.verify)
    payload: dict[str, Any] = run.to_dict()

    if monitor is not None and monitor_id is not None:
        metrics = monitor.stop_monitoring(monitor_id)
        if metrics is not None:
            payload["performance"] = metrics.to_dict()

    if args.as_json:
        print(json.dumps(payload, indent=2))
    else:
        print(_render_backup(payload))
    return 0 if run.success else 1


def _render_backup(payload: dict[str, Any]) -> str:
    lines = [
        f"{'Backup completed' if payload['success'] else 'Backup failed'}: {payload['message']}",
        f"Backup ID: {payload['backup_id']}",
    ]
    for name, result in payload["results"].items():
        if result["success"]:
            detail = result.get("message") or f"{result['filename']} ({result['size_mb']} MB)"
            lines.append(f"  {name}: ok - {detail}")
        else:
            lines.append(f"  {name}: failed - {result.get('error', 'unknown error')}")
    verification = payload.get("verification")
    if verification:
        lines.append("Verification:")
        lines.extend(f"  {key}: {'yes' if value else 'no'}" for key, value in verification.items())
    if payload.get("deleted"):
        lines.append(f"Deleted {len(payload['deleted'])} old backup(s)")
    performance = payload.get("performance")
    if performance:
        lines.append("Performance:")
        lines.append(f"  Duration: {performance['duration_ms']} ms")
        lines.append(f"  Memory used: {performance['memory_used_mb']} MB")
        lines.append(f"  Peak memory: {performance['peak_memory_mb']} MB")
        lines.append(f"  Queries executed: {performance['queries_executed']}")
    return "\n".join(lines)


def list_backups(args: argparse.Namespace) -> int:
    backups = _build_manager().list_backups()
    if args.as_json:
        print(json.dumps([item.to_dict() for item in backups], indent=2))
        return 0
    if not backups:
        print("No backups found")
        return 0
    for item in backups:
        print(f"{item.type:<9} {item.size:>12}  {item.path}")
    return 0


def cleanup_backups(_: argparse.Namespace) -> int:
    deleted = _build_manager().retention.cleanup_old_backups()
    print(f"Deleted {len(deleted)} old backup(s)")
    for path in deleted:
        print(f"  {path}")
    return 0


def verify_backup(args: argparse.Namespace) -> int:
    report = _build_manager().verifier.verify_backup(args.backup_id)
    for key, value in report.to_dict().items():
        print(f"{key}: {'yes' if value else 'no'}")
    found = report.database_exists or report.files_exist or report.config_exists
    readable = (not report.database_exists or report.database_readable) and (
        not report.files_exist or report.files_readable
    )
    return 0 if found and readable else 1


def restore_backup(args: argparse.Namespace) -> int:
    result = _build_manager().restore_from_backup(
        args.backup_id,
        restore_database=not args.skip_database,
        restore_files=not args.skip_files,
        clear_cache=not args.keep_cache,
    )
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.success else 1


# System commands --------------------------------------------------------------------


def system_health(args: argparse.Namespace) -> int:
    from sysguard.services.health.service import split_check_names

    checks = split_check_names(args.checks)
    if not args.as_json:
        log("Running system health check...")
    report = _build_diagnostics().health_check(checks or None)
    payload = report.to_dict()
    if args.as_json:
        print(json.dumps(payload, indent=2, default=str))
    else:
        print(_render_health(payload, detailed=args.detailed))
    return 0 if report.healthy else 1


def _render_health(payload: dict[str, Any], *, detailed: bool) -> str:
    lines: list[str] = []
    for name, result in payload["checks"].items():
        status = result["status"]
        lines.append(f"{STATUS_ICONS.get(status, '[?]')} {name.capitalize()}: {status} - {result.get('message', '')}")
        if not detailed:
            continue
        if "response_time_ms" in result:
            lines.append(f"   Response time: {result['response_time_ms']} ms")
        lines.extend(f"   - {issue}" for issue in result.get("issues", []))
        lines.extend(f"   warning: {warning}" for warning in result.get("warnings", []))
        lines.extend(f"   critical: {issue}" for issue in result.get("critical_issues", []))
    lines.append("")
    if payload["overall_status"] == "healthy":
        lines.append("Overall system status: HEALTHY")
        lines.append("All systems are operating normally.")
    else:
        lines.append(f"Overall system status: {payload['overall_status'].upper()}")
        lines.append("Some systems require attention.")
    return "\n".join(lines)


COMMANDS = {
    ("backup", "run"): run_backup,
    ("backup", "list"): list_backups,
    ("backup", "cleanup"): cleanup_backups,
    ("backup", "verify"): verify_backup,
    ("backup", "restore"): restore_backup,
    ("system", "health"): system_health,
}


def main(argv: Sequence[str] | None = None) -> int:
    argv_list = list(sys.argv[1:] if argv is None else argv)
    args = build_parser().parse_args(argv_list)
    configure_logging(stream=sys.stderr)

    handler = COMMANDS[(args.group, args.command)]
    try:
        return handler(args)
    except Exception as exc:  # noqa: BLE001
        logger.exception("cli_command_failed", group=args.group, command=args.command)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

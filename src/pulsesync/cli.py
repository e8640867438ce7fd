"""
Command-line interface for PulseSync.

Usage (examples):
  - Synchronize every NetBox kind into the local store:
      pulsesync sync --netbox-url https://netbox.local --netbox-token TOKEN

  - Only sites and devices, planning only:
      pulsesync sync --kind sites --kind devices --dry-run

  - Refresh active Zabbix problems for monitored devices:
      pulsesync problems --zabbix-url https://zabbix.local --zabbix-user api --zabbix-password ...

  - Create a site / update a device from a YAML draft:
      pulsesync push-site --file site.yml
      pulsesync push-device --file device.yml --device-id 42
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List

import yaml

from .core.config import ConfigError, load_config
from .core.logging_setup import build_logger
from .core.orchestrator import SyncOrchestrator, SyncResult
from .core.records import DeviceDraft, SiteDraft
from .core.registry import ASSET_KINDS, iter_operations
from .core.store import LocalStore


def _exit_code(results: Iterable[SyncResult]) -> int:
    return 0 if all(r.ok for r in results) else 2


def _read_draft(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Draft file not found: {path}")
    with p.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Draft must be a YAML mapping: {path}")
    return data


def _set(target: Dict[str, Any], section: str, key: str, value: Any) -> None:
    if value is not None:
        target.setdefault(section, {})[key] = value


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if args.dry_run:
        _set(out, "app", "dry_run", True)
    _set(out, "app", "concurrency", args.concurrency)
    _set(out, "store", "url", args.store_url)
    _set(out, "netbox", "base_url", args.netbox_url)
    _set(out, "netbox", "token", args.netbox_token)
    _set(out, "zabbix", "base_url", args.zabbix_url)
    _set(out, "zabbix", "user", args.zabbix_user)
    _set(out, "zabbix", "password", args.zabbix_password)
    _set(out, "logging", "base_dir", args.logs_dir)
    _set(out, "logging", "console_level", args.console_level)
    _set(out, "logging", "file_level", args.file_level)
    return out


def _build_arg_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="YAML configuration file")
    common.add_argument("--dry-run", action="store_true", help="Compute changes, commit nothing")
    common.add_argument("--store-url", default=None, help="SQLAlchemy URL of the local store")
    common.add_argument("--concurrency", type=int, default=None, help="Worker threads for batch sync")

    common.add_argument("--netbox-url", default=None, help="NetBox base URL")
    common.add_argument("--netbox-token", default=None, help="NetBox API token")
    common.add_argument("--zabbix-url", default=None, help="Zabbix base URL")
    common.add_argument("--zabbix-user", default=None, help="Zabbix API user")
    common.add_argument("--zabbix-password", default=None, help="Zabbix API password")

    common.add_argument("--logs-dir", default=None, help="Logs base directory")
    common.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    common.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")

    p = argparse.ArgumentParser(prog="pulsesync", description="NetBox/Zabbix to local store synchronization")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("sync", parents=[common], help="Synchronize NetBox kinds")
    s.add_argument("--kind", action="append", choices=list(ASSET_KINDS), help="Kind to sync (repeatable)")

    pr = sub.add_parser("problems", parents=[common], help="Synchronize active Zabbix problems")
    pr.add_argument("--event-id", action="append", type=int, help="Refresh only these events (repeatable)")

    ps = sub.add_parser("push-site", parents=[common], help="Create a site in NetBox from a YAML draft")
    ps.add_argument("--file", required=True, help="Site draft (.yml)")

    pd = sub.add_parser("push-device", parents=[common], help="Create or update a device from a YAML draft")
    pd.add_argument("--file", required=True, help="Device draft (.yml)")
    pd.add_argument("--device-id", type=int, default=None, help="Update this device instead of creating one")

    sub.add_parser("status", parents=[common], help="Show local record counts per kind")
    return p


def _print_results(results: Iterable[SyncResult]) -> List[SyncResult]:
    out = list(results)
    for result in out:
        print(result.summary())
    return out


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    extra: Dict[str, Any] = {"files": (args.config,)} if args.config else {}
    cfg = load_config(_cli_overrides(args), **extra)

    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd.replace("-", "_"),
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
    )
    logger.info("Starting pulsesync %s (dry_run=%s)", args.cmd, cfg.app.dry_run)

    store = LocalStore(cfg.store.url, echo=cfg.store.echo, logger=logger)
    store.create_all()
    try:
        if args.cmd == "status":
            for ops in iter_operations():
                print(f"{ops.kind}: {store.count(ops.model)}")
            return 0

        orchestrator = SyncOrchestrator(cfg, store, logger=logger)

        if args.cmd == "sync":
            results = _print_results(orchestrator.sync_all(args.kind).values())
        elif args.cmd == "problems":
            results = _print_results([orchestrator.sync_problems(args.event_id)])
        elif args.cmd == "push-site":
            draft = SiteDraft.from_mapping(_read_draft(args.file))
            results = _print_results([orchestrator.push_site(draft)])
        elif args.cmd == "push-device":
            draft = DeviceDraft.from_mapping(_read_draft(args.file))
            results = _print_results([orchestrator.push_device(draft, args.device_id)])
        else:  # pragma: no cover
            parser.error("Unknown command")
            return 2

        for source, status in orchestrator.status.snapshot().items():
            logger.info("Request status %s: %s", source, status.value)
        return _exit_code(results)
    except (ConfigError, FileNotFoundError) as exc:
        logger.error("Draft rejected: %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2
    finally:
        store.dispose()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

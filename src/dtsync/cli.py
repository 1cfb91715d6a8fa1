"""
Command-line interface for dtsync.

Usage (examples):
  - List the alerting profiles of an environment:
      dtsync list --api alerting-profile --url https://abc.live.dynatrace.com --token $DT_TOKEN

  - Create or update a management zone by name:
      dtsync upsert --api management-zone --name team-a --file ./team-a.json

  - Plan only (resolves the name, writes nothing):
      dtsync upsert --api management-zone --name team-a --file ./team-a.json --dry-run
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable

from .core.api import Api, UpsertStrategy, get_api, iter_api_ids, KNOWN_APIS
from .core.client import DynatraceClient
from .core.config import AppConfig, ConfigError, load_config
from .core.errors import ExtensionVersionError, NotFoundError, TransportError, UnsupportedFamilyError
from .core.extensions import ExtensionState
from .core.logging_setup import build_logger

EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_CONFIG_ERROR = 2
EXIT_VERSION_CONFLICT = 3
EXIT_NETWORK_ERROR = 4


def _add_common(p: argparse.ArgumentParser) -> None:
    # Environment / HTTP
    p.add_argument("--url", default="", help="Environment URL (e.g. https://abc.live.dynatrace.com)")
    p.add_argument("--token", default="", help="API token")
    p.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")
    p.add_argument("--timeout-sec", type=int, default=None, help="HTTP timeout seconds")

    # Logging
    p.add_argument("--logs-dir", default="", help="Logs base directory")
    p.add_argument("--console-level", default="", help="Console log level (INFO..CRITICAL)")
    p.add_argument("--file-level", default="", help="File log level (DEBUG..CRITICAL)")


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dtsync", description="Dynatrace configuration sync by name")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("apis", help="List the known API families")

    a = sub.add_parser("list", help="List (id, name) of every object of an API")
    a.add_argument("--api", required=True, help="API family id (see `dtsync apis`)")
    _add_common(a)

    a = sub.add_parser("exists", help="Check whether an object with this name exists")
    a.add_argument("--api", required=True)
    a.add_argument("--name", required=True)
    _add_common(a)

    a = sub.add_parser("read", help="Print an object's JSON, by name or id")
    a.add_argument("--api", required=True)
    target = a.add_mutually_exclusive_group(required=True)
    target.add_argument("--name")
    target.add_argument("--id", dest="obj_id")
    _add_common(a)

    a = sub.add_parser("upsert", help="Create or update an object by name")
    a.add_argument("--api", required=True)
    a.add_argument("--name", required=True)
    a.add_argument("--file", required=True, help="JSON body (plugin.json for extensions)")
    a.add_argument("--dry-run", action="store_true", help="Resolve and plan only, no writes")
    _add_common(a)

    a = sub.add_parser("delete", help="Delete an object by name (absent name is not an error)")
    a.add_argument("--api", required=True)
    a.add_argument("--name", required=True)
    a.add_argument("--dry-run", action="store_true", help="Resolve and plan only, no writes")
    _add_common(a)

    return p


def _load_cfg(args: argparse.Namespace) -> AppConfig:
    verify = None if args.verify_tls is None else args.verify_tls.lower() == "true"
    cli_overrides: Dict[str, Any] = {
        "app": {"dry_run": bool(getattr(args, "dry_run", False)) or None},
        "environment": {
            "url": args.url,
            "token": args.token,
            "verify_tls": verify,
            "timeout_sec": args.timeout_sec,
        },
        "logging": {
            "base_dir": args.logs_dir,
            "console_level": args.console_level,
            "file_level": args.file_level,
        },
    }
    cfg = load_config(cli_overrides)
    # dry-run skips validation in load_config, but every command talks to the API
    if not cfg.environment.url or not cfg.environment.token:
        raise ConfigError("environment.url and environment.token are required")
    return cfg


def _run(args: argparse.Namespace, api: Api, client: DynatraceClient, log: logging.LoggerAdapter) -> int:
    if args.cmd == "list":
        for v in client.list(api):
            print(f"{v.id}\t{v.name}")
        return EXIT_OK

    if args.cmd == "exists":
        exists, obj_id = client.exists_by_name(api, args.name)
        print(f"true\t{obj_id}" if exists else "false")
        return EXIT_OK if exists else EXIT_NOT_FOUND

    if args.cmd == "read":
        body = client.read_by_name(api, args.name) if args.name else client.read_by_id(api, args.obj_id)
        sys.stdout.write(body.decode("utf-8", errors="replace") + "\n")
        return EXIT_OK

    if args.cmd == "upsert":
        body = Path(args.file).read_text(encoding="utf-8")
        if args.dry_run:
            if api.upsert_strategy is UpsertStrategy.EXTENSION_UPLOAD:
                state = client.extension_state(api, args.name, body)
                plan = "SKIP up-to-date" if state is ExtensionState.UP_TO_DATE else f"UPLOAD {state.value}"
            else:
                exists, obj_id = client.exists_by_name(api, args.name)
                plan = f"UPDATE id={obj_id}" if exists else "CREATE"
            log.info("Dry-run upsert api=%s name=%s -> %s", api.id, args.name, plan)
            print(f"{plan}\t{args.name}")
            return EXIT_OK
        entity = client.upsert_by_name(api, args.name, body)
        log.info("Upserted api=%s name=%s id=%s", api.id, entity.name, entity.id)
        print(f"UPSERTED\t{entity.id}\t{entity.name}")
        return EXIT_OK

    if args.cmd == "delete":
        if args.dry_run:
            exists, obj_id = client.exists_by_name(api, args.name)
            plan = f"DELETE id={obj_id}" if exists else "NOOP"
            print(f"{plan}\t{args.name}")
            return EXIT_OK
        deleted = client.delete_by_name(api, args.name)
        print(f"{'DELETED' if deleted else 'NOOP'}\t{args.name}")
        return EXIT_OK

    raise ValueError(f"Unknown command {args.cmd}")  # pragma: no cover


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.cmd == "apis":
        for api_id in iter_api_ids():
            print(f"{api_id}\t{KNOWN_APIS[api_id].path}")
        return EXIT_OK

    try:
        api = get_api(args.api)
        cfg = _load_cfg(args)
    except (ConfigError, UnsupportedFamilyError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    if hasattr(args, "dry_run"):
        args.dry_run = args.dry_run or cfg.app.dry_run

    log = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"api": api.id},
    )
    log.info("Starting dtsync %s (api=%s)", args.cmd, api.id)

    client = DynatraceClient(
        cfg.environment.url,
        cfg.environment.token,
        verify_tls=bool(cfg.environment.verify_tls),
        timeout_sec=int(cfg.environment.timeout_sec),
        logger=log,
    )
    try:
        return _run(args, api, client, log)
    except NotFoundError as exc:
        log.warning("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except ExtensionVersionError as exc:
        log.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_VERSION_CONFLICT
    except UnsupportedFamilyError as exc:
        log.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except TransportError as exc:
        log.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_NETWORK_ERROR
    finally:
        client.close()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

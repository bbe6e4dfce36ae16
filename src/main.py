# src/main.py — v2
"""CLI entry point — scan, progress, stop and capability query commands.

Usage:
    capscan scan [--session-id ID --phase PHASE] [--response all|specific]
                 [--resource-list "Deployment.apps,Service"]
    capscan progress [--session-id ID]
    capscan stop <session_id>
    capscan search <query> [--limit N] [--complexity low|medium|high]
    capscan list | get <name-or-id> | delete <name-or-id>
    capscan delete-all --yes

Commands print JSON to stdout; logs go to stderr. A scan started from the
CLI runs in-process until it completes or is stopped from another shell.

Changelog:
    v2: delete-all command.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from capscan.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="capscan",
        description=f"capscan v{__version__} — Cluster capability scanner",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- scan ---
    p_scan = subparsers.add_parser(
        "scan", help="Start or continue a capability scan session",
    )
    p_scan.add_argument(
        "--session-id", default=None,
        help="Session to continue (omit to start a new one)",
    )
    p_scan.add_argument(
        "--phase", default=None,
        choices=["selecting", "specifying", "scanning"],
        help="Phase the session is expected to be in",
    )
    p_scan.add_argument(
        "--response", default=None,
        help="Answer to the selection question: all, specific, 1 or 2",
    )
    p_scan.add_argument(
        "--resource-list", default=None,
        help="Comma-separated resource types (phase specifying)",
    )
    p_scan.add_argument(
        "--stop", action="store_true",
        help="Request the running scan to stop (phase scanning)",
    )
    p_scan.set_defaults(func=_cmd_scan)

    # --- progress ---
    p_progress = subparsers.add_parser(
        "progress", help="Show scan progress",
    )
    p_progress.add_argument(
        "--session-id", default=None,
        help="Session to inspect (default: most recently active)",
    )
    p_progress.set_defaults(func=_cmd_progress)

    # --- stop ---
    p_stop = subparsers.add_parser("stop", help="Stop a scan session")
    p_stop.add_argument("session_id", help="Session to stop")
    p_stop.set_defaults(func=_cmd_stop)

    # --- search ---
    p_search = subparsers.add_parser(
        "search", help="Semantic search over stored capabilities",
    )
    p_search.add_argument("query", help="Free-text query")
    p_search.add_argument(
        "--limit", type=int, default=10, help="Maximum results (default: 10)",
    )
    p_search.add_argument(
        "--complexity", default=None, choices=["low", "medium", "high"],
        help="Only return capabilities of this complexity",
    )
    p_search.add_argument(
        "--provider", default=None,
        help="Only return capabilities mentioning this provider",
    )
    p_search.set_defaults(func=_cmd_search)

    # --- list ---
    p_list = subparsers.add_parser("list", help="List stored capabilities")
    p_list.add_argument(
        "--limit", type=int, default=100, help="Maximum records (default: 100)",
    )
    p_list.set_defaults(func=_cmd_list)

    # --- get ---
    p_get = subparsers.add_parser("get", help="Show one stored capability")
    p_get.add_argument("name_or_id", help="Resource name or capability ID")
    p_get.set_defaults(func=_cmd_get)

    # --- delete ---
    p_delete = subparsers.add_parser("delete", help="Delete a stored capability")
    p_delete.add_argument("name_or_id", help="Resource name or capability ID")
    p_delete.set_defaults(func=_cmd_delete)

    # --- delete-all ---
    p_delete_all = subparsers.add_parser(
        "delete-all", help="Delete every stored capability"
    )
    p_delete_all.add_argument(
        "--yes", action="store_true", help="Confirm emptying the capability index"
    )
    p_delete_all.set_defaults(func=_cmd_delete_all)

    return parser


async def _cmd_scan(args: argparse.Namespace) -> int:
    """Issue one step call; a launched scan is awaited before returning."""
    service = _build_service(args)
    payload: dict[str, Any] = {
        "sessionId": args.session_id,
        "phase": args.phase,
        "response": args.response,
        "resourceList": args.resource_list,
        "stop": args.stop,
    }
    try:
        response = await service.handle_step(payload)
        _print_json(response)
        if response.get("kind") == "error":
            return 1

        if response.get("kind") == "started":
            from capscan.scan.errors import ScanError

            try:
                done = await service.wait(response["sessionId"])
            except ScanError as exc:
                from capscan.api.facade import error_response

                _print_json(error_response(exc).to_wire())
                return 1
            if done is not None:
                _print_json(done.to_wire())
        return 0
    finally:
        await service.close()


async def _cmd_progress(args: argparse.Namespace) -> int:
    service = _build_service(args)
    return await _run_query(service, service.progress(args.session_id))


async def _cmd_stop(args: argparse.Namespace) -> int:
    service = _build_service(args)
    return await _run_query(service, service.stop(args.session_id))


async def _cmd_search(args: argparse.Namespace) -> int:
    service = _build_service(args)
    return await _run_query(
        service,
        service.search_response(
            query=args.query,
            limit=args.limit,
            complexity=args.complexity,
            provider=args.provider,
        ),
    )


async def _cmd_list(args: argparse.Namespace) -> int:
    service = _build_service(args)
    return await _run_query(service, service.list_capabilities(args.limit))


async def _cmd_get(args: argparse.Namespace) -> int:
    service = _build_service(args)
    try:
        record = await service.get_capability(args.name_or_id)
    finally:
        await service.close()
    if record is None:
        logger.error("Capability not found: %s", args.name_or_id)
        return 1
    _print_json(record.to_wire())
    return 0


async def _cmd_delete(args: argparse.Namespace) -> int:
    service = _build_service(args)
    try:
        deleted = await service.delete_capability(args.name_or_id)
    finally:
        await service.close()
    _print_json({"deleted": deleted, "target": args.name_or_id})
    return 0 if deleted else 1


async def _cmd_delete_all(args: argparse.Namespace) -> int:
    if not args.yes:
        logger.error("Refusing to delete all capabilities without --yes")
        return 1
    service = _build_service(args)
    try:
        deleted = await service.delete_all_capabilities()
    finally:
        await service.close()
    _print_json({"deleted": deleted})
    return 0


async def _run_query(service: Any, call: Any) -> int:
    """Await a service call, printing its wire form or a rendered error."""
    from capscan.api.facade import error_response
    from capscan.scan.errors import ScanError

    try:
        result = await call
    except ScanError as exc:
        _print_json(error_response(exc).to_wire())
        return 1
    finally:
        await service.close()
    _print_json(result.to_wire())
    return 0


def _build_service(args: argparse.Namespace) -> Any:
    """Load settings, configure logging and wire the scan service."""
    from capscan.api.facade import build_scan_service
    from capscan.config.settings import Settings

    settings = Settings()
    _setup_logging(settings, args.verbose)
    return build_scan_service(settings)


def _print_json(data: dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _setup_logging(settings: Any, verbose: bool) -> None:
    """Configure logging for CLI usage from settings."""
    from capscan.logging.logger import setup_logging

    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


if __name__ == "__main__":
    sys.exit(main())

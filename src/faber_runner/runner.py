#!/usr/bin/env python3
"""Main entry point for faber-runner."""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

import asyncssh

from . import operations
from .config import get_server_target, load_config
from .connection import ConnectionManager, Session
from .dashboard import Dashboard
from .errors import ConfigError, FaberError
from .operations import Remote, StackCreateParams
from .progress import ProgressTag

# ANSI colors for the different progress sources
TAG_COLORS = {
    ProgressTag.SSH: "\033[36m",  # Cyan
    ProgressTag.STDOUT: "",
    ProgressTag.STDERR: "\033[33m",  # Yellow
    ProgressTag.TIMEOUT: "\033[91m",  # Light Red
    ProgressTag.ERROR: "\033[91m",  # Light Red
    ProgressTag.DEVICE_FLOW: "\033[35m",  # Magenta
}
RESET = "\033[0m"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run faber operations on a remote server over SSH"
    )
    parser.add_argument("--config", type=Path, help="Path to YAML/JSON configuration file")
    parser.add_argument("--server", help="Server name from config (defaults to default_server)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--quiet", "-q", action="store_true", help="Do not stream progress to stderr"
    )
    parser.add_argument("--dashboard", action="store_true", help="Run with the TUI dashboard")
    parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Exit right after showing a device authorization prompt",
    )

    sub = parser.add_subparsers(dest="operation", required=True)

    p = sub.add_parser("exec", help="Run an arbitrary shell command")
    p.add_argument("shell_command")
    p.add_argument("--timeout", type=float, help="Timeout in seconds (default: 300)")
    p.add_argument(
        "--detect-prompt",
        action="store_true",
        help="Return early when a device authorization prompt appears",
    )

    p = sub.add_parser("check-app", help="Check if an app exists and show its details")
    p.add_argument("name")
    sub.add_parser("list-apps", help="List all deployed apps")
    p = sub.add_parser("deploy-key", help="Show the SSH deploy key of an app")
    p.add_argument("username")

    p = sub.add_parser("create-stack", help="Create app, domain, database, SSL and .env")
    p.add_argument("--user", required=True)
    p.add_argument("--repository", required=True)
    p.add_argument("--branch")
    p.add_argument("--domain")
    p.add_argument("--php")
    p.add_argument("--dbname")
    for flag in ("db", "domain", "env", "deploy", "reverb"):
        p.add_argument(f"--skip-{flag}", action="store_true")

    p = sub.add_parser("deploy", help="Trigger a zero-downtime deployment")
    p.add_argument("username")

    sub.add_parser("status", help="Show server health and service status")
    p = sub.add_parser("restart", help="Restart a system service")
    p.add_argument("service", choices=operations.VALID_SERVICES)

    sub.add_parser("list-domains", help="List configured domains")
    p = sub.add_parser("create-domain", help="Create a domain for an app (includes SSL)")
    p.add_argument("domain")
    p.add_argument("app")

    sub.add_parser("list-databases", help="List databases")
    p = sub.add_parser("create-database", help="Create a MySQL database and user")
    p.add_argument("--name")

    p = sub.add_parser("list-releases", help="List releases of an app")
    p.add_argument("username")
    p = sub.add_parser("rollback", help="Roll an app back to a previous release")
    p.add_argument("username")
    p.add_argument("release", nargs="?")

    p = sub.add_parser("webhook-logs", help="Show webhook execution logs")
    p.add_argument("--lines", type=int, default=50)
    p = sub.add_parser("app-logs", help="Show Laravel logs of an app")
    p.add_argument("username")
    p.add_argument("--lines", type=int, default=50)

    p = sub.add_parser("get-env", help="Read the .env file of an app")
    p.add_argument("username")
    p = sub.add_parser("set-env", help="Set a variable in the .env file of an app")
    p.add_argument("username")
    p.add_argument("key")
    p.add_argument("value")

    return parser


def make_operation(args: argparse.Namespace):
    """Return a coroutine function ``(remote) -> dict`` for the parsed command."""
    op = args.operation
    if op == "exec":
        return lambda r: operations.execute(r, args.shell_command, args.timeout, args.detect_prompt)
    if op == "check-app":
        return lambda r: operations.check_app(r, args.name)
    if op == "list-apps":
        return operations.list_apps
    if op == "deploy-key":
        return lambda r: operations.get_deploy_key(r, args.username)
    if op == "create-stack":
        params = StackCreateParams(
            user=args.user,
            repository=args.repository,
            branch=args.branch,
            domain=args.domain,
            php=args.php,
            dbname=args.dbname,
            skip_db=args.skip_db,
            skip_domain=args.skip_domain,
            skip_env=args.skip_env,
            skip_deploy=args.skip_deploy,
            skip_reverb=args.skip_reverb,
        )
        return lambda r: operations.create_stack(r, params)
    if op == "deploy":
        return lambda r: operations.deploy(r, args.username)
    if op == "status":
        return operations.server_status
    if op == "restart":
        return lambda r: operations.restart_service(r, args.service)
    if op == "list-domains":
        return operations.list_domains
    if op == "create-domain":
        return lambda r: operations.create_domain(r, args.domain, args.app)
    if op == "list-databases":
        return operations.list_databases
    if op == "create-database":
        return lambda r: operations.create_database(r, args.name)
    if op == "list-releases":
        return lambda r: operations.list_releases(r, args.username)
    if op == "rollback":
        return lambda r: operations.rollback(r, args.username, args.release)
    if op == "webhook-logs":
        return lambda r: operations.webhook_logs(r, args.lines)
    if op == "app-logs":
        return lambda r: operations.app_logs(r, args.username, args.lines)
    if op == "get-env":
        return lambda r: operations.get_env(r, args.username)
    if op == "set-env":
        return lambda r: operations.set_env_var(r, args.username, args.key, args.value)
    raise ValueError(f"Unknown operation: {op}")


def format_result(data: dict) -> str:
    """Render an operation result for the terminal."""
    device_flow = data.get("device_flow")
    if device_flow:
        return "\n".join(
            [
                "=" * 50,
                "GitHub Authorization Required",
                "=" * 50,
                "",
                f"1. Open: {device_flow['verification_uri']}",
                f"2. Enter code: {device_flow['user_code']}",
                "",
                "Waiting for authorization..." if data.get("pending") else "",
                "",
                "=" * 50,
                "",
                "Full output:",
                data.get("output", ""),
            ]
        )
    if "public_key" in data:
        return "\n".join(
            [data["instructions"], "", "Public Key:", "─" * 50, data["public_key"], "─" * 50]
        )
    return json.dumps(data, indent=2, ensure_ascii=False)


async def wait_for_handoff(session: Session) -> int:
    """Keep a handed-off session open until its remote command finishes."""
    manager = ConnectionManager()
    try:
        completed = await session.process.wait()
    except asyncssh.Error as e:
        print(f"Error: lost connection while waiting for authorization: {e}", file=sys.stderr)
        return 1
    else:
        if completed.stdout:
            print(completed.stdout, end="")
        if completed.stderr:
            print(completed.stderr, end="", file=sys.stderr)
        exit_status = session.process.exit_status
        return 0 if exit_status == 0 else 1
    finally:
        await manager.disconnect(session)


def main() -> int:
    """Main entry point."""
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Load configuration
    try:
        config = load_config(args.config)
        target = get_server_target(config, args.server)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    remote = Remote(
        target=target,
        progress_log=config.progress_log,
        device_flow_host=config.device_flow_host,
        connect_timeout=config.connect_timeout,
    )
    operation = make_operation(args)

    if not args.dashboard:
        # Run without TUI dashboard (default)
        return _run_headless(remote, operation, quiet=args.quiet, wait=not args.no_wait)

    app = Dashboard(
        title=f"{args.operation} @ {target.user_host}",
        operation=lambda on_progress: operation(replace(remote, on_progress=on_progress)),
    )
    app.run()

    if app.error:
        print(f"Error: {app.error}", file=sys.stderr)
        return 1
    return 0


def _run_headless(remote: Remote, operation, quiet: bool, wait: bool) -> int:
    """Run one operation, streaming progress to stderr."""

    def on_progress(tag: ProgressTag, message: str, count: int) -> None:
        color = TAG_COLORS.get(tag, "")
        print(f"{color}[{tag.value}]{RESET} {message}", file=sys.stderr)

    if not quiet:
        remote = replace(remote, on_progress=on_progress)

    async def run() -> int:
        data = await operation(remote)
        session = data.pop("session", None)
        print(format_result(data))
        if session is not None:
            if wait:
                return await wait_for_handoff(session)
            await ConnectionManager().disconnect(session)
        return 0 if data.get("success", True) else 1

    try:
        return asyncio.run(run())
    except (FaberError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

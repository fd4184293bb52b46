"""Named faber operations mapped onto remote shell commands.

Each operation builds a command string, runs it through ``run_command`` and
turns the output into a plain dict ready to be printed as JSON. Arguments
are quoted with ``shlex.quote``; the execution core does no sanitisation of
its own.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import DEFAULT_DEVICE_FLOW_HOST, ServerTarget
from .connection import ConnectionManager
from .device_flow import parse_device_flow
from .errors import OperationError
from .executor import ExecutionRequest, ExecutionResult, run_command
from .parsers import non_empty_lines, parse_env_file, parse_key_values, parse_table
from .progress import ProgressCallback

LONG_TIMEOUT = 600.0
SSL_TIMEOUT = 300.0

VALID_SERVICES = ("nginx", "php", "mysql", "supervisor", "redis")

DEPLOY_KEY_INSTRUCTIONS = "\n".join(
    [
        "Add this SSH public key as a deploy key to your Git repository:",
        "",
        "For GitHub:",
        "1. Go to your repository → Settings → Deploy keys",
        '2. Click "Add deploy key"',
        "3. Paste the public key below",
        '4. Optionally check "Allow write access" if needed',
        '5. Click "Add key"',
    ]
)


@dataclass
class Remote:
    """Where and how operations run their commands."""

    target: ServerTarget
    on_progress: ProgressCallback | None = None
    progress_log: Path | None = None
    device_flow_host: str = DEFAULT_DEVICE_FLOW_HOST
    connect_timeout: float = 30.0

    async def run(
        self,
        command: str,
        timeout: float | None = None,
        detect_interactive_prompt: bool = False,
    ) -> ExecutionResult:
        request = ExecutionRequest(
            command=command,
            detect_interactive_prompt=detect_interactive_prompt,
            on_progress=self.on_progress,
        )
        if timeout is not None:
            request.timeout = timeout
        return await run_command(
            self.target,
            request,
            progress_log=self.progress_log,
            device_flow_host=self.device_flow_host,
            manager=ConnectionManager(self.connect_timeout),
        )

    async def run_checked(self, command: str, failure: str) -> ExecutionResult:
        """Run *command* and raise OperationError on a non-zero exit."""
        result = await self.run(command)
        if result.exit_code != 0:
            raise OperationError(f"{failure}: {result.stderr.strip()}")
        return result


def _q(value: str) -> str:
    return shlex.quote(str(value))


def _outcome(result: ExecutionResult, ok: str, failed: str) -> dict[str, Any]:
    return {
        "success": result.exit_code == 0,
        "output": result.stdout,
        "stderr": result.stderr,
        "message": ok if result.exit_code == 0 else failed,
    }


# ── apps ──────────────────────────────────────────────────────────────────


async def check_app(remote: Remote, name: str) -> dict[str, Any]:
    result = await remote.run(f"faber app show {_q(name)}")
    if result.exit_code != 0:
        return {"exists": False, "message": f"App '{name}' not found on server"}
    return {
        "exists": True,
        "output": result.stdout,
        "details": parse_key_values(result.stdout),
    }


async def list_apps(remote: Remote) -> dict[str, Any]:
    result = await remote.run_checked("faber app list", "Failed to list apps")
    return {
        "output": result.stdout,
        "apps": parse_table(result.stdout, ["USERNAME", "PHP", "DOMAIN"]),
    }


async def get_deploy_key(remote: Remote, username: str) -> dict[str, Any]:
    result = await remote.run_checked(
        f"cat /home/{_q(username)}/gitkey.pub", "Failed to retrieve deploy key"
    )
    return {
        "public_key": result.stdout.strip(),
        "instructions": DEPLOY_KEY_INSTRUCTIONS,
    }


@dataclass
class StackCreateParams:
    """Options of ``faber stack create``."""

    user: str
    repository: str
    branch: str | None = None
    domain: str | None = None
    php: str | None = None
    dbname: str | None = None
    skip_db: bool = False
    skip_domain: bool = False
    skip_env: bool = False
    skip_deploy: bool = False
    skip_reverb: bool = False

    def to_command(self) -> str:
        args = [f"--user={_q(self.user)}", f"--repository={_q(self.repository)}"]
        for option in ("branch", "domain", "php", "dbname"):
            value = getattr(self, option)
            if value:
                args.append(f"--{option}={_q(value)}")
        for flag in ("skip_db", "skip_domain", "skip_env", "skip_deploy", "skip_reverb"):
            if getattr(self, flag):
                args.append("--" + flag.replace("_", "-"))
        return "faber stack create " + " ".join(args)


async def create_stack(remote: Remote, params: StackCreateParams) -> dict[str, Any]:
    """Create app, domain, database, SSL and .env in one go.

    If the server asks for GitHub device authorization the command is left
    running and the result comes back early with ``pending`` set. The open
    session is then returned under ``"session"``; the caller owns it.
    """
    result = await remote.run(
        params.to_command(), timeout=LONG_TIMEOUT, detect_interactive_prompt=True
    )
    prompt = result.prompt_info
    if prompt is None:
        prompt = parse_device_flow(result.stdout, result.stderr, remote.device_flow_host)

    return {
        "success": result.success,
        "pending": result.pending,
        "output": result.stdout,
        "stderr": result.stderr,
        "exit_code": result.exit_code,
        "device_flow": prompt.to_dict() if prompt else None,
        "credentials": parse_key_values(result.stdout),
        "session": result.handoff,
    }


async def execute(
    remote: Remote,
    command: str,
    timeout: float | None = None,
    detect_interactive_prompt: bool = False,
) -> dict[str, Any]:
    """Run an arbitrary command and report the raw result."""
    result = await remote.run(command, timeout, detect_interactive_prompt)
    return {
        "success": result.success,
        "pending": result.pending,
        "output": result.stdout,
        "stderr": result.stderr,
        "exit_code": result.exit_code,
        "device_flow": result.prompt_info.to_dict() if result.prompt_info else None,
        "session": result.handoff,
    }


async def deploy(remote: Remote, username: str) -> dict[str, Any]:
    result = await remote.run(f"faber deploy {_q(username)}", timeout=LONG_TIMEOUT)
    outcome = _outcome(
        result,
        f"✓ Deployment completed successfully for {username}",
        f"✗ Deployment failed for {username} (exit code: {result.exit_code})",
    )
    outcome["exit_code"] = result.exit_code
    return outcome


# ── server ────────────────────────────────────────────────────────────────


async def server_status(remote: Remote) -> dict[str, Any]:
    result = await remote.run_checked("faber status", "Failed to get server status")
    return {"output": result.stdout, "status": parse_key_values(result.stdout)}


async def restart_service(remote: Remote, service: str) -> dict[str, Any]:
    if service not in VALID_SERVICES:
        raise ValueError(f"Invalid service. Must be one of: {', '.join(VALID_SERVICES)}")
    result = await remote.run(f"faber service restart {service}")
    return _outcome(
        result,
        f"✓ Service {service} restarted successfully",
        f"✗ Failed to restart {service}",
    )


# ── domains ───────────────────────────────────────────────────────────────


async def list_domains(remote: Remote) -> dict[str, Any]:
    result = await remote.run_checked("faber domain list", "Failed to list domains")
    return {
        "output": result.stdout,
        "domains": parse_table(result.stdout, ["DOMAIN", "APP", "SSL"]),
    }


async def create_domain(remote: Remote, domain: str, app: str) -> dict[str, Any]:
    result = await remote.run(
        f"faber domain create --domain={_q(domain)} --app={_q(app)}",
        timeout=SSL_TIMEOUT,
    )
    return _outcome(
        result,
        f"✓ Domain {domain} created and assigned to {app}",
        "✗ Failed to create domain",
    )


# ── databases ─────────────────────────────────────────────────────────────


async def list_databases(remote: Remote) -> dict[str, Any]:
    result = await remote.run_checked("faber database list", "Failed to list databases")
    return {
        "output": result.stdout,
        "databases": parse_table(result.stdout, ["DATABASE", "USERNAME"]),
    }


async def create_database(remote: Remote, name: str | None = None) -> dict[str, Any]:
    command = "faber database create"
    if name:
        command += f" --name={_q(name)}"
    result = await remote.run(command)
    return {
        "success": result.exit_code == 0,
        "output": result.stdout,
        "stderr": result.stderr,
        "credentials": parse_key_values(result.stdout),
    }


# ── releases ──────────────────────────────────────────────────────────────


async def list_releases(remote: Remote, username: str) -> dict[str, Any]:
    result = await remote.run_checked(
        f"faber app releases {_q(username)}", "Failed to list releases"
    )
    return {
        "output": result.stdout,
        "releases": parse_table(result.stdout, ["RELEASE", "STATUS", "SIZE"]),
    }


async def rollback(remote: Remote, username: str, release: str | None = None) -> dict[str, Any]:
    command = f"faber app rollback {_q(username)}"
    if release:
        command += f" {_q(release)}"
    result = await remote.run(command)
    return _outcome(
        result,
        f"✓ Rolled back {username} successfully",
        f"✗ Rollback failed for {username}",
    )


# ── logs ──────────────────────────────────────────────────────────────────


async def webhook_logs(remote: Remote, lines: int = 50) -> dict[str, Any]:
    result = await remote.run_checked(
        f"tail -n {int(lines)} /var/log/faber/webhook.log",
        "Failed to retrieve webhook logs",
    )
    return {"output": result.stdout, "lines": non_empty_lines(result.stdout)}


async def app_logs(remote: Remote, username: str, lines: int = 50) -> dict[str, Any]:
    """Tail the Laravel log, falling back to the legacy log location."""
    home = f"/home/{_q(username)}"
    result = await remote.run(
        f"tail -n {int(lines)} {home}/current/storage/logs/laravel.log"
    )
    if result.exit_code != 0:
        result = await remote.run_checked(
            f"tail -n {int(lines)} {home}/logs/laravel.log",
            "Failed to retrieve app logs",
        )
    return {"output": result.stdout, "lines": non_empty_lines(result.stdout)}


# ── environment ───────────────────────────────────────────────────────────


async def get_env(remote: Remote, username: str) -> dict[str, Any]:
    result = await remote.run_checked(
        f"cat /home/{_q(username)}/.env", "Failed to read .env file"
    )
    return {"content": result.stdout, "variables": parse_env_file(result.stdout)}


def build_set_env_command(username: str, key: str, value: str) -> str:
    """Shell snippet that updates KEY in the app's .env or appends it."""
    env_file = f"/home/{_q(username)}/.env"
    line = _q(f"{key}={value}")
    return (
        f"if grep -q {_q('^' + key + '=')} {env_file}; then "
        f"tmp=$(mktemp) && {{ grep -v {_q('^' + key + '=')} {env_file} || true; }} > \"$tmp\" "
        f"&& echo {line} >> \"$tmp\" && cat \"$tmp\" > {env_file} && rm -f \"$tmp\"; "
        f"else echo {line} >> {env_file}; fi"
    )


async def set_env_var(remote: Remote, username: str, key: str, value: str) -> dict[str, Any]:
    result = await remote.run(build_set_env_command(username, key, value))
    success = result.exit_code == 0
    return {
        "success": success,
        "message": f"✓ Set {key}={value} in .env" if success else "✗ Failed to update .env file",
    }

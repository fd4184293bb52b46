"""Tests for the faber operations layer with run_command replaced by canned results."""

from __future__ import annotations

import pytest

from faber_runner import operations
from faber_runner.connection import Session
from faber_runner.device_flow import PromptInfo
from faber_runner.errors import OperationError
from faber_runner.executor import UNKNOWN_EXIT_CODE, ExecutionResult
from faber_runner.operations import Remote, StackCreateParams
from tests.fake_ssh import (
    APP_LIST,
    APP_SHOW,
    DOMAIN_LIST,
    ENV_FILE,
    RELEASES,
    STATUS,
    TARGET,
    FakeConnection,
)


class CannedRunner:
    """Replacement for run_command returning results keyed by command prefix."""

    def __init__(self, responses: dict[str, ExecutionResult]):
        self.responses = responses
        self.requests = []

    async def __call__(self, target, request, **kwargs):
        self.requests.append(request)
        for prefix, result in self.responses.items():
            if request.command.startswith(prefix):
                return result
        return ExecutionResult(stdout="", stderr="command not found", exit_code=127)

    @property
    def commands(self) -> list[str]:
        return [request.command for request in self.requests]


def ok(stdout: str = "", stderr: str = "") -> ExecutionResult:
    return ExecutionResult(stdout=stdout, stderr=stderr, exit_code=0)


def failed(stderr: str = "error", code: int = 1) -> ExecutionResult:
    return ExecutionResult(stdout="", stderr=stderr, exit_code=code)


@pytest.fixture
def remote():
    return Remote(target=TARGET)


@pytest.fixture
def canned(monkeypatch):
    def _install(responses):
        runner = CannedRunner(responses)
        monkeypatch.setattr(operations, "run_command", runner)
        return runner

    return _install


@pytest.mark.asyncio
async def test_check_app_found(remote, canned):
    runner = canned({"faber app show blog": ok(APP_SHOW)})

    data = await operations.check_app(remote, "blog")

    assert data["exists"] is True
    assert data["details"]["php_version"] == "8.4"
    assert runner.commands == ["faber app show blog"]


@pytest.mark.asyncio
async def test_check_app_missing(remote, canned):
    canned({"faber app show": failed("App not found")})

    data = await operations.check_app(remote, "ghost")

    assert data == {"exists": False, "message": "App 'ghost' not found on server"}


@pytest.mark.asyncio
async def test_list_apps(remote, canned):
    canned({"faber app list": ok(APP_LIST)})

    data = await operations.list_apps(remote)

    assert [app["username"] for app in data["apps"]] == ["blog", "shop"]


@pytest.mark.asyncio
async def test_checked_operation_raises_on_failure(remote, canned):
    canned({"faber app list": failed("permission denied\n")})

    with pytest.raises(OperationError, match="Failed to list apps: permission denied"):
        await operations.list_apps(remote)


@pytest.mark.asyncio
async def test_arguments_are_quoted(remote, canned):
    runner = canned({})

    await operations.check_app(remote, "blog; rm -rf /")

    assert runner.commands == ["faber app show 'blog; rm -rf /'"]


@pytest.mark.asyncio
async def test_get_deploy_key(remote, canned):
    canned({"cat /home/blog/gitkey.pub": ok("ssh-ed25519 AAAA blog@faber\n")})

    data = await operations.get_deploy_key(remote, "blog")

    assert data["public_key"] == "ssh-ed25519 AAAA blog@faber"
    assert "Deploy keys" in data["instructions"]


def test_stack_command_line():
    params = StackCreateParams(
        user="blog",
        repository="git@github.com:acme/blog.git",
        branch="main",
        php="8.4",
        skip_db=True,
        skip_reverb=True,
    )

    assert params.to_command() == (
        "faber stack create --user=blog --repository=git@github.com:acme/blog.git "
        "--branch=main --php=8.4 --skip-db --skip-reverb"
    )


@pytest.mark.asyncio
async def test_create_stack_pending(remote, canned):
    session = Session(target=TARGET, connection=FakeConnection(), handed_off=True)
    pending = ExecutionResult(
        stdout="Creating app...\n",
        stderr="1. Open: https://github.com/login/device\n2. Enter code: ABCD-1234\n",
        exit_code=UNKNOWN_EXIT_CODE,
        prompt_info=PromptInfo("https://github.com/login/device", "ABCD-1234"),
        pending=True,
        handoff=session,
    )
    runner = canned({"faber stack create": pending})

    data = await operations.create_stack(remote, StackCreateParams("blog", "https://x/repo.git"))

    request = runner.requests[0]
    assert request.detect_interactive_prompt is True
    assert request.timeout == operations.LONG_TIMEOUT
    assert data["pending"] is True
    assert data["success"] is False
    assert data["device_flow"] == {
        "verification_uri": "https://github.com/login/device",
        "user_code": "ABCD-1234",
    }
    assert data["session"] is session


@pytest.mark.asyncio
async def test_create_stack_completed_scrapes_prompt_and_credentials(remote, canned):
    finished = ok(
        stdout="Username:   blog\nDatabase Password:   \x1b[33mhunter2\x1b[0m\n",
        stderr="Open: https://github.com/login/device\nEnter code: WXYZ-0001\nAuthorized.\n",
    )
    canned({"faber stack create": finished})

    data = await operations.create_stack(remote, StackCreateParams("blog", "https://x/repo.git"))

    assert data["success"] is True
    assert data["pending"] is False
    assert data["device_flow"]["user_code"] == "WXYZ-0001"
    assert data["credentials"] == {"username": "blog", "database_password": "hunter2"}
    assert data["session"] is None


@pytest.mark.asyncio
async def test_deploy_reports_exit_code(remote, canned):
    runner = canned({"faber deploy blog": failed("composer failed", code=2)})

    data = await operations.deploy(remote, "blog")

    assert data["success"] is False
    assert data["exit_code"] == 2
    assert data["message"] == "✗ Deployment failed for blog (exit code: 2)"
    assert runner.requests[0].timeout == operations.LONG_TIMEOUT


@pytest.mark.asyncio
async def test_server_status(remote, canned):
    canned({"faber status": ok(STATUS)})

    data = await operations.server_status(remote)

    assert data["status"]["nginx"] == "running"


@pytest.mark.asyncio
async def test_restart_service_validates_name(remote, canned):
    runner = canned({})

    with pytest.raises(ValueError, match="Invalid service"):
        await operations.restart_service(remote, "sshd")

    assert runner.commands == []


@pytest.mark.asyncio
async def test_restart_service(remote, canned):
    canned({"faber service restart nginx": ok()})

    data = await operations.restart_service(remote, "nginx")

    assert data["message"] == "✓ Service nginx restarted successfully"


@pytest.mark.asyncio
async def test_domains(remote, canned):
    runner = canned({"faber domain list": ok(DOMAIN_LIST), "faber domain create": ok()})

    listed = await operations.list_domains(remote)
    created = await operations.create_domain(remote, "shop.example.com", "shop")

    assert listed["domains"] == [{"domain": "blog.example.com", "app": "blog", "ssl": "valid"}]
    assert created["success"] is True
    assert runner.commands[1] == "faber domain create --domain=shop.example.com --app=shop"
    assert runner.requests[1].timeout == operations.SSL_TIMEOUT


@pytest.mark.asyncio
async def test_create_database_parses_credentials(remote, canned):
    runner = canned({"faber database create": ok("Database:   shop\nPassword:   \x1b[32mp4ss\x1b[0m\n")})

    data = await operations.create_database(remote, "shop")

    assert runner.commands == ["faber database create --name=shop"]
    assert data["credentials"] == {"database": "shop", "password": "p4ss"}


@pytest.mark.asyncio
async def test_releases_and_rollback(remote, canned):
    runner = canned({"faber app releases": ok(RELEASES), "faber app rollback": ok()})

    releases = await operations.list_releases(remote, "blog")
    rolled = await operations.rollback(remote, "blog", "20241231110000")

    assert releases["releases"][1]["status"] == "old"
    assert rolled["message"] == "✓ Rolled back blog successfully"
    assert runner.commands[1] == "faber app rollback blog 20241231110000"


@pytest.mark.asyncio
async def test_app_logs_falls_back_to_legacy_location(remote, canned):
    runner = canned(
        {
            "tail -n 20 /home/blog/current/": failed("No such file"),
            "tail -n 20 /home/blog/logs/": ok("[2025-01-01] local.ERROR: boom\n\n"),
        }
    )

    data = await operations.app_logs(remote, "blog", lines=20)

    assert data["lines"] == ["[2025-01-01] local.ERROR: boom"]
    assert len(runner.commands) == 2


@pytest.mark.asyncio
async def test_webhook_logs(remote, canned):
    canned({"tail -n 50 /var/log/faber/webhook.log": ok("a\nb\n")})

    data = await operations.webhook_logs(remote)

    assert data["lines"] == ["a", "b"]


@pytest.mark.asyncio
async def test_get_env(remote, canned):
    canned({"cat /home/blog/.env": ok(ENV_FILE)})

    data = await operations.get_env(remote, "blog")

    assert data["variables"]["APP_DEBUG"] == "false"


@pytest.mark.asyncio
async def test_set_env_var(remote, canned):
    runner = canned({"if grep": ok()})

    data = await operations.set_env_var(remote, "blog", "APP_DEBUG", "it's true")

    assert data == {"success": True, "message": "✓ Set APP_DEBUG=it's true in .env"}
    assert "'APP_DEBUG=it'\"'\"'s true'" in runner.commands[0]


@pytest.mark.asyncio
async def test_execute_raw_command(remote, canned):
    runner = canned({"uptime": ok(" 10:00 up 3 days\n")})

    data = await operations.execute(remote, "uptime", timeout=5)

    assert data["exit_code"] == 0
    assert data["device_flow"] is None
    assert runner.requests[0].timeout == 5

"""TUI Dashboard for faber-runner."""

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import asyncssh
from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker

from .connection import ConnectionManager
from .progress import ProgressCallback, ProgressTag

Operation = Callable[[ProgressCallback], Awaitable[dict[str, Any]]]

TAG_STYLES = {
    ProgressTag.SSH: "cyan",
    ProgressTag.STDOUT: "",
    ProgressTag.STDERR: "yellow",
    ProgressTag.TIMEOUT: "bold red",
    ProgressTag.ERROR: "bold red",
    ProgressTag.DEVICE_FLOW: "bold magenta",
}


class PromptPanel(Static):
    """Shows a detected device authorization prompt."""

    def show_prompt(self, verification_uri: str, user_code: str) -> None:
        self.update(
            "[bold]GitHub Authorization Required[/bold]\n"
            f"1. Open: [underline]{verification_uri}[/underline]\n"
            f"2. Enter code: [bold magenta]{user_code}[/bold magenta]\n"
            "Waiting for authorization..."
        )
        self.display = True


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    events: reactive[int] = reactive(0)
    state: reactive[str] = reactive("Running...")

    def render(self) -> str:
        return f"Events: {self.events} | {self.state} | Press 'q' to quit"


@dataclass
class ProgressLine(Message):
    """Message for a progress event."""
    tag: ProgressTag
    text: str
    count: int


@dataclass
class OperationFinished(Message):
    """Message carrying the operation result or error."""
    result: dict[str, Any] | None
    error: str | None = None


class Dashboard(App):
    """Runs one operation and streams its progress."""

    CSS = """
    Label#title {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    PromptPanel {
        border: solid $accent;
        padding: 0 1;
        height: auto;
    }

    RichLog {
        height: 1fr;
        border: solid $primary;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(self, title: str, operation: Operation, **kwargs) -> None:
        super().__init__(**kwargs)
        self.operation_title = title
        self.operation = operation
        self.result: dict[str, Any] | None = None
        self.error: str | None = None
        self._worker: Worker | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Label(self.operation_title, id="title")
        prompt = PromptPanel(id="prompt")
        prompt.display = False
        yield prompt
        yield RichLog(id="log", highlight=True, markup=True, wrap=True, auto_scroll=True)
        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start the operation when the app mounts."""
        self._worker = self.run_worker(self._run_operation(), exclusive=True, thread=True)

    async def _run_operation(self) -> None:
        """Run the operation and keep a pending session alive until it finishes."""
        try:
            result = await self.operation(self._on_progress)
        except Exception as e:
            self.post_message(OperationFinished(None, str(e)))
            return

        session = result.pop("session", None)
        self.post_message(OperationFinished(result))
        if session is None:
            return

        try:
            completed = await session.process.wait()
        except asyncssh.Error as e:
            self.post_message(
                OperationFinished(None, f"Lost connection while waiting for authorization: {e}")
            )
        else:
            for line in (completed.stdout or "").splitlines():
                self._on_progress(ProgressTag.STDOUT, line, 0)
            self._on_progress(
                ProgressTag.SSH, f"Command exited with status {session.process.exit_status}", 0
            )
        finally:
            await ConnectionManager().disconnect(session)

    def _on_progress(self, tag: ProgressTag, text: str, count: int) -> None:
        """Handle a progress event - posts message to main thread."""
        self.post_message(ProgressLine(tag, text, count))

    def on_progress_line(self, message: ProgressLine) -> None:
        """Handle ProgressLine message in main thread."""
        log = self.query_one("#log", RichLog)
        style = TAG_STYLES.get(message.tag, "")
        prefix = f"[{style}]{message.tag.value}[/]" if style else message.tag.value
        log.write(f"{prefix} {message.text}")
        if message.count:
            self.query_one("#status-bar", StatusBar).events = message.count

    def on_operation_finished(self, message: OperationFinished) -> None:
        """Handle OperationFinished message in main thread."""
        status_bar = self.query_one("#status-bar", StatusBar)
        log = self.query_one("#log", RichLog)
        self.result = message.result
        self.error = message.error

        if message.error:
            status_bar.state = "Failed"
            log.write(f"[bold red]ERROR:[/] {message.error}")
            return

        device_flow = (message.result or {}).get("device_flow")
        if device_flow:
            self.query_one("#prompt", PromptPanel).show_prompt(
                device_flow["verification_uri"], device_flow["user_code"]
            )
        if (message.result or {}).get("pending"):
            status_bar.state = "Waiting for authorization"
        else:
            status_bar.state = "Complete"
        log.write(json.dumps(message.result, indent=2, ensure_ascii=False))

    async def action_quit(self) -> None:
        """Quit the application."""
        if self._worker and self._worker.is_running:
            self._worker.cancel()
        self.exit()

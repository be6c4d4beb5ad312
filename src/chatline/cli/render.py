"""CLI renderer for chatline."""

import threading
from collections.abc import Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markup import escape

from ..conversation.models import AgentStep

TOOL_PREVIEW_LIMIT = 200


class Renderer:
    """CLI renderer using Rich for terminal output."""

    def __init__(self, console: Console | None = None) -> None:
        self.console: Console = console or Console()
        self._prompt_session: PromptSession[str] | None = None
        self._print_lock = threading.Lock()

    def info(self, message: str) -> None:
        """Render an info message."""
        self._print(message)

    def warning(self, message: str) -> None:
        self._print(f"[yellow]{escape(message)}[/yellow]")

    def error(self, message: str) -> None:
        """Render an error message."""
        self._print(f"[bold red]Error:[/bold red] {escape(message)}")

    def welcome(self, message: str = "[bold blue]chatline[/bold blue] - type /help for commands") -> None:
        """Render welcome message."""
        self._print(message)

    def usage_info(self, api_url: str = "", model: str = "", mode: str = "") -> None:
        """Render usage information."""
        if api_url:
            self._print(f"[bold]Service:[/bold] [cyan]{escape(api_url)}[/cyan]")
        if model:
            self._print(f"[bold]Model:[/bold] [magenta]{escape(model)}[/magenta]")
        if mode:
            self._print(f"[bold]Mode:[/bold] [green]{mode}[/green]")

    def assistant_prefix(self) -> None:
        """Open a streamed assistant line."""
        with self._print_lock:
            self.console.print("[bold yellow]Assistant:[/bold yellow] ", end="")

    def assistant_delta(self, text: str) -> None:
        with self._print_lock:
            self.console.print(text, end="", markup=False, highlight=False)

    def assistant_end(self) -> None:
        with self._print_lock:
            self.console.print()

    def assistant_message(self, message: str) -> None:
        """Render a complete assistant message."""
        self._print(f"[bold yellow]Assistant:[/bold yellow] {escape(message)}")

    def agent_steps(self, steps: Sequence[AgentStep]) -> None:
        """Render the steps of an agent run, dimmed, before its answer."""
        for step in steps:
            if step.step_type == "final_answer":
                continue
            header = step.label if not step.tool_name else f"{step.label} ({step.tool_name})"
            body = step.tool_output or step.tool_input or step.content
            if len(body) > TOOL_PREVIEW_LIMIT:
                body = body[:TOOL_PREVIEW_LIMIT] + "..."
            style = "red" if step.step_type == "error" else "dim"
            self._print(f"[{style}]{escape(header)}: {escape(body)}[/{style}]")

    async def get_user_input(self, prompt: str = "> ") -> str:
        """Prompt user for input."""
        if self._prompt_session is None:
            self._prompt_session = PromptSession()
        with patch_stdout(raw=True):
            return await self._prompt_session.prompt_async(prompt)

    def _print(self, message: str) -> None:
        with self._print_lock:
            self.console.print(message)


def create_cli_renderer() -> Renderer:
    """Create and return a Renderer instance."""
    return Renderer()

"""CLI live runner for chatline."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from ..config import DeliveryMode
from ..conversation.models import AgentStep
from ..conversation.store import StoreChange
from ..session.controller import SessionController

HELP_TEXT = (
    "Commands:\n"
    "  /help                          show this message\n"
    "  /reset                         start a new conversation\n"
    "  /mode [direct|stream|agent]    show or switch the delivery mode\n"
    "  /quit                          leave the session"
)

QUIT_COMMANDS = frozenset({"/quit", "/exit", "/q"})


class ChatRenderer(Protocol):
    def info(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def assistant_prefix(self) -> None: ...

    def assistant_delta(self, text: str) -> None: ...

    def assistant_end(self) -> None: ...

    def assistant_message(self, message: str) -> None: ...

    def agent_steps(self, steps: Sequence[AgentStep]) -> None: ...

    def get_user_input(self, prompt: str = "> ") -> Awaitable[str]: ...


class TurnPrinter:
    """Mirrors assistant turns of the store onto the renderer.

    Streamed turns are printed incrementally: each update prints only the text
    that was not shown yet. User turns are not echoed.
    """

    def __init__(self, renderer: ChatRenderer) -> None:
        self._renderer = renderer
        self._streaming_id: str | None = None
        self._shown = 0

    def __call__(self, change: StoreChange) -> None:
        turn = change.turn
        if change.kind == "clear":
            self._close_stream()
            return
        if turn is None or turn.role != "assistant":
            return
        if change.kind == "append":
            if turn.finalized:
                if turn.steps:
                    self._renderer.agent_steps(turn.steps)
                self._renderer.assistant_message(turn.content)
                return
            self._streaming_id = turn.id
            self._shown = 0
            self._renderer.assistant_prefix()
            return
        if turn.id != self._streaming_id:
            return
        if change.kind == "update":
            delta = turn.content[self._shown :]
            if delta:
                self._renderer.assistant_delta(delta)
                self._shown = len(turn.content)
        elif change.kind in ("finalize", "remove"):
            self._close_stream()

    def _close_stream(self) -> None:
        if self._streaming_id is None:
            return
        self._streaming_id = None
        self._shown = 0
        self._renderer.assistant_end()


async def run_chat(controller: SessionController, renderer: ChatRenderer) -> None:
    """Read lines from the prompt until the user quits."""
    unsubscribe = controller.store.subscribe(TurnPrinter(renderer))
    try:
        await _run_input_loop(controller, renderer)
    finally:
        unsubscribe()
        await controller.aclose()


async def _run_input_loop(controller: SessionController, renderer: ChatRenderer) -> None:
    while True:
        try:
            user_input = await renderer.get_user_input()
        except (KeyboardInterrupt, EOFError):
            renderer.info("Goodbye!")
            return
        text = user_input.strip()
        if not text:
            continue
        if text.startswith("/"):
            if not handle_command(text, controller, renderer):
                return
            continue
        await controller.send(text)
        if controller.error:
            renderer.error(controller.error)
            controller.dismiss_error()


def handle_command(text: str, controller: SessionController, renderer: ChatRenderer) -> bool:
    """Run a slash command; returns ``False`` when the session should end."""
    name, _, argument = text.partition(" ")
    name = name.lower()
    if name in QUIT_COMMANDS:
        renderer.info("Goodbye!")
        return False
    handler = _COMMAND_HANDLERS.get(name)
    if handler is None:
        renderer.error(f"Unknown command: {name} (try /help)")
        return True
    handler(argument.strip(), controller, renderer)
    return True


def _show_help(_argument: str, _controller: SessionController, renderer: ChatRenderer) -> None:
    renderer.info(HELP_TEXT)


def _reset(_argument: str, controller: SessionController, renderer: ChatRenderer) -> None:
    controller.reset()
    renderer.info("Conversation cleared.")


def _switch_mode(argument: str, controller: SessionController, renderer: ChatRenderer) -> None:
    if not argument:
        renderer.info(f"Mode: {controller.mode}")
        return
    try:
        controller.mode = DeliveryMode(argument.lower())
    except ValueError:
        choices = ", ".join(mode.value for mode in DeliveryMode)
        renderer.error(f"Unknown mode: {argument} (choose from {choices})")
        return
    renderer.info(f"Mode: {controller.mode}")


_COMMAND_HANDLERS: dict[str, Callable[[str, SessionController, ChatRenderer], None]] = {
    "/help": _show_help,
    "/reset": _reset,
    "/mode": _switch_mode,
}

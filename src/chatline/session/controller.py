"""Request lifecycle for one conversational session."""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Sequence
from types import TracebackType

from loguru import logger

from ..api.models import HistoryMessage
from ..config import DeliveryMode, PartialReplyPolicy
from ..conversation.models import Turn
from ..conversation.store import ConversationStore
from ..errors import ChatlineError
from .cancellation import CancellationToken
from .dispatcher import AssistantReply, Dispatcher

UNEXPECTED_ERROR_MESSAGE = "Failed to send message"


class _OperationSink:
    """Applies one operation's results to the store while its token is current."""

    def __init__(self, controller: SessionController, token: CancellationToken) -> None:
        self._controller = controller
        self.token = token
        self._content = ""

    @property
    def current(self) -> bool:
        return self._controller.active_token is self.token and not self.token.cancelled

    def begin_stream(self) -> None:
        if not self.current:
            return
        turn = Turn.pending("assistant")
        self._controller.store.append(turn)
        self._controller._pending_turn_id = turn.id

    def push_delta(self, delta: str) -> None:
        turn_id = self._controller.pending_turn_id
        if not self.current or turn_id is None:
            logger.debug("session.delta.discarded token={}", self.token.id)
            return
        self._content += delta
        self._controller.store.update_content(turn_id, self._content)

    def finish_stream(self) -> None:
        turn_id = self._controller.pending_turn_id
        if not self.current or turn_id is None:
            return
        self._controller._pending_turn_id = None
        if not self._controller.store.remove_if_empty(turn_id):
            self._controller.store.finalize(turn_id)

    def complete(self, reply: AssistantReply) -> None:
        if not self.current:
            logger.debug("session.reply.discarded token={}", self.token.id)
            return
        store = self._controller.store
        turn_id = reply.reply_id if reply.reply_id and reply.reply_id not in store else None
        store.append(Turn.create("assistant", reply.content, turn_id=turn_id, steps=reply.steps))

    def fail(self, exc: Exception) -> None:
        if not self.current:
            return
        self._controller._error = str(exc) or UNEXPECTED_ERROR_MESSAGE
        self._controller._settle_pending()


class SessionController:
    """Drives one conversation against the chat service.

    At most one operation is active at a time. Results of an operation are
    applied only while its cancellation token is still the active one, so a
    superseded or cancelled operation can never touch the store, even when
    the transport ignores the abort request.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        store: ConversationStore | None = None,
        mode: DeliveryMode = DeliveryMode.STREAM,
        partial_policy: PartialReplyPolicy = PartialReplyPolicy.DISCARD,
    ) -> None:
        self._dispatcher = dispatcher
        self.store = store if store is not None else ConversationStore()
        self.mode = mode
        self.partial_policy = partial_policy
        self._active_token: CancellationToken | None = None
        self._task: asyncio.Task[None] | None = None
        self._busy = False
        self._pending_turn_id: str | None = None
        self._error: str | None = None
        self._closed = False

    async def __aenter__(self) -> SessionController:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def pending_turn_id(self) -> str | None:
        return self._pending_turn_id

    @property
    def active_token(self) -> CancellationToken | None:
        return self._active_token

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, text: str, *, mode: DeliveryMode | None = None) -> asyncio.Task[None] | None:
        """Start an operation for ``text``.

        Returns the scheduled task, or ``None`` when the text is blank, an
        operation is already running, or the controller is closed.
        """
        message = text.strip()
        if not message or self._busy or self._closed:
            logger.debug("session.submit.rejected busy={} closed={} empty={}", self._busy, self._closed, not message)
            return None

        self._cancel_active()
        history = self.store.history()
        self.store.append(Turn.create("user", message))
        self._error = None
        self._busy = True
        token = CancellationToken()
        self._active_token = token
        chosen = mode or self.mode
        logger.info("session.submit token={} mode={} history={}", token.id, chosen, len(history))
        self._task = asyncio.create_task(
            self._run(_OperationSink(self, token), chosen, message, history),
            name=f"chatline-operation-{token.id}",
        )
        self._task.add_done_callback(functools.partial(self._release, token))
        return self._task

    async def send(self, text: str, *, mode: DeliveryMode | None = None) -> bool:
        """Submit ``text`` and wait for the operation to settle."""
        task = self.submit(text, mode=mode)
        if task is None:
            return False
        await task
        return True

    def cancel(self) -> None:
        """Stop the active operation without surfacing an error."""
        if self._active_token is None:
            return
        logger.info("session.cancel token={}", self._active_token.id)
        self._cancel_active()

    def reset(self) -> None:
        """Drop the conversation and any surfaced error."""
        self._invalidate()
        self._pending_turn_id = None
        self.store.clear()
        self._error = None
        logger.info("session.reset")

    def dismiss_error(self) -> None:
        self._error = None

    def close(self) -> None:
        """Tear the session down; later submissions are ignored."""
        self._closed = True
        self._cancel_active()

    async def aclose(self) -> None:
        task = self._task
        self.close()
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def _run(
        self,
        sink: _OperationSink,
        mode: DeliveryMode,
        message: str,
        history: Sequence[HistoryMessage],
    ) -> None:
        token = sink.token
        try:
            await self._dispatcher.dispatch(mode, message, history, sink, token.stopped)
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                if self._active_token is token:
                    self._cancel_active()
                raise
            logger.info("session.operation.cancelled token={}", token.id)
        except ChatlineError as exc:
            logger.warning("session.operation.failed token={} error={}", token.id, exc)
            sink.fail(exc)
        except Exception as exc:
            logger.exception("session.operation.error token={}", token.id)
            sink.fail(exc)
        finally:
            if self._active_token is token:
                self._active_token = None
                self._busy = False
                self._task = None
                self._pending_turn_id = None

    def _release(self, token: CancellationToken, task: asyncio.Task[None]) -> None:
        # A task cancelled before its first step never reaches _run.
        if self._active_token is token:
            logger.info("session.operation.aborted token={} cancelled={}", token.id, task.cancelled())
            self._cancel_active()

    def _cancel_active(self) -> None:
        if self._active_token is None:
            return
        self._invalidate()
        self._settle_pending()

    def _invalidate(self) -> None:
        if self._active_token is not None:
            self._active_token.cancel()
        self._active_token = None
        self._task = None
        self._busy = False

    def _settle_pending(self) -> None:
        turn_id = self._pending_turn_id
        if turn_id is None:
            return
        self._pending_turn_id = None
        if self.partial_policy is PartialReplyPolicy.KEEP:
            if not self.store.remove_if_empty(turn_id):
                self.store.finalize(turn_id)
            return
        self.store.remove(turn_id)

"""Ordered, append-only conversation history."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Literal, TypeAlias

from loguru import logger

from ..api.models import HistoryMessage
from .models import AgentStep, Turn

ChangeKind = Literal["append", "update", "finalize", "remove", "steps", "clear"]


@dataclass(frozen=True)
class StoreChange:
    """Notification sent to store observers after a mutation."""

    kind: ChangeKind
    turn_id: str | None = None
    turn: Turn | None = None


StoreObserver: TypeAlias = Callable[[StoreChange], None]


class ConversationStore:
    """Holds the turns of one session in append order.

    Only pending turns are ever changed in place; finalized turns can only be
    removed. Operations that target an
    unknown id are no-ops and report ``False``.
    """

    def __init__(self) -> None:
        self._turns: list[Turn] = []
        self._observers: list[StoreObserver] = []

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))

    def __contains__(self, turn_id: object) -> bool:
        return self._index(turn_id) is not None

    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def get(self, turn_id: str) -> Turn | None:
        index = self._index(turn_id)
        return None if index is None else self._turns[index]

    def history(self) -> list[HistoryMessage]:
        """Project the turns to the role/content pairs sent to the service."""
        return [HistoryMessage(role=turn.role, content=turn.content) for turn in self._turns]

    def subscribe(self, observer: StoreObserver) -> Callable[[], None]:
        """Register an observer; the returned callable unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def append(self, turn: Turn) -> None:
        if turn.id in self:
            raise ValueError(f"duplicate turn id: {turn.id}")
        self._turns.append(turn)
        self._notify(StoreChange("append", turn.id, turn))

    def update_content(self, turn_id: str, content: str) -> bool:
        index = self._index(turn_id)
        if index is None:
            return False
        turn = self._turns[index]
        if turn.finalized:
            logger.warning("store.update.finalized turn={}", turn_id)
            return False
        return self._replace(index, "update", content=content)

    def finalize(self, turn_id: str) -> bool:
        index = self._index(turn_id)
        if index is None or self._turns[index].finalized:
            return False
        return self._replace(index, "finalize", finalized=True)

    def attach_steps(self, turn_id: str, steps: Sequence[AgentStep]) -> bool:
        index = self._index(turn_id)
        if index is None:
            return False
        turn = self._turns[index]
        if turn.finalized or turn.steps:
            logger.warning("store.steps.rejected turn={} finalized={}", turn_id, turn.finalized)
            return False
        return self._replace(index, "steps", steps=tuple(steps))

    def remove(self, turn_id: str) -> bool:
        index = self._index(turn_id)
        if index is None:
            return False
        turn = self._turns.pop(index)
        self._notify(StoreChange("remove", turn_id, turn))
        return True

    def remove_if_empty(self, turn_id: str) -> bool:
        turn = self.get(turn_id)
        if turn is None or not turn.is_empty:
            return False
        return self.remove(turn_id)

    def clear(self) -> None:
        self._turns.clear()
        self._notify(StoreChange("clear"))

    def _index(self, turn_id: object) -> int | None:
        for index, turn in enumerate(self._turns):
            if turn.id == turn_id:
                return index
        return None

    def _replace(self, index: int, kind: ChangeKind, **changes: object) -> bool:
        turn = dataclasses.replace(self._turns[index], **changes)
        self._turns[index] = turn
        self._notify(StoreChange(kind, turn.id, turn))
        return True

    def _notify(self, change: StoreChange) -> None:
        for observer in tuple(self._observers):
            try:
                observer(change)
            except Exception:
                logger.opt(exception=True).warning("store.observer.failed kind={}", change.kind)

"""The smart-home platform as seen by the dispatcher, plus an in-memory one"""

import abc
import asyncio
import collections
import dataclasses
import logging
import re
import typing
from collections.abc import Awaitable, Callable, Collection

log = logging.getLogger("shutter_dispatch.host")

StateValue = bool | int | float | str | None
StopHandler = Callable[[], Awaitable[None]]


@dataclasses.dataclass(frozen=True)
class StateChange:
    """One change notification delivered to a subscriber"""

    id: str
    value: StateValue
    old_value: StateValue
    ack: bool

    @property
    def changed(self) -> bool:
        return self.value != self.old_value


ChangeCallback = Callable[[StateChange], None]


@dataclasses.dataclass(frozen=True, eq=False)
class Subscription:
    match: re.Pattern | frozenset
    callback: ChangeCallback

    def matches(self, state_id: str) -> bool:
        if isinstance(self.match, re.Pattern):
            return bool(self.match.match(state_id))
        return state_id in self.match


class HostPlatform(abc.ABC):
    @abc.abstractmethod
    def subscribe(
        self, match: re.Pattern | Collection[str], callback: ChangeCallback
    ) -> Subscription: ...

    @abc.abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None: ...

    @abc.abstractmethod
    def set_state(self, state_id: str, value: StateValue, ack: bool = False) -> None:
        """Writes a state; ack=True marks it as a system-originated change"""

    @abc.abstractmethod
    def create_state(
        self, state_id: str, initial: StateValue, **common: typing.Any
    ) -> None: ...

    @abc.abstractmethod
    def on_stop(self, handler: StopHandler, timeout: float) -> None:
        """Registers 'handler' to run on shutdown, allowed 'timeout' seconds"""


class MemoryHost(HostPlatform):
    """In-process host: states in a dict, callbacks delivered synchronously"""

    def __init__(self):
        self.states: dict[str, StateValue] = {}
        self.objects: dict[str, dict[str, typing.Any]] = {}
        self._subs: list[Subscription] = []
        self._stop_handlers: list[tuple[StopHandler, float]] = []
        self._backlog: collections.deque = collections.deque()
        self._delivering = False

    def __repr__(self) -> str:
        return f"MemoryHost({len(self.states)} states, {len(self._subs)} subs)"

    def subscribe(
        self, match: re.Pattern | Collection[str], callback: ChangeCallback
    ) -> Subscription:
        if not isinstance(match, re.Pattern):
            match = frozenset(match)
        sub = Subscription(match, callback)
        self._subs.append(sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subs:
            self._subs.remove(subscription)

    def set_state(self, state_id: str, value: StateValue, ack: bool = False) -> None:
        old_value = self.states.get(state_id)
        self.states[state_id] = value
        self._backlog.append(StateChange(state_id, value, old_value, ack))
        if self._delivering:
            return  # set from inside a callback, delivered after it returns

        self._delivering = True
        try:
            while self._backlog:
                change = self._backlog.popleft()
                for sub in list(self._subs):
                    if sub in self._subs and sub.matches(change.id):
                        sub.callback(change)
        finally:
            self._delivering = False

    def create_state(
        self, state_id: str, initial: StateValue, **common: typing.Any
    ) -> None:
        self.objects[state_id] = dict(common)
        self.states.setdefault(state_id, initial)

    def on_stop(self, handler: StopHandler, timeout: float) -> None:
        self._stop_handlers.append((handler, timeout))

    async def shutdown(self) -> None:
        """Runs the stop handlers; late or failing handlers are only logged"""

        self._subs.clear()
        handlers, self._stop_handlers = self._stop_handlers, []
        for handler, timeout in handlers:
            task = asyncio.ensure_future(handler())
            done, _ = await asyncio.wait([task], timeout=timeout)
            if not done:
                log.error("Stop handler %r still running after %.1fs", handler, timeout)
                task.cancel()
            elif exc := task.exception():
                log.error("Stop handler %r failed", handler, exc_info=exc)

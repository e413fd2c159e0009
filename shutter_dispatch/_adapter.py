import asyncio
import logging
import re

from shutter_dispatch import _config
from shutter_dispatch import _exceptions
from shutter_dispatch import _host
from shutter_dispatch import _queue
from shutter_dispatch import _router

log = logging.getLogger("shutter_dispatch.adapter")

_BUTTON_ACTIONS = {
    "OpenButton": _router.ShutterAction.OPEN,
    "CloseButton": _router.ShutterAction.CLOSE,
}


def button_pattern(base_id: str) -> re.Pattern:
    """Matches <base_id>Shutter_<n>.OpenButton / .CloseButton state ids"""

    buttons = "|".join(_BUTTON_ACTIONS)
    return re.compile(rf"^{re.escape(base_id)}Shutter_(\d+)\.({buttons})$")


def decode_button(
    pattern: re.Pattern, state_id: str
) -> tuple[int, _router.ShutterAction]:
    """Returns (destination, action) for a button state id"""

    if not (match := pattern.match(state_id)):
        raise _exceptions.MalformedTriggerError(f"Not a shutter button: {state_id}")
    destination, button = match.groups()
    return int(destination), _BUTTON_ACTIONS[button]


def create_shutter_states(
    host: _host.HostPlatform, base_id: str, count: int = 17
) -> list[str]:
    """Creates Open/Close button states for shutters 0..count-1"""

    created = []
    for num in range(count):
        for button, verb in (("OpenButton", "Open"), ("CloseButton", "Close")):
            state_id = f"{base_id}Shutter_{num}.{button}"
            host.create_state(
                state_id,
                False,
                name=f"Shutter {num} {verb}",
                type="boolean",
                role=f"button.{verb.lower()}.blind",
                read=False,
                write=True,
                default=False,
            )
            created.append(state_id)
        log.debug("Created states for shutter %d", num)

    log.info("Created %d shutter button states", len(created))
    return created


class EventAdapter:
    """Turns host state changes into queued serial commands.

    Button presses are reset to false (acknowledged) after a short delay;
    command strings are cleared (acknowledged) right after dispatch.
    """

    def __init__(
        self,
        router: _router.CommandRouter,
        queue: _queue.DispatchQueue,
        config: _config.EventConfig = _config.EventConfig(),
    ):
        self._router = router
        self._queue = queue
        self._config = config
        self._pattern = button_pattern(config.base_id)
        self._host: _host.HostPlatform | None = None
        self._subs: list[_host.Subscription] = []
        self._resets: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"EventAdapter({self._config.base_id!r})"

    def attach(self, host: _host.HostPlatform) -> None:
        if self._host is not None:
            raise RuntimeError("EventAdapter is already attached")
        self._host = host
        self._subs.append(host.subscribe(self._pattern, self._on_button))
        if command_states := self._config.command_states:
            self._subs.append(host.subscribe(command_states, self._on_command))
        log.info("Listening for %s* buttons", self._config.base_id)

    def detach(self) -> None:
        if self._host is not None:
            for sub in self._subs:
                self._host.unsubscribe(sub)
            log.debug("Detached from %r", self._host)
        self._subs.clear()
        self._host = None
        for task in self._resets:
            task.cancel()

    def dispatch(self, destination: int, action: _router.ShutterAction | int) -> bool:
        """Routes and queues one shutter action; False if nothing was queued"""

        try:
            action = _router.ShutterAction(action)
            link, local = self._router.resolve(destination)
        except ValueError:
            log.warning("Bad action %r for shutter %d", action, destination)
            return False
        except _exceptions.UnknownDestinationError as exc:
            log.warning("%s: %s", type(exc).__name__, exc)
            return False

        label = f"shutter {destination} {action.name}"
        payload = _router.encode_action(local, action)
        return self._queue.enqueue(_queue.Command(link, payload, label))

    def dispatch_raw(self, link_id: str, text: str) -> bool:
        """Queues a preformatted command string; False if nothing was queued"""

        try:
            link = self._router.link(link_id)
            payload = _router.encode_raw(text)
        except (
            _exceptions.UnknownDestinationError,
            _exceptions.MalformedTriggerError,
        ) as exc:
            log.warning("%s: %s", type(exc).__name__, exc)
            return False

        return self._queue.enqueue(_queue.Command(link, payload, "raw"))

    def _on_button(self, change: _host.StateChange) -> None:
        if change.value is not True or not change.changed:
            return

        log.info("Button pressed: %s", change.id)
        try:
            destination, action = decode_button(self._pattern, change.id)
        except _exceptions.MalformedTriggerError as exc:
            log.warning("%s", exc)
            return

        log.info("Triggered: shutter %d, %s", destination, action.name)
        self.dispatch(destination, action)
        task = asyncio.create_task(self._reset_button(change.id))
        self._resets.add(task)
        task.add_done_callback(self._resets.discard)

    async def _reset_button(self, state_id: str) -> None:
        await asyncio.sleep(self._config.reset_delay)
        if self._host is not None:
            self._host.set_state(state_id, False, ack=True)

    def _on_command(self, change: _host.StateChange) -> None:
        if change.ack or change.value in (None, ""):
            return

        link_id = self._config.command_states[change.id]
        if not isinstance(change.value, str):
            log.warning("Ignoring non-string command %r in %s", change.value, change.id)
        elif text := change.value.strip():
            log.info("Command for %s: %r", link_id, text)
            self.dispatch_raw(link_id, text)

        if self._host is not None:
            self._host.set_state(change.id, "", ack=True)

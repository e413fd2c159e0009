import asyncio
import collections
import dataclasses
import logging

from shutter_dispatch import _exceptions
from shutter_dispatch import _link

log = logging.getLogger("shutter_dispatch.queue")


@dataclasses.dataclass(frozen=True)
class Command:
    link: _link.SerialLink
    payload: bytes
    label: str = ""

    def __str__(self) -> str:
        text = self.payload.decode("ascii", "replace").strip()
        return f"{text!r} ({self.label})" if self.label else repr(text)


@dataclasses.dataclass
class _Lane:
    pending: collections.deque = dataclasses.field(default_factory=collections.deque)
    worker: asyncio.Task | None = None
    writing: bool = False


class DispatchQueue:
    """Per-link FIFO of outgoing commands, written one at a time.

    Every write waits out the link's settle delay first, so the device
    always gets that long after the port opens and after each command.
    """

    def __init__(self):
        self._lanes: dict[str, _Lane] = {}
        self._closed = False

    def __repr__(self) -> str:
        sizes = {k: len(v.pending) for k, v in self._lanes.items() if v.pending}
        return f"DispatchQueue({sizes!r})"

    def pending(self, link_id: str) -> int:
        lane = self._lanes.get(link_id)
        return len(lane.pending) if lane else 0

    def enqueue(self, command: Command) -> bool:
        """Queues a command; False if it was dropped instead"""

        link = command.link
        if self._closed:
            log.warning("%s: Shutting down, dropped %s", link.id, command)
            return False

        lane = self._lanes.setdefault(link.id, _Lane())
        if not link.is_open:
            limit = link.config.pre_open_buffer
            waiting = link.state in (_link.LinkState.CLOSED, _link.LinkState.OPENING)
            if not (waiting and len(lane.pending) < limit):
                exc = _exceptions.NotOpenError(f"Link is {link.state.value}", link.id)
                log.warning("%s, dropped %s", exc, command)
                return False
            log.info("%s: Not open yet, holding %s", link.id, command)

        lane.pending.append(command)
        if lane.worker is None:
            name = f"{link.id} dispatch"
            lane.worker = asyncio.create_task(self._drain(link, lane), name=name)
        log.debug("%s: Queued %s (%d pending)", link.id, command, len(lane.pending))
        return True

    async def wait_idle(self) -> None:
        """Waits until every link's queue has been written out"""

        while workers := [
            lane.worker
            for lane in self._lanes.values()
            if lane.worker and not lane.worker.done()
        ]:
            await asyncio.gather(*workers, return_exceptions=True)

    def shutdown(self) -> dict[str, asyncio.Task]:
        """Stops dispatching and discards unsent commands.

        Returns {link id: task} for links still finishing a write; those
        tasks are left running.
        """

        self._closed = True
        in_flight = {}
        for link_id, lane in self._lanes.items():
            if lane.pending:
                log.warning("%s: Discarding %d unsent", link_id, len(lane.pending))
                lane.pending.clear()
            if lane.worker and lane.writing:
                in_flight[link_id] = lane.worker
            elif lane.worker:
                lane.worker.cancel()
        return in_flight

    async def _drain(self, link: _link.SerialLink, lane: _Lane) -> None:
        try:
            if not link.is_open and not await link.wait_open():
                log.warning(
                    "%s: Link is %s, dropped %d held",
                    link.id,
                    link.state.value,
                    len(lane.pending),
                )
                lane.pending.clear()
                return

            while lane.pending:
                command = lane.pending.popleft()
                await asyncio.sleep(link.config.settle_delay)
                lane.writing = True
                try:
                    await link.write(command.payload)
                    log.info("%s: Sent %s", link.id, command)
                except _exceptions.LinkException as exc:
                    log.error("%s, %s not sent", exc, command)
                finally:
                    lane.writing = False
        finally:
            lane.worker = None

import asyncio
import enum
import logging
from collections.abc import Callable
from typing import Any

from shutter_dispatch import _config
from shutter_dispatch import _exceptions
from shutter_dispatch import _transport

log = logging.getLogger("shutter_dispatch.link")
data_log = logging.getLogger(log.name + ".data")

# (port, baud, link id) -> transport with write(), drain(), read(), close()
TransportFactory = Callable[[str, int, str], Any]


class LinkState(enum.Enum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    FAILED = "failed"


class SerialLink:
    """Lifecycle of one serial connection to one microcontroller.

    State moves CLOSED -> OPENING -> OPEN -> CLOSING -> CLOSED, or to FAILED
    when the port can't be opened or breaks while open. Unsolicited bytes
    from the device are logged and otherwise ignored.
    """

    def __init__(
        self,
        config: _config.LinkConfig,
        *,
        transport_factory: TransportFactory = _transport.SerialTransport,
    ):
        self.config = config
        self._factory = transport_factory
        self._transport = None
        self._reader: asyncio.Task | None = None
        self._state = LinkState.CLOSED
        self._state_changed = asyncio.Event()

    def __repr__(self) -> str:
        return f"SerialLink({self.id!r}, {self.config.port!r}, {self._state.value})"

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == LinkState.OPEN

    def _set_state(self, state: LinkState) -> None:
        if state != self._state:
            log.debug("%s: %s -> %s", self.id, self._state.value, state.value)
            self._state = state
            self._state_changed.set()
            self._state_changed = asyncio.Event()

    async def open(self) -> None:
        if self._state == LinkState.OPEN:
            log.info("%s: Already open (%s)", self.id, self.config.port)
            return
        if self._state != LinkState.CLOSED:
            log.warning("%s: Can't open while %s", self.id, self._state.value)
            return

        self._set_state(LinkState.OPENING)
        port, baud = self.config.port, self.config.baud
        try:
            self._transport = self._factory(port, baud, self.id)
        except _exceptions.LinkOpenError as exc:
            log.error("%s (%s)", exc, exc.__cause__)
            self._set_state(LinkState.FAILED)
            return

        log.info("%s: Opened %s @ %d baud", self.id, port, baud)
        self._set_state(LinkState.OPEN)
        self._reader = asyncio.create_task(
            self._read_loop(self._transport), name=f"{self.id} inbound"
        )

    async def wait_open(self) -> bool:
        """Waits until the link is open (True) or can't become open (False)"""

        while self._state in (LinkState.CLOSED, LinkState.OPENING):
            await self._state_changed.wait()
        return self._state == LinkState.OPEN

    async def write(self, payload: bytes) -> None:
        if self._state != LinkState.OPEN:
            message = f"Write while {self._state.value}"
            raise _exceptions.NotOpenError(message, self.id)

        data_log.debug("%s: Writing %r", self.id, payload)
        transport = self._transport
        try:
            transport.write(payload)
            await transport.drain()
        except _exceptions.LinkClosed:
            raise
        except _exceptions.LinkIoError:
            await self._fail()
            raise

    async def close(self) -> None:
        if self._state in (LinkState.CLOSED, LinkState.CLOSING):
            log.debug("%s: Already %s", self.id, self._state.value)
            return

        was_open = self._state == LinkState.OPEN
        self._set_state(LinkState.CLOSING)
        await self._shutdown_transport()
        if self._reader:
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        self._set_state(LinkState.CLOSED)
        if was_open:
            log.info("%s: Closed %s", self.id, self.config.port)

    async def _fail(self) -> None:
        if self._state == LinkState.OPEN:
            log.error("%s: Link failed, no further writes", self.id)
            self._set_state(LinkState.FAILED)
            await self._shutdown_transport()

    async def _shutdown_transport(self) -> None:
        # Closing joins the I/O threads, so keep it off the event loop
        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                await asyncio.to_thread(transport.close)
            except OSError:
                log.warning("%s: Error closing port", self.id, exc_info=True)

    async def _read_loop(self, transport) -> None:
        while True:
            try:
                data = await transport.read()
            except _exceptions.LinkClosed:
                return
            except _exceptions.LinkIoError as exc:
                log.error("%s", exc)
                await self._fail()
                return
            text = data.decode("ascii", "replace").strip()
            log.info("%s: Received %r", self.id, text)

import asyncio
import contextlib
import io
import ok_logging_setup
import os
import pty
import pytest
import threading
import typing

from shutter_dispatch import _exceptions

ok_logging_setup.install(
    {
        "OK_LOGGING_LEVEL": "shutter_dispatch=DEBUG,WARNING",
        "OK_LOGGING_OUTPUT": "stdout",
    }
)


class PseudoTtySerial(typing.NamedTuple):
    path: str
    control: io.FileIO
    simulated: io.FileIO


@pytest.fixture
def pty_serial():
    with contextlib.ExitStack() as cleanup:
        ctrl_fd, sim_fd = pty.openpty()
        path = os.ttyname(sim_fd)
        ctrl = cleanup.enter_context(os.fdopen(ctrl_fd, "r+b", buffering=0))
        sim = cleanup.enter_context(os.fdopen(sim_fd, "r+b", buffering=0))
        yield PseudoTtySerial(path=path, control=ctrl, simulated=sim)


class FakeTransport:
    """Stands in for SerialTransport, recording (loop time, bytes) writes"""

    def __init__(self, port: str, baud: int, link: str, drain_delay: float):
        self.port, self.baud, self.link = port, baud, link
        self.drain_delay = drain_delay
        self.writes: list[tuple[float, bytes]] = []
        self.closed = False
        self.close_thread: int | None = None
        self.fail_writes = False
        self._loop = asyncio.get_running_loop()
        self._inbound: asyncio.Queue = asyncio.Queue()

    @property
    def payloads(self) -> list[bytes]:
        return [data for _, data in self.writes]

    def write(self, data: bytes) -> None:
        if self.closed:
            raise _exceptions.LinkClosed("Serial port was closed", self.link)
        if self.fail_writes:
            raise _exceptions.WriteError("Serial write error", self.link)
        self.writes.append((self._loop.time(), data))

    async def drain(self) -> None:
        await asyncio.sleep(self.drain_delay)
        if self.closed:
            raise _exceptions.LinkClosed("Serial port was closed", self.link)

    async def read(self, max: int = 4096) -> bytes:
        item = await self._inbound.get()
        if isinstance(item, Exception):
            raise item
        return item

    def feed(self, item: bytes | Exception) -> None:
        self._inbound.put_nowait(item)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.close_thread = threading.get_ident()
            error = _exceptions.LinkClosed("Serial port was closed", self.link)
            self._loop.call_soon_threadsafe(self.feed, error)


class FakeSerial:
    """Transport factory that hands out FakeTransports, by link id"""

    def __init__(self):
        self.transports: dict[str, FakeTransport] = {}
        self.broken_ports: set[str] = set()
        self.drain_delay = 0.0

    def __call__(self, port: str, baud: int, link: str = "") -> FakeTransport:
        if port in self.broken_ports:
            cause = FileNotFoundError(2, "No such file or directory", port)
            message = f"Can't open {port}"
            raise _exceptions.LinkOpenError(message, link) from cause
        transport = FakeTransport(port, baud, link, self.drain_delay)
        self.transports[link] = transport
        return transport


@pytest.fixture
def fake_serial():
    return FakeSerial()

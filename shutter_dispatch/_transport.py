import asyncio
import contextlib
import logging
import threading

import pydantic
import serial

from shutter_dispatch import _exceptions

log = logging.getLogger("shutter_dispatch.transport")
data_log = logging.getLogger(log.name + ".data")


class SerialTransport(contextlib.AbstractContextManager):
    """A pyserial port serviced by reader/writer threads, awaitable from asyncio.

    Must be created from inside a running event loop. 'link' names the
    owning link in log messages and exceptions.
    """

    @pydantic.validate_call
    def __init__(self, port: str, baud: int, link: str = ""):
        self.link = link or port
        log.debug("%s: Opening %s @ %d baud", self.link, port, baud)
        try:
            pyserial = serial.Serial(port=port, baudrate=baud, write_timeout=0.1)
        except OSError as ex:
            message = f"Can't open {port}"
            raise _exceptions.LinkOpenError(message, self.link) from ex

        self._io = _IoThreads(pyserial, self.link)
        self._io.start()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SerialTransport({self.port_name!r})"

    @property
    def port_name(self) -> str:
        return self._io.pyserial.port

    def close(self) -> None:
        if self._io.stop():
            self._io.pyserial.close()
            log.debug("%s: Closed %s", self.link, self.port_name)

    @pydantic.validate_call
    def write(self, data: bytes) -> None:
        with self._io.monitor:
            if self._io.exception:
                raise self._io.exception
            if data:
                self._io.outgoing.extend(data)
                self._io.monitor.notify_all()

    async def drain(self) -> None:
        """Waits until everything written so far has gone out the port"""

        while True:
            future = self._io.create_future()  # BEFORE checking the buffer
            with self._io.monitor:
                if self._io.exception:
                    raise self._io.exception
                if not self._io.outgoing:
                    return
            await future

    async def read(self, max: int = 4096) -> bytes:
        """Waits for and returns whatever bytes arrive next"""

        while True:
            future = self._io.create_future()  # BEFORE checking the buffer
            with self._io.monitor:
                if self._io.incoming:
                    incoming = bytes(self._io.incoming[:max])
                    del self._io.incoming[:max]
                    return incoming
                if self._io.exception:
                    raise self._io.exception
            await future


class _IoThreads:
    def __init__(self, pyserial: serial.Serial, link: str) -> None:
        self.pyserial = pyserial
        self.link = link
        self.threads: list[threading.Thread] = []
        self.monitor = threading.Condition()
        self.incoming = bytearray()
        self.outgoing = bytearray()
        self.exception: None | _exceptions.LinkIoError = None
        self.futures: list[asyncio.Future] = []
        self.loop = asyncio.get_running_loop()

    def start(self) -> None:
        loops = ((self._readloop, "reader"), (self._writeloop, "writer"))
        for target, role in loops:
            name = f"{self.link} {role}"
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self.threads.append(thread)

    def stop(self) -> bool:
        """Stops the threads; False if they were already stopped"""

        with self.monitor:
            if not self.threads:
                return False
            if not isinstance(self.exception, _exceptions.LinkClosed):
                message = "Serial port was closed"
                self.exception = _exceptions.LinkClosed(message, self.link)
            self._notify_locked()

        try:
            self.pyserial.cancel_read()
            self.pyserial.cancel_write()
        except OSError:
            log.warning("%s: Can't cancel I/O", self.link, exc_info=True)

        for thread in self.threads:
            thread.join()
        self.threads.clear()
        return True

    def _readloop(self) -> None:
        log.debug("%s: Reader started", self.link)
        while not self.exception:
            incoming, error = b"", None
            try:
                # Block for one byte, then take whatever else is waiting
                incoming = self.pyserial.read(size=1)
                if incoming and (waiting := self.pyserial.in_waiting) > 0:
                    incoming += self.pyserial.read(size=waiting)
            except OSError as ex:
                error = _exceptions.ReadError("Serial read error", self.link)
                error.__cause__ = ex
                data_log.warning("%s: Read failed", self.link, exc_info=True)

            with self.monitor:
                if incoming:
                    data_log.debug("%s: Read %db", self.link, len(incoming))
                    self.incoming.extend(incoming)
                if incoming or error:
                    self.exception = self.exception or error
                    self._notify_locked()

    def _writeloop(self) -> None:
        log.debug("%s: Writer started", self.link)
        chunk, error = b"", None
        while not self.exception:
            if chunk:
                try:
                    self.pyserial.write(chunk)
                    self.pyserial.flush()
                except OSError as ex:
                    error = _exceptions.WriteError("Serial write error", self.link)
                    error.__cause__ = ex
                    data_log.warning("%s: Write failed", self.link, exc_info=True)

            with self.monitor:
                if chunk:
                    data_log.debug("%s: Wrote %db", self.link, len(chunk))
                    del self.outgoing[: len(chunk)]
                if chunk or error:
                    self.exception = self.exception or error
                    self._notify_locked()
                while not self.exception and not self.outgoing:
                    self.monitor.wait()
                chunk = bytes(self.outgoing[:256])

    def _notify_locked(self) -> None:
        """Must be run with self.monitor lock held."""

        self.monitor.notify_all()
        if self.futures:
            try:
                self.loop.call_soon_threadsafe(self._resolve_futures)
            except RuntimeError:
                log.debug("%s: Event loop is closed", self.link)

    def create_future(self) -> asyncio.Future:
        """Must be run from the event loop."""

        with self.monitor:
            future = self.loop.create_future()
            self.futures.append(future)
            return future

    def _resolve_futures(self) -> None:
        """Must be run from the event loop."""

        with self.monitor:
            futures, self.futures = self.futures, []
        for future in futures:
            if not future.done():
                future.set_result(None)

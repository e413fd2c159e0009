import asyncio
import contextlib
import logging

from shutter_dispatch import _adapter
from shutter_dispatch import _config
from shutter_dispatch import _host
from shutter_dispatch import _link
from shutter_dispatch import _queue
from shutter_dispatch import _router
from shutter_dispatch import _transport

log = logging.getLogger("shutter_dispatch.dispatcher")

# Extra time the host allows stop() beyond shutdown_timeout, for forced closes
STOP_MARGIN = 1.0


class Dispatcher(contextlib.AbstractAsyncContextManager):
    """Owns every configured link and wires router, queue and adapter.

    Usable as 'async with Dispatcher(config) as d:', which opens all links
    on entry and shuts down (bounded by config.shutdown_timeout) on exit.
    """

    def __init__(
        self,
        config: _config.DispatcherConfig = _config.DEFAULT_CONFIG,
        *,
        transport_factory: _link.TransportFactory = _transport.SerialTransport,
    ):
        self.config = config
        self.links = {
            lc.id: _link.SerialLink(lc, transport_factory=transport_factory)
            for lc in config.links
        }
        self.router = _router.CommandRouter(self.links)
        self.queue = _queue.DispatchQueue()
        self.adapter = _adapter.EventAdapter(self.router, self.queue, config.events)
        self._stopped = False

    def __repr__(self) -> str:
        return f"Dispatcher({list(self.links.values())!r})"

    async def __aenter__(self) -> "Dispatcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        await self.stop()

    async def start(self) -> None:
        for link in self.links.values():
            await link.open()
        n_open = sum(link.is_open for link in self.links.values())
        log.info("%d/%d links open", n_open, len(self.links))

    def attach(self, host: _host.HostPlatform) -> None:
        self.adapter.attach(host)
        host.on_stop(self.stop, self.config.shutdown_timeout + STOP_MARGIN)

    def send(self, destination: int, action: _router.ShutterAction | int) -> bool:
        return self.adapter.dispatch(destination, action)

    def send_raw(self, link_id: str, text: str) -> bool:
        return self.adapter.dispatch_raw(link_id, text)

    async def stop(self) -> None:
        """Stops triggers, drops unsent commands, then closes every link.

        Writes already in flight are allowed to finish first. After
        config.shutdown_timeout, stuck writes are cancelled (with an error
        logged) and their links are closed anyway.
        """

        if self._stopped:
            return
        self._stopped = True

        log.info("Stopping, closing all links")
        self.adapter.detach()
        in_flight = self.queue.shutdown()

        async def finish(link: _link.SerialLink) -> None:
            if writing := in_flight.get(link.id):
                await asyncio.gather(writing, return_exceptions=True)
            await link.close()

        timeout = self.config.shutdown_timeout
        tasks = [asyncio.ensure_future(finish(link)) for link in self.links.values()]
        late: set[asyncio.Future] = set()
        try:
            if tasks:
                _, late = await asyncio.wait(tasks, timeout=timeout)
        finally:
            for task in tasks:
                task.cancel()

        if not late:
            log.info("All links closed")
            return

        stuck = [
            link.id
            for link in self.links.values()
            if link.state != _link.LinkState.CLOSED
        ]
        log.error(
            "Links %s not closed after %.1fs, abandoning writes",
            ", ".join(stuck),
            timeout,
        )
        await asyncio.gather(*late, return_exceptions=True)
        for link in self.links.values():
            await link.close()

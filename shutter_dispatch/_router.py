import dataclasses
import enum
import logging
import typing
from collections.abc import Mapping

from shutter_dispatch import _exceptions
from shutter_dispatch import _link

log = logging.getLogger("shutter_dispatch.router")


class ShutterAction(enum.IntEnum):
    CLOSE = 0
    OPEN = 1


@dataclasses.dataclass(frozen=True)
class RouteEntry:
    """Where one destination lives"""

    destination: int
    link_id: str
    local_address: int


class Route(typing.NamedTuple):
    link: _link.SerialLink
    local_address: int


def encode_action(local_address: int, action: ShutterAction | int) -> bytes:
    """Wire command for one shutter: O<local>:<action> plus newline"""

    return f"O{local_address}:{int(action)}\n".encode("ascii")


def encode_raw(text: str) -> bytes:
    """Wire command for a preformatted string, newline-terminated"""

    if not text.endswith("\n"):
        text += "\n"
    try:
        return text.encode("ascii")
    except UnicodeEncodeError as ex:
        message = f"Non-ASCII command {text.strip()!r}"
        raise _exceptions.MalformedTriggerError(message) from ex


class CommandRouter:
    """Static table from destination ids to (link, local address)"""

    def __init__(self, links: Mapping[str, _link.SerialLink]):
        self._links = dict(links)
        self._table: dict[int, RouteEntry] = {}
        for link in self._links.values():
            for dest, local in link.config.local_addresses().items():
                if dest in self._table:
                    other = self._table[dest].link_id
                    raise ValueError(f"Destination {dest} on {other} and {link.id}")
                self._table[dest] = RouteEntry(dest, link.id, local)

        log.debug("%d routes over %d links", len(self._table), len(self._links))

    def __repr__(self) -> str:
        return f"CommandRouter({sorted(self._links)!r})"

    def __contains__(self, destination: int) -> bool:
        return destination in self._table

    def entries(self) -> list[RouteEntry]:
        return sorted(self._table.values(), key=lambda e: e.destination)

    def resolve(self, destination: int) -> Route:
        try:
            entry = self._table[destination]
        except KeyError:
            message = f"No link configured for destination {destination}"
            raise _exceptions.UnknownDestinationError(message) from None
        return Route(self._links[entry.link_id], entry.local_address)

    def link(self, link_id: str) -> _link.SerialLink:
        try:
            return self._links[link_id]
        except KeyError:
            message = f"No link named {link_id!r}"
            raise _exceptions.UnknownDestinationError(message) from None

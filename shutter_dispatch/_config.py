import logging
import os
import pathlib
from typing import Literal

import pydantic

from shutter_dispatch import _exceptions

log = logging.getLogger("shutter_dispatch.config")

CONFIG_ENV = "SHUTTER_DISPATCH_CONFIG"

AddressingType = Literal["offset", "index"]


class LinkConfig(pydantic.BaseModel):
    """One serial connection to one microcontroller"""

    model_config = pydantic.ConfigDict(frozen=True, extra="forbid")

    id: str = pydantic.Field(min_length=1)
    port: str = pydantic.Field(min_length=1)
    baud: int = pydantic.Field(9600, gt=0)
    settle_delay: float = pydantic.Field(1.0, ge=0)
    destinations: list[int] | dict[int, int]
    addressing: AddressingType = "offset"
    pre_open_buffer: int = pydantic.Field(0, ge=0)

    @pydantic.model_validator(mode="after")
    def _check_destinations(self) -> "LinkConfig":
        if not self.destinations:
            raise ValueError(f"link {self.id!r} has no destinations")
        if isinstance(self.destinations, list):
            if len(set(self.destinations)) != len(self.destinations):
                raise ValueError(f"link {self.id!r} repeats a destination")
        addrs = self.local_addresses()
        if any(a < 0 for a in addrs.values()):
            raise ValueError(
                f"link {self.id!r} derives a negative local address "
                "(with addressing='offset' the first destination must be lowest)"
            )
        return self

    def local_addresses(self) -> dict[int, int]:
        """Maps each destination on this link to its device-local address"""

        if isinstance(self.destinations, dict):
            return dict(self.destinations)
        elif self.addressing == "index":
            return {d: i for i, d in enumerate(self.destinations)}
        else:
            first = self.destinations[0]
            return {d: d - first for d in self.destinations}


class EventConfig(pydantic.BaseModel):
    """How host platform states map onto dispatches"""

    model_config = pydantic.ConfigDict(frozen=True, extra="forbid")

    base_id: str = "javascript.0.Rollershutters."
    reset_delay: float = pydantic.Field(0.2, ge=0)
    command_states: dict[str, str] = {}


class DispatcherConfig(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True, extra="forbid")

    links: list[LinkConfig] = pydantic.Field(min_length=1)
    events: EventConfig = EventConfig()
    shutdown_timeout: float = pydantic.Field(2.0, gt=0)

    @pydantic.model_validator(mode="after")
    def _check_unique(self) -> "DispatcherConfig":
        link_ids = [lc.id for lc in self.links]
        if dup := sorted({i for i in link_ids if link_ids.count(i) > 1}):
            raise ValueError(f"duplicate link ids: {', '.join(dup)}")

        owners: dict[int, str] = {}
        for lc in self.links:
            for dest in lc.local_addresses():
                if dest in owners:
                    other = owners[dest]
                    msg = f"destination {dest} on both {other!r} and {lc.id!r}"
                    raise ValueError(msg)
                owners[dest] = lc.id

        for state_id, link_id in self.events.command_states.items():
            if link_id not in link_ids:
                raise ValueError(f"{state_id} refers to unknown link {link_id!r}")

        return self


DEFAULT_CONFIG = DispatcherConfig(
    links=[
        LinkConfig(id="OG", port="/dev/ttyACM0", destinations=list(range(8))),
        LinkConfig(id="EG", port="/dev/ttyACM1", destinations=list(range(8, 15))),
    ],
)


def load_config(path: str | os.PathLike | None = None) -> DispatcherConfig:
    """Reads a JSON config file, or $SHUTTER_DISPATCH_CONFIG, or the default"""

    if path is None:
        path = os.getenv(CONFIG_ENV) or None
    if path is None:
        log.debug("No config file, using defaults")
        return DEFAULT_CONFIG

    try:
        text = pathlib.Path(path).read_text()
        config = DispatcherConfig.model_validate_json(text)
    except OSError as ex:
        raise _exceptions.ConfigInvalid(f"Can't read config {path}") from ex
    except pydantic.ValidationError as ex:
        raise _exceptions.ConfigInvalid(f"Bad config {path}:\n{ex}") from ex

    nd = sum(len(lc.local_addresses()) for lc in config.links)
    log.debug("Loaded %s: %d links, %d destinations", path, len(config.links), nd)
    return config

"""
Routes smart-home shutter buttons and command strings to serial-attached
microcontrollers, one settle-delayed write at a time per port.
"""

from beartype.claw import beartype_this_package as _beartype_me

# ruff: noqa: E402
_beartype_me()

from shutter_dispatch._adapter import (
    EventAdapter,
    button_pattern,
    create_shutter_states,
    decode_button,
)

from shutter_dispatch._config import (
    DEFAULT_CONFIG,
    DispatcherConfig,
    EventConfig,
    LinkConfig,
    load_config,
)

from shutter_dispatch._dispatcher import Dispatcher

from shutter_dispatch._exceptions import (
    ConfigInvalid,
    DispatchException,
    LinkClosed,
    LinkException,
    LinkIoError,
    LinkOpenError,
    MalformedTriggerError,
    NotOpenError,
    ReadError,
    UnknownDestinationError,
    WriteError,
)

from shutter_dispatch._host import (
    HostPlatform,
    MemoryHost,
    StateChange,
    Subscription,
)

from shutter_dispatch._link import LinkState, SerialLink
from shutter_dispatch._queue import Command, DispatchQueue
from shutter_dispatch._router import (
    CommandRouter,
    Route,
    RouteEntry,
    ShutterAction,
    encode_action,
    encode_raw,
)
from shutter_dispatch._transport import SerialTransport

__all__ = [n for n in dir() if not n.startswith("_")]

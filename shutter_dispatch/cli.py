#!/usr/bin/env python3

"""CLI tool to send shutter commands and run the button listener"""

import argparse
import asyncio
import json
import logging
import sys

import ok_logging_setup

import shutter_dispatch

ok_logging_setup.skip_traceback_for(shutter_dispatch.ConfigInvalid)


def main():
    parser = argparse.ArgumentParser(description="Drive roller shutters.")
    parser.add_argument("--config", "-c", help="JSON config file")
    subparsers = parser.add_subparsers(title="actions", dest="command")

    send_parser = subparsers.add_parser("send", help="Open or close a shutter")
    send_parser.add_argument("destination", type=int, help="global shutter id")
    send_parser.add_argument("action", choices=["open", "close"])

    raw_parser = subparsers.add_parser("raw", help="Write a raw command")
    raw_parser.add_argument("link", help="link id")
    raw_parser.add_argument("text", help="command text, e.g. O6:1")

    subparsers.add_parser("listen", help="Read 'STATE [VALUE]' lines from stdin")

    states_parser = subparsers.add_parser("states", help="List button states")
    states_parser.add_argument(
        "--count", "-n", default=17, type=int, help="number of shutters"
    )

    args = parser.parse_args()
    if not args.command:
        args = parser.parse_args([*sys.argv[1:], "states"])

    level = "warning" if args.command == "states" else "info"
    ok_logging_setup.install({"OK_LOGGING_LEVEL": level})
    config = shutter_dispatch.load_config(args.config)

    if args.command == "states":
        host = shutter_dispatch.MemoryHost()
        base_id = config.events.base_id
        for state_id in shutter_dispatch.create_shutter_states(
            host, base_id, args.count
        ):
            print(state_id)
        for state_id, link_id in config.events.command_states.items():
            print(f"{state_id} -> {link_id}")

    elif args.command in ("send", "raw"):
        if not asyncio.run(send_once(config, args)):
            ok_logging_setup.exit("❌ Command not sent")

    elif args.command == "listen":
        asyncio.run(listen(config))


async def send_once(config: shutter_dispatch.DispatcherConfig, args) -> bool:
    async with shutter_dispatch.Dispatcher(config) as dispatcher:
        if args.command == "send":
            action = shutter_dispatch.ShutterAction[args.action.upper()]
            queued = dispatcher.send(args.destination, action)
        else:
            queued = dispatcher.send_raw(args.link, args.text)
        if queued:
            logging.info("⏳ Waiting for the write...")
            await dispatcher.queue.wait_idle()
        return queued


async def listen(config: shutter_dispatch.DispatcherConfig) -> None:
    host = shutter_dispatch.MemoryHost()
    base_id = config.events.base_id
    shutter_dispatch.create_shutter_states(host, base_id)

    dispatcher = shutter_dispatch.Dispatcher(config)
    await dispatcher.start()
    dispatcher.attach(host)
    logging.info("👂 Listening, e.g. 'Shutter_6.OpenButton' (Ctrl-D ends)")

    loop = asyncio.get_running_loop()
    while line := await loop.run_in_executor(None, sys.stdin.readline):
        if words := line.split(maxsplit=1):
            state_id, value = parse_state_line(words, config)
            host.set_state(state_id, value)

    await host.shutdown()


def parse_state_line(
    words: list[str], config: shutter_dispatch.DispatcherConfig
) -> tuple[str, bool | int | float | str | None]:
    state_id, base_id = words[0], config.events.base_id
    text = words[1].strip() if len(words) > 1 else ""
    if state_id in config.events.command_states:
        return state_id, text
    if not state_id.startswith(base_id):
        state_id = base_id + state_id

    if not text:
        return state_id, True
    try:
        value = json.loads(text)
    except ValueError:
        return state_id, text
    if isinstance(value, (bool, int, float, str)) or value is None:
        return state_id, value
    return state_id, text


if __name__ == "__main__":
    main()

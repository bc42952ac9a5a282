"""Headless session runner.

Usage examples:
  scada-tagsync --list-servers 192.168.1.20
  scada-tagsync --config session.json
  scada-tagsync --config session.json --simulate --duration 30

Connects to the configured server, registers the configured tags and logs
every value change until interrupted (or until --duration elapses). Lost
connections are recovered by the session's health daemon.
"""
from __future__ import annotations

import argparse
import logging
import sys
import time

from tagsync.core.event_logger import EventLogger
from tagsync.core.events import DATA_CHANGED
from tagsync.core.session_manager import TagSessionManager
from tagsync.models.data_item import ResultCode
from tagsync.models.events import DataChangedEvent
from tagsync.models.session_config import DEFAULT_HOST, SessionConfig
from tagsync.protocols.opc.simulator import DEFAULT_SERVER_NAME, SimulatedProtocolClient

logger = logging.getLogger("tagsync")


def build_client(config: SessionConfig, simulate: bool):
    if simulate:
        server_name = config.server_name or DEFAULT_SERVER_NAME
        return SimulatedProtocolClient(servers={config.host: [server_name]})
    from tagsync.protocols.opc.ua_client import UAProtocolClient
    return UAProtocolClient(port=config.opcua_port)


def _log_data(event: DataChangedEvent):
    logger.info(f"{event.item.name} = {event.item.new_value!r} [{event.code.name}]")


def _parse_args(argv):
    parser = argparse.ArgumentParser(prog="scada-tagsync", description="Keep a tag subscription alive and log changes")
    parser.add_argument("--config", help="session configuration file (JSON)")
    parser.add_argument("--list-servers", metavar="HOST", help="list the servers available on HOST and exit")
    parser.add_argument("--simulate", action="store_true", help="use the in-memory simulator instead of OPC UA")
    parser.add_argument("--duration", type=float, default=0.0, help="stop after this many seconds (0 = run until Ctrl-C)")
    parser.add_argument("--event-log", metavar="FILE", help="save the session event history to FILE on exit")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)
    if not args.config and not args.list_servers:
        parser.error("--config is required unless --list-servers is given")
    return args


def main(argv=None) -> int:
    """
    Application Entry Point.
    """
    args = _parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.list_servers:
        config = SessionConfig(host=args.list_servers or DEFAULT_HOST)
    else:
        try:
            config = SessionConfig.load(args.config)
        except (OSError, ValueError) as e:
            logger.error(f"Cannot load session config {args.config}: {e}")
            return 2

    try:
        client = build_client(config, args.simulate)
    except RuntimeError as e:
        logger.error(str(e))
        return 2

    with TagSessionManager.from_config(config, client) as manager:
        if args.list_servers:
            servers = manager.get_servers(config.host)
            if servers is None:
                return 1
            for name in servers:
                print(name)
            return 0

        manager.on(DATA_CHANGED, _log_data)
        history = None
        if args.event_log:
            history = EventLogger(source=config.server_name or "session")
            history.attach(manager.hub)

        if manager.connect(config.server_name, config.host) != ResultCode.OK:
            logger.warning("Initial connect failed; the health daemon keeps retrying")
        manager.register_data_items(config.items)

        deadline = time.monotonic() + args.duration if args.duration > 0 else None
        try:
            while deadline is None or time.monotonic() < deadline:
                time.sleep(0.5)
        except KeyboardInterrupt:
            logger.info("Stopping...")

        manager.disconnect()
        if history is not None:
            history.save_to_file(args.event_log)
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
mqtrace command line interface.

Usage:
    mqtrace trace --key K [--topics a,b] [--start RFC3339] [--end RFC3339] [--timeout S]
    mqtrace history [--topic T ...] [--payload P] [--start] [--end] [--archived]
    mqtrace relay --upstream HOST:PORT [--bind HOST:PORT]
    mqtrace serve [--host] [--port]
    mqtrace profiles
"""

import argparse
import asyncio
import os
import sys

from dotenv import load_dotenv

from .config import DEFAULT_PROFILE, MEMORY, log_path, profile_name, resolve_home
from .connections import Profile, list_profiles, load_config, load_profile
from .errors import DataExistsError, TraceConfigError, TraceDeadlineExceeded
from .history import HistoryQuery, format_detail_payload
from .logging_config import get_logger, setup_logging
from .models import TracerConfig, format_rfc3339, parse_rfc3339, split_topics
from .pubsub import PahoClient
from .relay import Relay, parse_address
from .storage import HistoryStore, TraceStore
from .tracer import TraceLauncher, run_trace

logger = get_logger(__name__)


def resolve_broker(args: argparse.Namespace) -> Profile:
    """Broker from --broker, else from the profile file."""
    name = profile_name(args.profile)
    if getattr(args, "broker", None):
        host, port = parse_address(args.broker)
        return Profile(name=name, host=host, port=port)
    return load_profile(args.profile, args.config)


async def trace_command(args: argparse.Namespace) -> int:
    """Record one trace until its end time, the deadline or Ctrl+C."""
    try:
        # Configuration problems surface before the store or the network.
        parse_rfc3339(args.start)
        parse_rfc3339(args.end)
    except TraceConfigError as e:
        logger.error(f"Invalid trace configuration: {e}")
        return 1
    try:
        broker = resolve_broker(args)
    except (KeyError, ValueError) as e:
        logger.error(f"Connection profile error: {e}")
        return 1

    store = TraceStore(resolve_home())

    async def runner(config: TracerConfig) -> None:
        relay: Relay | None = None
        address = broker.address()
        if not args.no_relay:
            relay = Relay(address)
            address = await relay.start()
        host, port = parse_address(address)
        client = PahoClient(
            host,
            port,
            client_id=broker.client_id,
            username=broker.username,
            password=broker.password,
        )
        try:
            tracer = await run_trace(config, store, client)
            for topic, count in sorted(tracer.counts().items()):
                print(f"{count:8d}  {topic}")
        finally:
            if relay is not None:
                await relay.stop()

    try:
        launcher = TraceLauncher(store, runner)
        config = await launcher.launch(
            key=args.key,
            topics=split_topics(args.topics),
            profile=args.profile,
            start=args.start,
            end=args.end,
            timeout=args.timeout,
        )
        logger.info(f"Trace {config.profile}/{config.key} finished")
        return 0
    except TraceConfigError as e:
        logger.error(f"Invalid trace configuration: {e}")
    except DataExistsError as e:
        logger.error(f"{e}; clear it before tracing again")
    except TraceDeadlineExceeded as e:
        logger.error(str(e))
    except (ConnectionError, OSError) as e:
        logger.error(f"Broker connection failed: {e}")
    finally:
        await store.close()
    return 1


async def history_command(args: argparse.Namespace) -> int:
    """Print matching history messages."""
    try:
        if args.query is not None:
            query = HistoryQuery.parse(args.query, archived=args.archived)
        else:
            query = HistoryQuery(
                topics=list(args.topic or []),
                payload=args.payload,
                start=parse_rfc3339(args.start),
                end=parse_rfc3339(args.end),
                archived=args.archived,
            )
            query.validate()
    except TraceConfigError as e:
        logger.error(f"Invalid history filter: {e}")
        return 1

    store = HistoryStore(args.profile, resolve_home())
    try:
        messages = await store.search(**query.to_search_args())
    finally:
        await store.close()

    for message in messages:
        payload = format_detail_payload(message.text) if args.detail else message.text
        print(
            f"{format_rfc3339(message.timestamp)}  {message.kind.value}  "
            f"{message.topic}  {payload}"
        )
    return 0


async def relay_command(args: argparse.Namespace) -> int:
    """Serve the relay until SIGINT/SIGTERM."""
    try:
        await Relay(args.upstream).run(args.bind)
    except ValueError as e:
        logger.error(f"Invalid address: {e}")
        return 1
    except OSError as e:
        logger.error(f"Relay bind failed on {args.bind}: {e}")
        return 1
    return 0


def serve_command(args: argparse.Namespace) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from .api import create_fastapi_app
    from .app import Application

    try:
        broker = resolve_broker(args)
    except KeyError as e:
        logger.warning(f"No broker configured, traces disabled: {e}")
        broker = None

    application = Application(
        profile=args.profile,
        home=resolve_home(),
        broker=broker,
        use_relay=not args.no_relay,
    )
    uvicorn.run(
        create_fastapi_app(application),
        host=args.host,
        port=args.port,
        log_level="info",
    )
    return 0


def profiles_command(args: argparse.Namespace) -> int:
    """List connection profiles."""
    config = load_config(args.config)
    default = config.get("default_profile") or DEFAULT_PROFILE
    profiles = list_profiles(args.config)
    if not profiles:
        print("No connection profiles configured")
        return 0
    for profile in profiles:
        marker = "*" if profile.name == default else " "
        print(f"{marker} {profile.name:20s} {profile.broker_url()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mqtrace", description="MQTT capture, trace and history"
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_profile_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--profile", default=None, help="Profile name (default: default)")
        p.add_argument("--config", default=None, help="Profile file (default: $MQTRACE_HOME/config.toml)")

    trace = sub.add_parser("trace", help="Record a trace")
    trace.add_argument("--key", required=True, help="Trace key")
    trace.add_argument("--topics", default="", help="Comma separated topic filters (default: all)")
    trace.add_argument("--start", default="", help="RFC3339 start time")
    trace.add_argument("--end", default="", help="RFC3339 end time")
    trace.add_argument("--timeout", type=float, default=None, help="Deadline in seconds")
    trace.add_argument("--broker", default=None, help="Broker HOST:PORT, overrides the profile")
    trace.add_argument("--no-relay", action="store_true", help="Connect to the broker directly")
    add_profile_args(trace)

    history = sub.add_parser("history", help="Search captured history")
    history.add_argument("--topic", action="append", help="Fuzzy topic pattern (repeatable)")
    history.add_argument("--payload", default="", help="Payload substring")
    history.add_argument("--start", default="", help="RFC3339 lower bound")
    history.add_argument("--end", default="", help="RFC3339 upper bound")
    history.add_argument("--archived", action="store_true", help="Search archived messages")
    history.add_argument("--query", default=None, help='Query string, e.g. "topic=a payload=b"')
    history.add_argument("--detail", action="store_true", help="Pretty-print JSON payloads")
    add_profile_args(history)

    relay = sub.add_parser("relay", help="Run the relay standalone")
    relay.add_argument("--upstream", required=True, help="Broker HOST:PORT or URL")
    relay.add_argument("--bind", default="127.0.0.1:0", help="Listen address")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=os.getenv("API_HOST", "localhost"))
    serve.add_argument("--port", type=int, default=int(os.getenv("API_PORT", "8000")))
    serve.add_argument("--broker", default=None, help="Broker HOST:PORT, overrides the profile")
    serve.add_argument("--no-relay", action="store_true", help="Connect to the broker directly")
    add_profile_args(serve)

    profiles = sub.add_parser("profiles", help="List connection profiles")
    profiles.add_argument("--config", default=None, help="Profile file")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return the exit code."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    home = resolve_home()
    log_file = os.devnull if home == MEMORY else str(log_path(home))
    setup_logging(args.log_level, log_file)

    try:
        if args.command == "trace":
            return asyncio.run(trace_command(args))
        if args.command == "history":
            return asyncio.run(history_command(args))
        if args.command == "relay":
            return asyncio.run(relay_command(args))
        if args.command == "serve":
            return serve_command(args)
        return profiles_command(args)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())

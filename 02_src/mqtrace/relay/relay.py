"""
Relay - transport-transparent TCP forwarder between local clients and a broker.

The relay:
1. Binds a local listener (ephemeral port unless told otherwise)
2. Waits for the first bytes of each inbound connection
3. Treats a connection that closes before sending anything as a liveness check
4. Otherwise dials exactly one upstream connection for it
5. Forwards raw bytes in both directions until either side closes
"""
import asyncio
import signal
from typing import Callable
from urllib.parse import urlsplit

from ..logging_config import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 65536

Destination = tuple[str, int]
DestinationResolver = Callable[[], Destination]


def parse_address(address: str, default_host: str = "127.0.0.1") -> Destination:
    """
    Parse "host:port", "mqtt://host:port" or "tcp://host:port".

    Args:
        address: Address string
        default_host: Host used when only ":port" is given

    Returns:
        (host, port) tuple
    """
    if "://" in address:
        parts = urlsplit(address)
        if parts.hostname is None or parts.port is None:
            raise ValueError(f"Invalid address: {address}")
        return parts.hostname, parts.port

    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"Invalid address: {address}")
    return host.strip("[]") or default_host, int(port)


class Relay:
    """Local listener relaying raw protocol bytes to one upstream broker."""

    def __init__(self, upstream: str | DestinationResolver):
        """
        Initialize the relay.

        Args:
            upstream: Broker address ("host:port" or URL) or a callable that
                resolves the destination for each new connection
        """
        if callable(upstream):
            self._resolve = upstream
        else:
            destination = parse_address(upstream)
            self._resolve = lambda: destination

        self.server: asyncio.Server | None = None
        self._address: str | None = None
        self._writers: set[asyncio.StreamWriter] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def address(self) -> str | None:
        """Bound "host:port", or None when not running."""
        return self._address

    @property
    def active_connections(self) -> int:
        """Number of relayed connection pairs currently open."""
        return len(self._tasks)

    async def start(self, bind: str = "127.0.0.1:0") -> str:
        """
        Bind the listener and return its address.

        Raises:
            OSError: The address could not be bound
        """
        if self.server is not None:
            return self._address

        host, port = parse_address(bind)
        self.server = await asyncio.start_server(self._handle_client, host, port)
        sock_host, sock_port = self.server.sockets[0].getsockname()[:2]
        self._address = f"{sock_host}:{sock_port}"
        logger.info(f"Relay listening on {self._address}")
        return self._address

    async def stop(self) -> None:
        """Close the listener and every relayed connection. Idempotent."""
        if self.server is None:
            return

        logger.info("Stopping relay...")
        server, self.server = self.server, None
        server.close()

        for writer in list(self._writers):
            writer.close()

        tasks = [t for t in self._tasks if t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await server.wait_closed()
        self._writers.clear()
        self._address = None
        logger.info("Relay stopped")

    async def run(self, bind: str = "127.0.0.1:0") -> None:
        """Serve until SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()
        shutdown_event = asyncio.Event()

        def signal_handler():
            logger.info("Received shutdown signal")
            shutdown_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

        try:
            await self.start(bind)
            await shutdown_event.wait()
        finally:
            await self.stop()

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Relay one inbound connection."""
        task = asyncio.current_task()
        self._tasks.add(task)
        self._writers.add(writer)
        peer = writer.get_extra_info("peername")
        upstream_writer: asyncio.StreamWriter | None = None

        try:
            first = await reader.read(CHUNK_SIZE)
            if not first:
                logger.debug(f"Liveness check from {peer}")
                return

            host, port = self._resolve()
            try:
                upstream_reader, upstream_writer = await asyncio.open_connection(
                    host, port
                )
            except OSError as e:
                logger.error(f"Relay dial to {host}:{port} failed for {peer}: {e}")
                return
            self._writers.add(upstream_writer)
            logger.info(f"Relaying {peer} -> {host}:{port}")

            upstream_writer.write(first)
            await upstream_writer.drain()

            await self._forward_both(reader, writer, upstream_reader, upstream_writer)

        except asyncio.CancelledError:
            logger.debug(f"Relay connection {peer} cancelled")
        except Exception as e:
            logger.error(f"Error relaying {peer}: {e}")
        finally:
            for w in (writer, upstream_writer):
                if w is None:
                    continue
                self._writers.discard(w)
                await self._close_writer(w)
            self._tasks.discard(task)

    async def _forward_both(
        self,
        client_reader: asyncio.StreamReader,
        client_writer: asyncio.StreamWriter,
        upstream_reader: asyncio.StreamReader,
        upstream_writer: asyncio.StreamWriter,
    ) -> None:
        """Pipe both directions; the first side to finish ends the pair."""
        pipes = {
            asyncio.create_task(self._pipe(client_reader, upstream_writer)),
            asyncio.create_task(self._pipe(upstream_reader, client_writer)),
        }
        try:
            await asyncio.wait(pipes, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in pipes:
                task.cancel()
            await asyncio.gather(*pipes, return_exceptions=True)

    async def _pipe(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Copy bytes until EOF or a connection error."""
        try:
            while True:
                data = await reader.read(CHUNK_SIZE)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Relay pipe closed: {e}")

    async def _close_writer(self, writer: asyncio.StreamWriter) -> None:
        try:
            writer.close()
            await writer.wait_closed()
        except Exception as e:
            logger.debug(f"Error closing relayed connection: {e}")

"""Application bootstrap and lifecycle management."""

from typing import Callable, Protocol

from .config import PathLike, profile_name, resolve_home
from .connections import Profile
from .errors import AlreadyRunningError, TraceConfigError
from .logging_config import get_logger
from .models import TracerConfig
from .pubsub import IPubSubClient, PahoClient
from .relay import Relay, parse_address
from .storage import HistoryStore, IHistoryStore, ITraceStore, TraceStore
from .tracer import Tracer

logger = get_logger(__name__)

# Builds a client for a "host:port" broker (or relay) address.
ClientFactory = Callable[[str], IPubSubClient]


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...


class Application:
    """Capture engine for one profile: stores, relay and running tracers."""

    def __init__(
        self,
        profile: str | None = None,
        home: PathLike | None = None,
        broker: Profile | None = None,
        use_relay: bool = True,
        client_factory: ClientFactory | None = None,
    ):
        self._profile = profile_name(profile)
        self._home = resolve_home(home)
        self._broker = broker
        self._use_relay = use_relay
        self._client_factory = client_factory or self._paho_client

        # Components (will be initialized in start())
        self._history: IHistoryStore | None = None
        self._traces: ITraceStore | None = None
        self._relay: Relay | None = None
        self._tracers: dict[str, Tracer] = {}
        self._starting: set[str] = set()

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info(f"Starting application for profile {self._profile}")

        # 1. Stores (no dependencies)
        self._history = HistoryStore(self._profile, self._home)
        self._traces = TraceStore(self._home)
        logger.info("Stores initialized")

        # 2. Relay (needs a broker)
        if self._broker is not None and self._use_relay:
            self._relay = Relay(self._broker.address())
            address = await self._relay.start()
            logger.info(f"Relay started on {address} for {self._broker.address()}")

        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        for key in list(self._tracers):
            await self.stop_trace(key)
        if self._relay:
            await self._relay.stop()
        if self._traces:
            await self._traces.close()
        if self._history:
            await self._history.close()
            logger.info("Stores closed")

    async def start_trace(self, config: TracerConfig) -> Tracer:
        """
        Register and start a tracer.

        Raises:
            TraceConfigError: Invalid configuration
            AlreadyRunningError: A tracer with this key is running or starting
            DataExistsError: Data already stored for (profile, key)
        """
        if config.profile != self._profile:
            raise TraceConfigError(
                f"trace profile {config.profile} does not match {self._profile}"
            )
        config.validate()
        current = self._tracers.get(config.key)
        if config.key in self._starting or (current is not None and current.running):
            raise AlreadyRunningError(f"trace {config.key} is already running")

        # Reserved until the tracer runs or fails to start.
        self._starting.add(config.key)
        try:
            await self.traces.add_trace(config)
            tracer = Tracer(config, self.traces, self._client_factory(self.broker_address))
            await tracer.start()
            self._tracers[config.key] = tracer
        finally:
            self._starting.discard(config.key)
        return tracer

    async def stop_trace(self, key: str) -> Tracer:
        """
        Stop a tracer started by this application.

        Raises:
            KeyError: No tracer with this key
        """
        tracer = self._tracers[key]
        await tracer.stop()
        return tracer

    async def remove_trace(self, key: str, clear: bool = False) -> None:
        """Unregister a trace, stopping it first; optionally drop its data."""
        configs = await self.traces.load_traces(self._profile)
        if key not in configs:
            raise KeyError(key)
        tracer = self._tracers.pop(key, None)
        if tracer is not None:
            await tracer.stop()
        await self.traces.remove_trace(key, self._profile)
        if clear:
            await self.traces.clear_data(self._profile, key)

    async def load_traces(self) -> dict[str, TracerConfig]:
        """Registered traces of this profile by key."""
        return await self.traces.load_traces(self._profile)

    async def delete_profile_data(self) -> None:
        """Stop every tracer, then drop everything stored for the profile."""
        for key in list(self._tracers):
            await self._tracers.pop(key).stop()
        await self.traces.delete_profile(self._profile)
        await self.history.delete_profile()
        logger.info(f"Deleted all data of profile {self._profile}")

    def tracer(self, key: str) -> Tracer | None:
        return self._tracers.get(key)

    @property
    def profile(self) -> str:
        return self._profile

    @property
    def broker_address(self) -> str:
        """Where clients connect: the relay when running, else the broker."""
        if self._relay is not None and self._relay.address:
            return self._relay.address
        if self._broker is not None:
            return self._broker.address()
        raise RuntimeError("No broker configured")

    @property
    def history(self) -> IHistoryStore:
        """Get history store instance."""
        if not self._history:
            raise RuntimeError("Application not started")
        return self._history

    @property
    def traces(self) -> ITraceStore:
        """Get trace store instance."""
        if not self._traces:
            raise RuntimeError("Application not started")
        return self._traces

    @property
    def relay(self) -> Relay | None:
        return self._relay

    def _paho_client(self, address: str) -> IPubSubClient:
        host, port = parse_address(address)
        broker = self._broker
        return PahoClient(
            host,
            port,
            client_id=None,
            username=broker.username if broker else None,
            password=broker.password if broker else None,
        )

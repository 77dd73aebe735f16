"""Tracer: a bounded-lifetime background capture session."""

import asyncio
import threading
from datetime import datetime, timezone
from enum import Enum

from ..errors import AlreadyRunningError, DataExistsError
from ..logging_config import get_logger
from ..models import Message, MessageKind, TracerConfig
from ..pubsub import IPubSubClient, subscription_filters
from ..storage import ITraceStore

logger = get_logger(__name__)


class TracerState(str, Enum):
    """Tracer lifecycle states."""

    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


# (receipt time, topic, payload, retained)
_Delivery = tuple[datetime, str, bytes, bool]


class Tracer:
    """Subscribes to a topic set and records matching messages for one key.

    The client callback only stamps and enqueues messages; a receive loop
    task applies the time window and writes to the store.
    """

    def __init__(self, config: TracerConfig, store: ITraceStore, client: IPubSubClient):
        self._config = config
        self._store = store
        self._client = client

        self._lock = threading.Lock()
        self._state = TracerState.CREATED
        self._counts: dict[str, int] = {}
        self._registered = False

        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[_Delivery] | None = None
        self._task: asyncio.Task | None = None
        self._stopped: asyncio.Event | None = None
        self._lost = 0

    @property
    def config(self) -> TracerConfig:
        return self._config

    @property
    def key(self) -> str:
        return self._config.key

    @property
    def state(self) -> TracerState:
        with self._lock:
            return self._state

    @property
    def running(self) -> bool:
        """Whether the tracer is recording. Safe to read from any thread."""
        with self._lock:
            return self._state == TracerState.RUNNING

    @property
    def lost(self) -> int:
        """Messages that could not be written to the store."""
        return self._lost

    def counts(self) -> dict[str, int]:
        """Snapshot of the in-memory per-topic counters."""
        with self._lock:
            return dict(self._counts)

    async def messages(self) -> list[Message]:
        """Everything persisted for this session, also while running."""
        return await self._store.messages(self._config.profile, self._config.key)

    async def start(self) -> None:
        """
        Start recording.

        Raises:
            TraceConfigError: The end time has passed
            AlreadyRunningError: The tracer is already running
            DataExistsError: The store already holds data for (profile, key)
                on the first start of this tracer
        """
        cfg = self._config
        with self._lock:
            if self._state in (TracerState.STARTING, TracerState.RUNNING):
                raise AlreadyRunningError(f"trace {cfg.key} is already running")
            previous, self._state = self._state, TracerState.STARTING

        try:
            counts = await self._open_session()
        except BaseException:
            with self._lock:
                self._state = previous
            raise

        with self._lock:
            self._counts = counts
            self._state = TracerState.RUNNING
        self._task = asyncio.create_task(self._receive_loop())
        logger.info(
            f"Trace {cfg.profile}/{cfg.key} started on {subscription_filters(cfg.topics)}"
        )

    async def _open_session(self) -> dict[str, int]:
        cfg = self._config
        cfg.validate()

        if not self._registered:
            if await self._store.has_data(cfg.profile, cfg.key):
                raise DataExistsError(cfg.profile, cfg.key)
            self._registered = True

        counts = await self._store.load_counts(cfg.profile, cfg.key, cfg.topics)

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._stopped = asyncio.Event()

        await self._client.connect()
        try:
            await self._client.subscribe(cfg.topics, self._on_message)
        except BaseException:
            await self._close_session()
            raise
        return counts

    async def stop(self) -> None:
        """Unsubscribe, close the session and record what was already received."""
        with self._lock:
            if self._state != TracerState.RUNNING:
                return

        task = self._task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._close_session()

        # Deliveries scheduled by the client thread before it stopped.
        await asyncio.sleep(0)
        while self._queue is not None and not self._queue.empty():
            delivery = self._queue.get_nowait()
            if not await self._record(delivery):
                break

        self._mark_stopped()

    async def wait(self) -> None:
        """Wait until the tracer has stopped."""
        if self._stopped is None:
            return
        await self._stopped.wait()

    def _on_message(self, topic: str, payload: bytes, retained: bool) -> None:
        """Client callback, possibly on a foreign thread."""
        loop, queue = self._loop, self._queue
        if loop is None or queue is None or loop.is_closed():
            return
        delivery = (datetime.now(timezone.utc), topic, payload, retained)
        loop.call_soon_threadsafe(queue.put_nowait, delivery)

    async def _receive_loop(self) -> None:
        end = self._config.end
        try:
            while True:
                timeout = None
                if end is not None:
                    timeout = (end - datetime.now(timezone.utc)).total_seconds()
                try:
                    delivery = await asyncio.wait_for(self._queue.get(), timeout)
                except asyncio.TimeoutError:
                    logger.info(f"Trace {self._config.key} reached its end time")
                    break
                if not await self._record(delivery):
                    logger.info(f"Trace {self._config.key} reached its end time")
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in trace receive loop {self._config.key}: {e}", exc_info=True)

        await self._close_session()
        self._mark_stopped()

    async def _record(self, delivery: _Delivery) -> bool:
        """Apply the time window and persist. False once the window has closed."""
        received, topic, payload, retained = delivery
        cfg = self._config

        if cfg.start is not None and received < cfg.start:
            return True
        if cfg.end is not None and datetime.now(timezone.utc) > cfg.end:
            return False

        message = Message(
            timestamp=received,
            topic=topic,
            payload=payload,
            kind=MessageKind.PUBLISH,
            retained=retained,
        )
        try:
            await self._store.append(cfg.profile, cfg.key, message)
        except Exception as e:
            self._lost += 1
            logger.error(
                f"Trace {cfg.profile}/{cfg.key} lost message on {topic}: {e}",
                exc_info=True,
            )
            return True

        with self._lock:
            self._counts[topic] = self._counts.get(topic, 0) + 1
        return True

    async def _close_session(self) -> None:
        try:
            await self._client.unsubscribe(self._config.topics)
        except Exception as e:
            logger.warning(f"Error unsubscribing trace {self._config.key}: {e}")
        try:
            await self._client.disconnect()
        except Exception as e:
            logger.warning(f"Error disconnecting trace {self._config.key}: {e}")

    def _mark_stopped(self) -> None:
        with self._lock:
            if self._state != TracerState.RUNNING:
                return
            self._state = TracerState.STOPPED
        if self._stopped is not None:
            self._stopped.set()
        logger.info(f"Trace {self._config.profile}/{self._config.key} stopped")

"""Running a trace to completion, with the CLI pre-flight checks."""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable

from ..config import DEFAULT_PROFILE
from ..errors import DataExistsError, TraceConfigError, TraceDeadlineExceeded
from ..logging_config import get_logger
from ..models import TracerConfig, parse_rfc3339
from ..pubsub import IPubSubClient
from ..storage import ITraceStore
from .tracer import Tracer

logger = get_logger(__name__)

TraceRunner = Callable[[TracerConfig], Awaitable[None]]


async def run_trace(
    config: TracerConfig, store: ITraceStore, client: IPubSubClient
) -> Tracer:
    """Run one tracer until its end time or until cancelled. Always stops it."""
    tracer = Tracer(config, store, client)
    await tracer.start()
    try:
        await tracer.wait()
    finally:
        await tracer.stop()
    return tracer


class TraceLauncher:
    """
    Validates and registers a trace, then runs it under an optional deadline.

    Failures surface in a fixed order: bad configuration before the store is
    touched, existing data before any network connection, then the deadline.
    """

    def __init__(self, store: ITraceStore, runner: TraceRunner):
        self.store = store
        self.runner = runner

    async def launch(
        self,
        key: str,
        topics: list[str] | None = None,
        profile: str | None = None,
        start: str = "",
        end: str = "",
        timeout: float | None = None,
    ) -> TracerConfig:
        """
        Launch a trace.

        Args:
            key: Trace key
            topics: Topic patterns (empty subscribes to everything)
            profile: Profile name, "default" when empty
            start: RFC3339 start time, empty for unbounded
            end: RFC3339 end time, empty for unbounded
            timeout: Seconds before the run is cancelled, None for no deadline

        Returns:
            The registered configuration

        Raises:
            TraceConfigError: Invalid key or time window
            DataExistsError: Data already stored for (profile, key)
            TraceDeadlineExceeded: The deadline elapsed before the trace ended
        """
        try:
            start_at = parse_rfc3339(start)
        except TraceConfigError as e:
            raise TraceConfigError(f"invalid trace start time: {e}") from e
        try:
            end_at = parse_rfc3339(end)
        except TraceConfigError as e:
            raise TraceConfigError(f"invalid trace end time: {e}") from e

        config = TracerConfig(
            key=key,
            profile=profile or DEFAULT_PROFILE,
            topics=list(topics or []),
            start=start_at,
            end=end_at,
        )
        config.validate(datetime.now(timezone.utc))

        if await self.store.has_data(config.profile, config.key):
            raise DataExistsError(config.profile, config.key)

        await self.store.add_trace(config)
        logger.info(f"Registered trace {config.profile}/{config.key}")

        try:
            await asyncio.wait_for(self.runner(config), timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Trace {config.key} exceeded its deadline of {timeout}s")
            raise TraceDeadlineExceeded(
                f"trace {config.key} exceeded deadline of {timeout}s"
            ) from e
        return config

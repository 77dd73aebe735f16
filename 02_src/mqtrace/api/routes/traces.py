"""Trace management API routes."""

from pydantic import BaseModel, Field
from fastapi import APIRouter, HTTPException, Query

from ...app import Application
from ...errors import AlreadyRunningError, DataExistsError, TraceConfigError
from ...models import TracerConfig, parse_rfc3339
from ...tracer import TracerState
from .history import MessageResponse, message_to_dict


class TraceRequest(BaseModel):
    """Request model for registering and starting a trace."""

    key: str
    topics: list[str] = Field(default_factory=list)
    start: str = ""
    end: str = ""


class TraceResponse(BaseModel):
    """Response model for a trace."""

    key: str
    profile: str
    topics: list[str]
    start: str
    end: str
    state: str
    counts: dict[str, int]


def trace_to_dict(app: Application, config: TracerConfig) -> dict:
    tracer = app.tracer(config.key)
    return {
        **config.to_dict(),
        "state": (tracer.state if tracer else TracerState.STOPPED).value,
        "counts": tracer.counts() if tracer else {},
    }


def create_traces_router(app: Application) -> APIRouter:
    """Create traces router."""
    router = APIRouter(prefix="/api/traces", tags=["traces"])

    async def get_config(key: str) -> TracerConfig:
        configs = await app.load_traces()
        if key not in configs:
            raise HTTPException(status_code=404, detail=f"Unknown trace: {key}")
        return configs[key]

    @router.get("", response_model=list[TraceResponse])
    async def list_traces() -> list[dict]:
        """Registered traces with their state."""
        try:
            configs = await app.load_traces()
            return [trace_to_dict(app, c) for c in configs.values()]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("", response_model=TraceResponse, status_code=201)
    async def start_trace(request: TraceRequest) -> dict:
        """Register and start a trace for the application's profile."""
        try:
            config = TracerConfig(
                key=request.key,
                profile=app.profile,
                topics=[t.strip() for t in request.topics if t.strip()],
                start=parse_rfc3339(request.start),
                end=parse_rfc3339(request.end),
            )
            await app.start_trace(config)
            return trace_to_dict(app, config)
        except TraceConfigError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except (DataExistsError, AlreadyRunningError) as e:
            raise HTTPException(status_code=409, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/{key}", response_model=TraceResponse)
    async def get_trace(key: str) -> dict:
        """State and per-topic counts of one trace."""
        config = await get_config(key)
        tracer = app.tracer(key)
        if tracer is None:
            counts = await app.traces.load_counts(config.profile, key, config.topics)
            return {**trace_to_dict(app, config), "counts": counts}
        return trace_to_dict(app, config)

    @router.post("/{key}/stop", response_model=TraceResponse)
    async def stop_trace(key: str) -> dict:
        """Stop a running trace."""
        config = await get_config(key)
        if app.tracer(key) is None:
            raise HTTPException(status_code=404, detail=f"Trace not running: {key}")
        try:
            await app.stop_trace(key)
            return trace_to_dict(app, config)
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/{key}/messages", response_model=list[MessageResponse])
    async def trace_messages(key: str) -> list[dict]:
        """Captured messages of one trace in capture order."""
        config = await get_config(key)
        try:
            messages = await app.traces.messages(config.profile, key)
            return [message_to_dict(m) for m in messages]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.delete("/{key}")
    async def delete_trace(
        key: str, clear: bool = Query(False, description="Also drop captured data")
    ) -> dict:
        """Unregister a trace, stopping it first."""
        await get_config(key)
        try:
            await app.remove_trace(key, clear=clear)
            return {"status": "ok"}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router

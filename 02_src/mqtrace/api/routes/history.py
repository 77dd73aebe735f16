"""History API routes."""

from datetime import datetime

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException, Query

from ...app import Application
from ...errors import TraceConfigError
from ...history import HistoryQuery, format_detail_payload
from ...models import Message, parse_rfc3339


class MessageResponse(BaseModel):
    """Response model for a captured message."""

    id: str
    timestamp: datetime
    topic: str
    payload: str
    detail: str
    kind: str
    retained: bool
    archived: bool


class CountResponse(BaseModel):
    """Response model for a message count."""

    archived: bool
    count: int


class AffectedResponse(BaseModel):
    """Response model for archive/delete."""

    ref: str
    affected: int


def message_to_dict(message: Message) -> dict:
    text = message.text
    return {
        "id": message.id,
        "timestamp": message.timestamp,
        "topic": message.topic,
        "payload": text,
        "detail": format_detail_payload(text),
        "kind": message.kind.value,
        "retained": message.retained,
        "archived": message.archived,
    }


def create_history_router(app: Application) -> APIRouter:
    """Create history router."""
    router = APIRouter(prefix="/api/history", tags=["history"])

    @router.get("", response_model=list[MessageResponse])
    async def search_history(
        archived: bool = Query(False, description="Search the archived partition"),
        topic: list[str] = Query([], description="Fuzzy topic patterns"),
        payload: str = Query("", description="Literal payload substring"),
        start: str = Query("", description="RFC3339 lower bound"),
        end: str = Query("", description="RFC3339 upper bound"),
        q: str | None = Query(None, description="Filter query string"),
    ) -> list[dict]:
        """Search captured messages."""
        try:
            if q is not None:
                query = HistoryQuery.parse(q, archived=archived)
            else:
                query = HistoryQuery(
                    topics=topic,
                    payload=payload,
                    start=parse_rfc3339(start),
                    end=parse_rfc3339(end),
                    archived=archived,
                )
                query.validate()
            messages = await app.history.search(**query.to_search_args())
            return [message_to_dict(m) for m in messages]
        except TraceConfigError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/count", response_model=CountResponse)
    async def count_history(archived: bool = Query(False)) -> dict:
        """Count messages in one partition."""
        try:
            return {"archived": archived, "count": await app.history.count(archived)}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/topics", response_model=list[str])
    async def list_topics() -> list[str]:
        """Distinct captured topics."""
        try:
            return await app.history.topics()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/{ref:path}/archive", response_model=AffectedResponse)
    async def archive_messages(ref: str) -> dict:
        """Archive messages by id or topic."""
        try:
            return {"ref": ref, "affected": await app.history.archive(ref)}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.delete("/{ref:path}", response_model=AffectedResponse)
    async def delete_messages(ref: str) -> dict:
        """Delete messages by id or topic."""
        try:
            return {"ref": ref, "affected": await app.history.delete(ref)}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router

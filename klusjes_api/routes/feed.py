"""Server-Sent Events endpoint for the change feed."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.engine import Engine

from klusjes_api.database import get_engine
from klusjes_api.feed import ChangeFeedPublisher

router = APIRouter(tags=["feed"])


@router.get("/api/feed")
async def change_feed(request: Request, engine: Engine = Depends(get_engine)) -> StreamingResponse:
    """Stream room and task snapshots whenever either collection changes."""
    publisher = ChangeFeedPublisher(engine)
    return StreamingResponse(
        publisher.stream(request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )

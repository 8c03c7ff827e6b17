"""Polish routes: create, get, list, delete, retry and the status event stream.

Processing runs after the response as a background task; clients poll
``/polish/get`` or subscribe to ``/polish/{id}/events``.
"""

import asyncio
import json
import time

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import StreamingResponse

from codepolish.api.deps import rate_limit
from codepolish.core.auth import AuthUser, require_auth
from codepolish.core.context import AppContext, get_context
from codepolish.polish.events import TERMINAL_STATUSES, channel_for
from codepolish.schemas.polish import (
    CreatePolishRequest,
    PolishIdRequest,
    PolishListResponse,
    PolishResponse,
    PolishStatus,
    SuccessResponse,
)

router = APIRouter()

_EVENTS_HEARTBEAT_INTERVAL = 15  # seconds


@router.post("/create", response_model=PolishResponse, dependencies=[Depends(rate_limit("polish"))])
async def create_polish(
    body: CreatePolishRequest,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    """Create a job, debit one credit and schedule processing.

    Raises:
        InsufficientCreditsError(402): No credits left
    """
    polish = await context.polishes.create(user.id, body)
    background_tasks.add_task(context.pipeline.process, polish.id)
    return PolishResponse.from_model(polish)


@router.get("/get", response_model=PolishResponse, dependencies=[Depends(rate_limit("query"))])
async def get_polish(
    polish_id: int = Query(..., gt=0),
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    polish = await context.polishes.get(user.id, polish_id)
    return PolishResponse.from_model(polish)


@router.get("/list", response_model=PolishListResponse, dependencies=[Depends(rate_limit("query"))])
async def list_polishes(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    status: PolishStatus | None = Query(default=None),
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    items, total = await context.polishes.list_polishes(user.id, limit=limit, offset=offset, status=status)
    return PolishListResponse(
        items=[PolishResponse.from_model(p) for p in items],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(items) < total,
    )


@router.post("/delete", response_model=SuccessResponse, dependencies=[Depends(rate_limit("mutation"))])
async def delete_polish(
    body: PolishIdRequest,
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    await context.polishes.delete(user.id, body.polish_id)
    return SuccessResponse()


@router.post("/retry", response_model=PolishResponse, dependencies=[Depends(rate_limit("polish"))])
async def retry_polish(
    body: PolishIdRequest,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    """Re-run a failed job as a new attempt, charging one credit.

    Raises:
        BadRequestError(400): Job is not failed
        InsufficientCreditsError(402): No credits left
    """
    polish = await context.polishes.retry(user.id, body.polish_id)
    background_tasks.add_task(context.pipeline.process, polish.id)
    return PolishResponse.from_model(polish)


@router.get("/{polish_id}/events", dependencies=[Depends(rate_limit("query"))])
async def stream_polish_events(
    polish_id: int,
    request: Request,
    user: AuthUser = Depends(require_auth),
    context: AppContext = Depends(get_context),
):
    """Stream status events via SSE with a 15-second heartbeat.

    Emits the current status first. Closes once the job is terminal, and
    immediately when Redis is not configured.
    """
    polish = await context.polishes.get(user.id, polish_id)
    redis = context.redis

    async def event_generator():
        yield f"data: {json.dumps({'polish_id': polish_id, 'status': polish.status})}\n\n"

        if polish.status in TERMINAL_STATUSES or redis is None:
            return

        pubsub = redis.pubsub()
        channel = channel_for(polish_id)
        await pubsub.subscribe(channel)
        last_heartbeat = time.monotonic()

        try:
            while True:
                if await request.is_disconnected():
                    return

                now = time.monotonic()
                if now - last_heartbeat >= _EVENTS_HEARTBEAT_INTERVAL:
                    yield "event: heartbeat\ndata: {}\n\n"
                    last_heartbeat = now

                try:
                    message = await asyncio.wait_for(
                        pubsub.get_message(ignore_subscribe_messages=True),
                        timeout=1.0,
                    )
                except TimeoutError:
                    continue

                if message and message["type"] == "message":
                    yield f"data: {message['data']}\n\n"
                    last_heartbeat = time.monotonic()
                    try:
                        data = json.loads(message["data"])
                        if data.get("status") in TERMINAL_STATUSES:
                            return
                    except (json.JSONDecodeError, TypeError):
                        pass
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )

import asyncio
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from ..auth.security import user_from_token
from ..db import SessionLocal
from ..services.change_feed import Change, feed, parse_filter, visible_to
from ..services.drivers import driver_for_profile

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["realtime"])


def _viewer(token: str) -> dict:
    """Resolve the caller once; the session is closed before the stream opens."""
    db = SessionLocal()
    try:
        user = user_from_token(db, token)
        profile = user.profile
        driver = driver_for_profile(db, profile) if profile.role == "driver" else None
        return {
            "user_id": str(user.id),
            "admin": profile.role == "admin",
            "company_id": str(profile.company_id) if profile.company_id else None,
            "driver_id": str(driver.id) if driver else None,
        }
    finally:
        db.close()


@router.websocket("/ws/changes")
async def ws_changes(
    websocket: WebSocket,
    token: Optional[str] = None,
    table: Optional[str] = None,
    filter: Optional[str] = None,
    event: str = "*",
):
    """
    Stream row changes for one table as JSON ``{table, event, new, old}``.
    Non-admin callers only receive rows linked to their company, login or driver record.
    """
    if not token:
        await websocket.close(code=4401)
        return
    try:
        viewer = _viewer(token)
    except HTTPException as e:
        await websocket.close(code=4401, reason=str(e.detail))
        return
    user_id = viewer["user_id"]
    try:
        row_filter = parse_filter(filter)
    except ValueError:
        await websocket.close(code=4400, reason="Invalid filter")
        return

    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Change]" = asyncio.Queue()

    def _forward(change: Change) -> None:
        if visible_to(change, viewer["company_id"], user_id, driver_id=viewer["driver_id"], admin=viewer["admin"]):
            loop.call_soon_threadsafe(queue.put_nowait, change)

    channel = f"ws:{user_id}:{uuid.uuid4()}"
    try:
        subscription = feed.subscribe(channel, table or "", _forward, event=event, row_filter=row_filter)
    except ValueError as e:
        await websocket.close(code=4400, reason=str(e))
        return

    await websocket.accept()
    logger.info("change_stream_opened", user_id=user_id, table=table, filter=filter)

    async def _sender():
        while True:
            change = await queue.get()
            await websocket.send_json(change.to_dict())

    async def _receiver():
        while True:
            data = await websocket.receive_text()
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")

    tasks = [asyncio.create_task(_sender()), asyncio.create_task(_receiver())]
    try:
        done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("change_stream_failed", channel=channel, error=str(exc))
    finally:
        for task in tasks:
            task.cancel()
        subscription.unsubscribe()
        logger.info("change_stream_closed", user_id=user_id, table=table)

from fastapi import APIRouter, WebSocket, status

from wishsync.api.deps import DbSessionDep, HubDep, bearer_token, load_user
from wishsync.core.logger import get_logger

router = APIRouter(tags=["ws"])
logger = get_logger("ws")


@router.websocket("/ws/{share_id}")
async def wishlist_ws(
    websocket: WebSocket,
    share_id: str,
    db: DbSessionDep,
    hub: HubDep,
) -> None:
    """Live view of one wishlist.

    Outbound frames are full snapshots only. Inbound text ``"ping"`` is
    answered with ``"pong"``; any other frame is ignored. Dead peers are
    detected by the server's protocol-level pings.
    """
    await websocket.accept()

    viewer = await load_user(db, bearer_token(websocket))
    if viewer is None:
        logger.info("WS auth rejected share_id=%s", share_id)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    viewer_id = viewer.id

    try:
        subscriber = await hub.attach(db, share_id, websocket, viewer_id)
    except Exception:
        logger.info("WS initial snapshot failed share_id=%s viewer=%s", share_id, viewer_id, exc_info=True)
        return
    if subscriber is None:
        logger.info("WS wishlist not found share_id=%s", share_id)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        # Release the read transaction; the socket may stay open for hours.
        await db.commit()
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("WS disconnected share_id=%s viewer=%s", share_id, viewer_id)
                break
            text = message.get("text")
            if text is not None and text.strip().lower() == "ping":
                await websocket.send_text("pong")
    finally:
        await hub.unsubscribe(share_id, subscriber)

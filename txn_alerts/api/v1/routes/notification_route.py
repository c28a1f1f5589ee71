# txn_alerts/api/v1/routes/notification_route.py
import asyncio
import logging
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from txn_alerts.schemas.notification_schema import (
    NotificationListResponse,
    SuccessResponse,
    UnreadCountResponse,
)
from txn_alerts.services.pipeline import AlertPipeline, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Notifications"])


# --------------------------------------------------
# LIST / COUNT
# --------------------------------------------------
@router.get("/notifications", response_model=NotificationListResponse)
async def get_my_notifications(
    user_id: str,
    unread_only: bool = False,
    limit: int = 50,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    notifications = await pipeline.notifications.list_for_user(
        user_id, unread_only=unread_only, limit=limit
    )
    unread = await pipeline.notifications.unread_count(user_id)
    return {"notifications": notifications, "count": len(notifications), "unread_count": unread}


@router.get("/notifications/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    user_id: str,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    return {"user_id": user_id, "unread_count": await pipeline.notifications.unread_count(user_id)}


# --------------------------------------------------
# READ ACKNOWLEDGEMENT
# --------------------------------------------------
@router.patch("/notifications/{notification_id}/read", response_model=SuccessResponse)
async def mark_notification_read(
    notification_id: str,
    user_id: str,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    if not await pipeline.notifications.mark_read(notification_id, user_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Notification marked as read"}


# --------------------------------------------------
# REALTIME (one channel per user, filtered server-side)
# --------------------------------------------------
@router.websocket("/ws/notifications/{user_id}")
async def notifications_socket(
    websocket: WebSocket,
    user_id: str,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    # subscribe before accepting so nothing published after the handshake is missed
    subscription = pipeline.broker.subscribe(user_id)
    receiver = None
    getter = None
    try:
        await websocket.accept()
        receiver = asyncio.create_task(websocket.receive_text())
        while True:
            getter = asyncio.create_task(subscription.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)

            if getter in done:
                notification = getter.result()
                await websocket.send_json(
                    {"event": "INSERT", "notification": notification.model_dump(mode="json")}
                )
            else:
                getter.cancel()

            if receiver in done:
                # client messages are ignored; a disconnect raises here
                receiver.result()
                receiver = asyncio.create_task(websocket.receive_text())
    except WebSocketDisconnect:
        logger.debug("Realtime client for user %s disconnected", user_id)
    finally:
        if receiver is not None:
            receiver.cancel()
        if getter is not None:
            getter.cancel()
        pipeline.broker.unsubscribe(subscription)

from typing import List

from fastapi import APIRouter, Depends, Query, Response

from lightup.api import schemas
from lightup.api.dependencies import get_notification_service
from lightup.services.notifications import NotificationService

router = APIRouter()


@router.get("/notifications", response_model=List[schemas.NotificationOut])
def list_notifications(
    unread_only: bool = Query(False),
    notifications: NotificationService = Depends(get_notification_service),
):
    return notifications.list(unread_only=unread_only)


@router.patch("/notifications/{notification_id}/read", response_model=schemas.NotificationOut)
def mark_read(
    notification_id: str,
    notifications: NotificationService = Depends(get_notification_service),
):
    return notifications.mark_read(notification_id)


@router.post("/notifications/read-all", response_model=schemas.MarkAllReadOut)
def mark_all_read(notifications: NotificationService = Depends(get_notification_service)):
    return schemas.MarkAllReadOut(marked_read=notifications.mark_all_read())


@router.delete("/notifications/{notification_id}", status_code=204)
def delete_notification(
    notification_id: str,
    notifications: NotificationService = Depends(get_notification_service),
):
    notifications.delete(notification_id)
    return Response(status_code=204)

"""
In-app notification endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import CLIENT_ERRORS, LendingSystem, get_lending_system, http_error
from .schemas import notification_response


router = APIRouter()


@router.get("")
async def get_notifications(
    user_id: str,
    unread_only: bool = False,
    limit: int = 50,
    system: LendingSystem = Depends(get_lending_system)
):
    """Unread notifications first, then read ones up to limit"""
    center = system.notification_center
    notifications = center.get_notifications(user_id, unread_only=unread_only, limit=limit)
    return {
        "notifications": [notification_response(n) for n in notifications],
        "unread_count": center.unread_count(user_id)
    }


@router.post("/read-all")
async def mark_all_read(
    user_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Mark every notification of a user as read"""
    count = system.notification_center.mark_all_read(user_id)
    return {"updated": count, "message": "All notifications marked as read"}


@router.post("/{notification_id}/read")
async def mark_as_read(
    notification_id: str,
    user_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Mark one notification as read"""
    try:
        notification = system.notification_center.mark_as_read(notification_id, user_id)
        return notification_response(notification)
    except CLIENT_ERRORS as e:
        raise http_error(e)

"""
Notification endpoints
"""

from typing import Any, Dict
from fastapi import APIRouter, Depends, HTTPException

from .dependencies import BankingSystem, get_banking_system, get_request_context
from .schemas import NotificationResponse, NotificationListResponse
from ..identity import RequestContext


router = APIRouter()


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    center = system.notification_center
    notifications = center.get_notifications(context.user_id, unread_only=unread_only, limit=limit)
    return NotificationListResponse(
        notifications=[NotificationResponse.from_notification(n) for n in notifications],
        unread_count=center.get_unread_count(context.user_id)
    )


@router.post("/{notification_id}/read")
def mark_as_read(
    notification_id: str,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    if not system.notification_center.mark_as_read(notification_id, user_id=context.user_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True}


@router.post("/read-all")
def mark_all_as_read(
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    count = system.notification_center.mark_all_as_read(context.user_id)
    return {"marked": count}

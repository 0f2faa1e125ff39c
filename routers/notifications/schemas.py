"""Notifications domain schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field


class NotificationResponse(BaseModel):
    id: int
    title: str
    body: str
    type: str
    data: Optional[dict] = None
    read: bool
    read_at: Optional[str] = None
    created_at: str

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    total: int
    unread_count: int


class MarkReadRequest(BaseModel):
    notification_ids: List[int] = Field(
        default_factory=list, description="Notification IDs to mark as read; empty marks all"
    )


class MarkReadResponse(BaseModel):
    message: str
    marked_count: int

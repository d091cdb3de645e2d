from typing import Any

from pydantic import BaseModel, Field, model_validator

from app.models import BroadcastTarget, NotificationType


class BroadcastRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    type: NotificationType = NotificationType.INFO
    target_type: BroadcastTarget = BroadcastTarget.ALL
    department_id: int | None = Field(default=None, ge=1)
    variables: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_department_target(self) -> "BroadcastRequest":
        if self.target_type == BroadcastTarget.DEPARTMENT and self.department_id is None:
            raise ValueError("department_id is required when target_type is 'department'.")
        return self


class BroadcastResponse(BaseModel):
    sent: int


class AutomaticNotificationsResult(BaseModel):
    notifications_sent: int
    achievements_found: int
    pending_justifications: int
    metrics_without_targets: int
    overdue_missed_count: int
    processed_at: str
    status: str
    strategy: str


class ReminderConfigRead(BaseModel):
    daily: dict[str, Any]
    weekly: dict[str, Any]
    monthly: dict[str, Any]
    quarterly: dict[str, Any]
    yearly: dict[str, Any]

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    started_at: float


class NotificationTestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")


class ReminderCreateRequest(BaseModel):
    user_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=100)
    message: str | None = None
    reminder_time: str = Field(description="'HH:MM:SS' 或 'HH:MM', UTC")
    days_of_week: list[int] = Field(min_length=1)
    enabled: bool = True


class ReminderUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=100)
    message: str | None = None
    reminder_time: str | None = None
    days_of_week: list[int] | None = Field(default=None, min_length=1)
    enabled: bool | None = None

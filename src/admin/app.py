from __future__ import annotations

import asyncio
import time
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

import storage.db_config as db_config
import storage.reminder as reminder_storage
from channels.ws_push import register_fastapi_routes
from core.service import ReminderService
from datamodel import Reminder, ReminderValidationError
from logger import logger
from metrics import runtime_metrics
from utils import now_iso_utc

from .schemas import (
    ReminderCreateRequest,
    ReminderUpdateRequest,
    RuntimeControl,
    NotificationTestRequest,
)


def create_app(
    control: RuntimeControl,
    service: ReminderService,
    *,
    ws_path: str = "/ws",
    cors_allow_origins: list[str] | None = None,
) -> FastAPI:
    app = FastAPI(title="GoutDeau Reminder Server", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_allow_origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_fastapi_routes(app, service.protocol, ws_path)
    logger.info(f"已挂载推送 WebSocket 路由: {ws_path}")

    async def _mirror_into_registry(reminder: Reminder) -> None:
        # 存储已写入成功, 这里只同步内存集合
        if reminder.enabled:
            await service.registry.add(reminder)
        else:
            await service.registry.remove(reminder.id)

    @app.get("/")
    async def home() -> dict[str, Any]:
        return {
            "message": "GoutDeau Server with WebSocket Support",
            "status": "running",
            "timestamp": now_iso_utc(),
        }

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": now_iso_utc(),
            "connections": len(service.connections),
            "reminders": len(service.registry),
            "scheduler": service.scheduler.get_status(),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "db_connected": db_config.conn is not None,
            "shutdown_requested": control.shutdown_event.is_set(),
        }

    @app.get("/api/v1/metrics")
    async def get_metrics() -> dict[str, Any]:
        return {
            "runtime": runtime_metrics.snapshot(),
            "components": {
                "db": {"connected": db_config.conn is not None},
                "service": service.get_status(),
            },
            "active_tasks": len(asyncio.all_tasks()),
        }

    @app.post("/api/test-notification")
    async def test_notification(body: NotificationTestRequest) -> dict[str, Any]:
        if not body.user_id:
            raise HTTPException(status_code=400, detail="userId is required")
        delivered = await service.dispatcher.send_test(body.user_id)
        return {
            "message": "Test notification sent",
            "userId": body.user_id,
            "delivered": delivered,
            "timestamp": now_iso_utc(),
        }

    @app.post("/api/sync-reminders")
    async def sync_reminders() -> dict[str, Any]:
        ok = await service.registry.load_all()
        if not ok:
            raise HTTPException(status_code=500, detail="Failed to sync reminders")
        return {
            "message": "Reminders synced successfully",
            "count": len(service.registry),
            "timestamp": now_iso_utc(),
        }

    @app.get("/api/reminders/{user_id}")
    async def get_user_reminders(user_id: str) -> dict[str, Any]:
        reminders = service.registry.get_by_owner(user_id)
        return {
            "reminders": [r.to_record() for r in reminders],
            "count": len(reminders),
            "timestamp": now_iso_utc(),
        }

    @app.get("/api/reminders/{user_id}/{reminder_id}")
    async def get_reminder(user_id: str, reminder_id: int) -> dict[str, Any]:
        reminder = await service.registry.get_by_id(reminder_id, from_store=True)
        if reminder is None or reminder.owner_id != user_id:
            raise HTTPException(status_code=404, detail="Reminder not found")
        return {"reminder": reminder.to_record(), "timestamp": now_iso_utc()}

    @app.post("/api/reminders", status_code=201)
    async def create_reminder(body: ReminderCreateRequest) -> dict[str, Any]:
        try:
            reminder = await reminder_storage.create_reminder(
                user_id=body.user_id,
                title=body.title,
                reminder_time=body.reminder_time,
                days_of_week=body.days_of_week,
                message=body.message,
                enabled=body.enabled,
            )
        except ReminderValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except Exception as e:
            logger.opt(exception=e).error(f"创建提醒失败: {e}")
            raise HTTPException(status_code=500, detail="Failed to create reminder")

        await _mirror_into_registry(reminder)
        return {"reminder": reminder.to_record(), "timestamp": now_iso_utc()}

    @app.patch("/api/reminders/{reminder_id}")
    async def update_reminder(reminder_id: int, body: ReminderUpdateRequest) -> dict[str, Any]:
        fields = body.model_dump(exclude_unset=True)
        try:
            reminder = await reminder_storage.update_reminder(reminder_id, fields)
        except ReminderValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except Exception as e:
            logger.opt(exception=e).error(f"更新提醒失败: id={reminder_id}, error={e}")
            raise HTTPException(status_code=500, detail="Failed to update reminder")
        if reminder is None:
            raise HTTPException(status_code=404, detail="Reminder not found")

        await _mirror_into_registry(reminder)
        return {"reminder": reminder.to_record(), "timestamp": now_iso_utc()}

    @app.delete("/api/reminders/{reminder_id}")
    async def delete_reminder(reminder_id: int) -> dict[str, Any]:
        try:
            deleted = await reminder_storage.delete_reminder(reminder_id)
        except Exception as e:
            logger.opt(exception=e).error(f"删除提醒失败: id={reminder_id}, error={e}")
            raise HTTPException(status_code=500, detail="Failed to delete reminder")
        if not deleted:
            raise HTTPException(status_code=404, detail="Reminder not found")

        await service.registry.remove(reminder_id)
        return {"deleted": True, "id": reminder_id, "timestamp": now_iso_utc()}

    return app


__all__ = ["create_app"]

"""
提醒的持久化存储。调度核心只依赖 list_enabled_reminders / get_reminder_by_id 两个读接口,
其余写接口供 HTTP API 使用, 写入前统一校验, 非法数据不会落库。
"""

import json
from typing import Any

import storage.db_config as db_config
from datamodel import Reminder, ReminderValidationError
from logger import logger
from utils import format_time_of_day

_COLUMNS = "id, user_id, title, message, reminder_time, days_of_week, enabled, created_at, updated_at"
_UPDATABLE = ("title", "message", "reminder_time", "days_of_week", "enabled")


def _ensure_conn():
    if db_config.conn is None:
        raise RuntimeError("数据库未初始化，请先调用 init_db()")


def _row_to_reminder(row) -> Reminder:
    return Reminder.from_record({
        "id": row[0],
        "user_id": row[1],
        "title": row[2],
        "message": row[3],
        "reminder_time": row[4],
        "days_of_week": row[5],
        "enabled": bool(row[6]),
        "created_at": row[7],
        "updated_at": row[8],
    })


async def check_connection() -> bool:
    """检查存储是否可用"""
    try:
        _ensure_conn()
        async with db_config.conn.execute("SELECT COUNT(1) FROM reminders") as cursor:
            await cursor.fetchone()
        return True
    except Exception as e:
        logger.error(f"存储连接检查失败: {e}")
        return False


async def list_enabled_reminders() -> list[Reminder]:
    """获取所有启用的提醒"""
    _ensure_conn()
    async with db_config.conn.execute(
        f"SELECT {_COLUMNS} FROM reminders WHERE enabled = 1 ORDER BY id"
    ) as cursor:
        rows = await cursor.fetchall()

    reminders: list[Reminder] = []
    for row in rows:
        try:
            reminders.append(_row_to_reminder(row))
        except ReminderValidationError as e:
            logger.warning(f"跳过非法提醒记录: id={row[0]}, error={e}")
    return reminders


async def get_reminder_by_id(reminder_id: int) -> Reminder | None:
    _ensure_conn()
    async with db_config.conn.execute(
        f"SELECT {_COLUMNS} FROM reminders WHERE id = ?", (reminder_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_reminder(row)


async def list_reminders_by_user(user_id: str) -> list[Reminder]:
    _ensure_conn()
    async with db_config.conn.execute(
        f"SELECT {_COLUMNS} FROM reminders WHERE user_id = ? ORDER BY reminder_time, id", (str(user_id),)
    ) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_reminder(row) for row in rows]


async def create_reminder(
    user_id: str,
    title: str,
    reminder_time: str,
    days_of_week: list[int],
    message: str | None = None,
    enabled: bool = True,
) -> Reminder:
    """创建提醒, 数据非法时抛出 ReminderValidationError"""
    _ensure_conn()
    draft = Reminder.from_record({
        "id": 0,
        "user_id": user_id,
        "title": title,
        "message": message,
        "reminder_time": reminder_time,
        "days_of_week": days_of_week,
        "enabled": enabled,
    })
    draft.validate()

    async with db_config.conn.execute(
        "INSERT INTO reminders (user_id, title, message, reminder_time, days_of_week, enabled) VALUES (?, ?, ?, ?, ?, ?)",
        (
            draft.owner_id,
            draft.title.strip(),
            draft.message,
            format_time_of_day(draft.time_of_day),
            json.dumps(draft.days_of_week),
            1 if draft.enabled else 0,
        ),
    ) as cursor:
        reminder_id = cursor.lastrowid
    await db_config.conn.commit()
    logger.trace(f"创建提醒: user_id={draft.owner_id}, title={draft.title}, reminder_id={reminder_id}")

    created = await get_reminder_by_id(reminder_id)
    if created is None:
        raise RuntimeError(f"提醒写入后无法读取: reminder_id={reminder_id}")
    return created


async def update_reminder(reminder_id: int, fields: dict[str, Any]) -> Reminder | None:
    """部分更新提醒, 不存在时返回 None"""
    _ensure_conn()
    current = await get_reminder_by_id(reminder_id)
    if current is None:
        return None

    changes = {k: v for k, v in fields.items() if k in _UPDATABLE}
    if not changes:
        return current

    candidate = current.merged(changes)
    candidate.validate()

    values: dict[str, Any] = {
        "title": candidate.title.strip(),
        "message": candidate.message,
        "reminder_time": format_time_of_day(candidate.time_of_day),
        "days_of_week": json.dumps(candidate.days_of_week),
        "enabled": 1 if candidate.enabled else 0,
    }
    assignments = ", ".join(f"{k} = ?" for k in changes)
    await db_config.conn.execute(
        f"UPDATE reminders SET {assignments}, updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now') WHERE id = ?",
        (*[values[k] for k in changes], reminder_id),
    )
    await db_config.conn.commit()
    logger.trace(f"更新提醒: reminder_id={reminder_id}, fields={list(changes)}")
    return await get_reminder_by_id(reminder_id)


async def delete_reminder(reminder_id: int) -> bool:
    _ensure_conn()
    async with db_config.conn.execute("DELETE FROM reminders WHERE id = ?", (reminder_id,)) as cursor:
        deleted = cursor.rowcount > 0
    await db_config.conn.commit()
    logger.trace(f"删除提醒: reminder_id={reminder_id}, deleted={deleted}")
    return deleted

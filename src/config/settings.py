import os
from dotenv import load_dotenv
from logger import logger
load_dotenv()

__all__ = [
    "HTTP_HOST", "HTTP_PORT", "WS_PATH", "CORS_ALLOW_ORIGINS",
    "DB_PATH", "LOG_FILE", "LOG_LEVEL", "CONSOLE_LOG_LEVEL",
    "TICK_INTERVAL_SECONDS", "FIRE_WINDOW_SECONDS", "TEST_REMINDER_DELAY_SECONDS",
    "SEND_TIMEOUT_SECONDS", "SCOPE_NOTIFICATIONS_TO_OWNER",
]


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


def _parse_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default
    if value <= 0:
        logger.warning(f"{name} 必须为正数: {raw}, 已回退到 {default}")
        return default
    return value


# HTTP / WebSocket
HTTP_HOST = os.getenv("HTTP_HOST", "0.0.0.0")
try:
    HTTP_PORT = int(os.getenv("HTTP_PORT", os.getenv("PORT", "5002")))
except ValueError:
    HTTP_PORT = 5002
    logger.warning("HTTP_PORT 非法, 已回退到 5002")

WS_PATH = os.getenv("WS_PATH", "/ws")
if not WS_PATH.startswith("/"):
    WS_PATH = "/" + WS_PATH

CORS_ALLOW_ORIGINS = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip() != ""]


# 存储与日志
DB_PATH = os.getenv("DB_PATH", "data/goutdeau.db")
LOG_FILE = os.getenv("LOG_FILE", "logs/goutdeau.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")
CONSOLE_LOG_LEVEL = os.getenv("CONSOLE_LOG_LEVEL", "INFO")


# 提醒调度
TICK_INTERVAL_SECONDS = _parse_float("TICK_INTERVAL_SECONDS", 1.0)
FIRE_WINDOW_SECONDS = _parse_float("FIRE_WINDOW_SECONDS", 2.0)
if FIRE_WINDOW_SECONDS < TICK_INTERVAL_SECONDS:
    # 窗口小于检查周期时两次检查之间的提醒会被跳过
    logger.critical(
        f"FIRE_WINDOW_SECONDS({FIRE_WINDOW_SECONDS}) 小于 TICK_INTERVAL_SECONDS({TICK_INTERVAL_SECONDS}), "
        "提醒可能被漏发, 请调整配置"
    )
    exit(0)

TEST_REMINDER_DELAY_SECONDS = int(_parse_float("TEST_REMINDER_DELAY_SECONDS", 60))
SEND_TIMEOUT_SECONDS = _parse_float("SEND_TIMEOUT_SECONDS", 10.0)

# 默认向所有连接广播(沿用旧行为), 开启后只推送给绑定了该用户的连接
SCOPE_NOTIFICATIONS_TO_OWNER = _parse_bool("SCOPE_NOTIFICATIONS_TO_OWNER", False)
if not SCOPE_NOTIFICATIONS_TO_OWNER:
    logger.warning("SCOPE_NOTIFICATIONS_TO_OWNER 未开启, 提醒会推送给所有已连接客户端")

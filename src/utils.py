from datetime import datetime, time, timezone

__all__ = ["now_utc", "iso_utc", "now_iso_utc", "parse_time_of_day", "format_time_of_day",
           "seconds_of_day", "iso_weekday"]

SECONDS_PER_DAY = 86400


def now_utc() -> datetime:
    """获取当前 UTC 时间"""
    return datetime.now(timezone.utc)


def iso_utc(dt: datetime) -> str:
    """格式: 'YYYY-MM-DDTHH:MM:SS.mmmZ', 与 JS 的 toISOString 一致"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso_utc() -> str:
    return iso_utc(now_utc())


def parse_time_of_day(value: str | time) -> time:
    """解析 'HH:MM:SS' 或 'HH:MM', 丢弃秒以下精度"""
    if isinstance(value, time):
        return value.replace(microsecond=0, tzinfo=None)
    text = str(value).strip()
    for fmt in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    # Postgres 的 TIME 可能带小数秒, 例如 "08:00:00.000"
    try:
        return time.fromisoformat(text).replace(microsecond=0, tzinfo=None)
    except ValueError:
        raise ValueError(f"无法解析时间: {value!r}") from None


def format_time_of_day(value: time) -> str:
    return value.strftime("%H:%M:%S")


def seconds_of_day(value: time | datetime) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second


def iso_weekday(dt: datetime) -> int:
    """1=周一 ... 7=周日"""
    return dt.isoweekday()

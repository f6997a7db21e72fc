"""
时间工具：统一使用不带时区的UTC时间存储，按工作时区划分自然日
"""
import datetime
from typing import Callable, Tuple

import pytz

Clock = Callable[[], datetime.datetime]


def utcnow() -> datetime.datetime:
    """当前UTC时间（naive）"""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def day_window(now: datetime.datetime, tz_name: str) -> Tuple[datetime.datetime, datetime.datetime]:
    """
    计算 now 所在自然日的时间窗口 [当地零点, 次日零点)

    Args:
        now: UTC时间（naive）
        tz_name: 工作时区，例如 Asia/Shanghai

    Returns:
        Tuple[datetime, datetime]: 以UTC（naive）表示的起止时间
    """
    tz = pytz.timezone(tz_name)
    local_now = pytz.utc.localize(now).astimezone(tz)
    start = tz.localize(datetime.datetime(local_now.year, local_now.month, local_now.day))
    # 跨夏令时的日期长度不一定是24小时，因此单独本地化次日零点
    next_day = local_now.date() + datetime.timedelta(days=1)
    end = tz.localize(datetime.datetime(next_day.year, next_day.month, next_day.day))
    return (
        start.astimezone(pytz.utc).replace(tzinfo=None),
        end.astimezone(pytz.utc).replace(tzinfo=None),
    )


def epoch_seconds(dt: datetime.datetime) -> float:
    """naive UTC时间转换为Unix时间戳"""
    return dt.replace(tzinfo=datetime.timezone.utc).timestamp()


def from_epoch_seconds(value: float) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(value, datetime.timezone.utc).replace(tzinfo=None)

import datetime

from face_attendance.config import Config
from face_attendance.utils.clock import day_window, epoch_seconds, from_epoch_seconds


def test_get_settings_lists_public_values():
    settings = Config.get_settings()
    assert settings["API_V1_STR"] == "/api/v1"
    assert settings["FACE_DISTANCE_THRESHOLD"] == 0.4
    assert "get_settings" not in settings
    assert not any(key.startswith("_") for key in settings)


def test_day_window_in_utc():
    start, end = day_window(datetime.datetime(2024, 3, 4, 23, 59, 59), "UTC")
    assert start == datetime.datetime(2024, 3, 4)
    assert end == datetime.datetime(2024, 3, 5)


def test_day_window_follows_local_midnight():
    # 上海时间 2024-03-05 01:00
    start, end = day_window(datetime.datetime(2024, 3, 4, 17, 0), "Asia/Shanghai")
    assert start == datetime.datetime(2024, 3, 4, 16, 0)
    assert end == datetime.datetime(2024, 3, 5, 16, 0)


def test_day_window_across_dst_change():
    # 纽约 2024-03-10 夏令时开始，当天只有23小时
    start, end = day_window(datetime.datetime(2024, 3, 10, 12, 0), "America/New_York")
    assert end - start == datetime.timedelta(hours=23)


def test_epoch_round_trip():
    moment = datetime.datetime(2024, 3, 4, 9, 0, 0)
    assert from_epoch_seconds(epoch_seconds(moment)) == moment

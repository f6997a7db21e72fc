import datetime
import os
import threading

import pytest

from face_attendance.exceptions import (
    NotFoundError,
    PersistenceError,
    RateLimitedError,
    UpstreamError,
    ValidationError
)
from face_attendance.models.attendance import AttendanceEvent, ENTRY, EXIT
from face_attendance.utils.locks import KeyedLock
from conftest import make_descriptor, make_image

FACE = make_descriptor()


@pytest.fixture
def service(container):
    return container.attendance_service


@pytest.fixture
def alice(person_factory):
    return person_factory(name="Alice", descriptors=[make_descriptor(0, 0.1)])


def check_in(service, db, embedder, image_bytes):
    return service.check_in(db, image_bytes=image_bytes, embedder=embedder, ip_address="10.0.0.1")


@pytest.fixture
def alice_image(embedder, alice):
    # 与 Alice 的样本距离为 0.1
    return embedder.register(make_image(1), FACE)


class TestDetermineType:
    def test_first_event_is_entry(self, db, service, alice):
        assert service.determine_type(db, alice.id) == ENTRY

    def test_types_alternate(self, db, service, clock, alice):
        assert service.record(db, alice.id, 0.9).type == ENTRY
        clock.advance(minutes=10)
        assert service.record(db, alice.id, 0.9).type == EXIT
        clock.advance(minutes=10)
        assert service.record(db, alice.id, 0.9).type == ENTRY

    def test_new_day_starts_with_entry(self, db, service, clock, alice):
        assert service.record(db, alice.id, 0.9).type == ENTRY
        # 前一天没有 EXIT，第二天仍然从 ENTRY 开始
        clock.now = datetime.datetime(2024, 3, 5, 8, 0, 0)
        assert service.determine_type(db, alice.id) == ENTRY
        assert service.record(db, alice.id, 0.9).type == ENTRY

    def test_type_recovered_from_store_when_cache_is_empty(self, db, service, container, clock, alice):
        service.record(db, alice.id, 0.9)
        container.cache_backend.clear()
        clock.advance(minutes=10)
        assert service.determine_type(db, alice.id) == EXIT

    def test_type_recovered_after_marker_expires(self, db, service, clock, alice):
        service.record(db, alice.id, 0.9)
        clock.advance(hours=2)
        assert service.determine_type(db, alice.id) == EXIT

    def test_workday_timezone_defines_day_boundary(self, db, service, clock, alice):
        service.tz_name = "Asia/Shanghai"
        # 上海时间 2024-03-04 23:30
        clock.now = datetime.datetime(2024, 3, 4, 15, 30)
        assert service.record(db, alice.id, 0.9).type == ENTRY
        # 上海时间 2024-03-05 00:10，已经是新的一天
        clock.now = datetime.datetime(2024, 3, 4, 16, 10)
        assert service.record(db, alice.id, 0.9).type == ENTRY


class TestSuppression:
    def test_repeat_within_interval_is_rejected(self, db, service, clock, alice):
        service.record(db, alice.id, 0.9)
        clock.advance(seconds=120)

        with pytest.raises(RateLimitedError) as exc_info:
            service.record(db, alice.id, 0.9)

        assert exc_info.value.retry_after_seconds == pytest.approx(180)
        assert db.query(AttendanceEvent).count() == 1

    def test_allowed_once_interval_elapsed(self, db, service, clock, alice):
        service.record(db, alice.id, 0.9)
        clock.advance(seconds=300)
        assert service.record(db, alice.id, 0.9).type == EXIT

    def test_suppression_uses_store_when_cache_is_empty(self, db, service, container, clock, alice):
        service.record(db, alice.id, 0.9)
        container.cache_backend.clear()
        clock.advance(seconds=60)
        with pytest.raises(RateLimitedError):
            service.record(db, alice.id, 0.9)

    def test_persons_are_suppressed_independently(self, db, service, person_factory, alice):
        bob = person_factory(name="Bob", descriptors=[make_descriptor(5, 0.9)])
        service.record(db, alice.id, 0.9)
        assert service.record(db, bob.id, 0.9).type == ENTRY


class TestRecord:
    def test_store_failure_does_not_touch_marker(self, db, service, container, monkeypatch, alice):
        def fail(*args, **kwargs):
            raise PersistenceError("写入失败")

        monkeypatch.setattr(container.attendance_repository, "create", fail)
        with pytest.raises(PersistenceError):
            service.record(db, alice.id, 0.9)

        assert container.marker_cache.peek(alice.id) is None
        assert db.query(AttendanceEvent).count() == 0

    def test_marker_written_after_store(self, db, service, container, alice):
        event = service.record(db, alice.id, 0.9)
        marker = container.marker_cache.peek(alice.id)
        assert marker.last_type == ENTRY
        assert marker.timestamp == event.timestamp

    def test_image_is_saved(self, db, service, container, alice):
        event = service.record(db, alice.id, 0.9, image_bytes=b"jpeg-bytes")
        assert event.image_url.startswith(f"attendance/{alice.id}_ENTRY_")
        assert os.path.exists(os.path.join(container.config.UPLOAD_DIR, event.image_url))


class TestCheckIn:
    def test_recognised_person_is_checked_in(self, db, service, embedder, alice, alice_image):
        result = check_in(service, db, embedder, alice_image)

        assert result.person.id == alice.id
        assert result.type == ENTRY
        assert result.confidence == pytest.approx(0.9)
        assert result.message == "欢迎，Alice！"
        assert result.event.ip_address == "10.0.0.1"

    def test_exit_message(self, db, service, embedder, clock, alice, alice_image):
        check_in(service, db, embedder, alice_image)
        clock.advance(minutes=6)
        result = check_in(service, db, embedder, alice_image)
        assert result.type == EXIT
        assert result.message == "再见，Alice！"

    def test_no_face_is_validation_error(self, db, service, embedder, alice):
        with pytest.raises(ValidationError):
            check_in(service, db, embedder, make_image(99))

    def test_unknown_face_is_not_found(self, db, service, embedder, alice):
        image = embedder.register(make_image(2), make_descriptor(10, 0.8))
        with pytest.raises(NotFoundError):
            check_in(service, db, embedder, image)
        assert db.query(AttendanceEvent).count() == 0

    def test_deactivated_person_is_not_found(self, db, service, container, embedder, alice, alice_image):
        container.person_service.set_active(db, alice.id, False)
        with pytest.raises(NotFoundError):
            check_in(service, db, embedder, alice_image)

    def test_ambiguous_face_is_not_found(self, db, service, embedder, person_factory, alice, alice_image):
        person_factory(name="Twin", descriptors=[make_descriptor(1, 0.1)])
        with pytest.raises(NotFoundError):
            check_in(service, db, embedder, alice_image)

    def test_embedder_failure_is_upstream_error(self, db, service, alice):
        class BrokenEmbedder:
            def extract(self, image_bytes):
                raise RuntimeError("model crashed")

        with pytest.raises(UpstreamError):
            check_in(service, db, BrokenEmbedder(), make_image(1))


class TestReadModels:
    def test_history_is_paged_newest_first(self, db, service, clock, alice):
        for _ in range(5):
            service.record(db, alice.id, 0.9)
            clock.advance(minutes=10)

        items, total, pages = service.history(db, person_id=alice.id, page=1, limit=2)
        assert total == 5
        assert pages == 3
        assert items[0].timestamp > items[1].timestamp

        items, _, _ = service.history(db, person_id=alice.id, page=3, limit=2)
        assert len(items) == 1

    def test_history_rejects_inverted_range(self, db, service):
        start = datetime.datetime(2024, 3, 5)
        with pytest.raises(ValidationError):
            service.history(db, start=start, end=start - datetime.timedelta(days=1))

    def test_person_status(self, db, service, clock, alice):
        assert service.person_status(db, alice.id)["present"] is False
        service.record(db, alice.id, 0.9)
        status = service.person_status(db, alice.id)
        assert status["present"] is True
        assert status["nextType"] == EXIT

    def test_stats_average_hours(self, db, service, clock, person_factory, alice):
        person_factory(name="Idle")
        service.record(db, alice.id, 0.9)
        clock.advance(hours=8)
        service.record(db, alice.id, 0.9)

        stats = service.stats(db)
        assert stats.total_persons == 2
        assert stats.present_today == 1
        assert stats.total_entries == 1
        assert stats.total_exits == 1
        assert stats.avg_attendance_hours == pytest.approx(8.0)


class TestAdministration:
    def test_correct_logs_original_values(self, db, service, container, person_factory, alice):
        admin = person_factory(name="Admin", role="admin")
        event = service.record(db, alice.id, 0.9)
        original_timestamp = event.timestamp

        event, correction = service.correct(db, event.id, corrected_by=admin.id, reason="忘记打卡", new_type=EXIT)

        assert event.type == EXIT
        assert correction.original_type == ENTRY
        assert correction.original_timestamp == original_timestamp
        assert correction.new_type == EXIT
        assert container.marker_cache.peek(alice.id) is None
        assert len(container.attendance_repository.corrections_for(db, event.id)) == 1

    def test_correct_requires_change(self, db, service, alice):
        event = service.record(db, alice.id, 0.9)
        with pytest.raises(ValidationError):
            service.correct(db, event.id, corrected_by=1, reason="x")

    def test_correct_unknown_event(self, db, service):
        with pytest.raises(NotFoundError):
            service.correct(db, 404, corrected_by=1, reason="x", new_type=EXIT)

    def test_delete_event_resets_next_type(self, db, service, clock, alice):
        event = service.record(db, alice.id, 0.9, image_bytes=b"jpeg")
        service.delete_event(db, event.id)

        clock.advance(seconds=1)
        assert service.record(db, alice.id, 0.9).type == ENTRY
        with pytest.raises(NotFoundError):
            service.delete_event(db, event.id)

    def test_cleanup_old_images(self, db, service, container, clock, alice):
        event = service.record(db, alice.id, 0.9, image_bytes=b"jpeg")
        path = os.path.join(container.config.UPLOAD_DIR, event.image_url)

        clock.advance(days=31)
        assert service.cleanup_old_images(db, days_old=30) == 1
        assert not os.path.exists(path)
        db.refresh(event)
        assert event.image_url is None


def test_keyed_lock_serialises_same_key():
    lock = KeyedLock()
    inside = []
    overlaps = []

    def worker():
        with lock.hold("p1"):
            inside.append(1)
            if len(inside) > 1:
                overlaps.append(1)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []
    assert len(lock) == 0


def test_concurrent_records_store_single_event(container, alice):
    workers = 8
    barrier = threading.Barrier(workers)
    outcomes = []

    def worker():
        db = container.new_session()
        try:
            barrier.wait()
            try:
                event = container.attendance_service.record(db, alice.id, 0.9)
                outcomes.append(("ok", event.type))
            except RateLimitedError:
                outcomes.append(("limited", None))
        finally:
            db.close()

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes, key=lambda item: item[0]) == [("limited", None)] * (workers - 1) + [("ok", ENTRY)]

    db = container.new_session()
    try:
        assert db.query(AttendanceEvent).filter(AttendanceEvent.person_id == alice.id).count() == 1
    finally:
        db.close()

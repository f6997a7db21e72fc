import pytest

from face_attendance.cache import TTLCacheBackend
from face_attendance.container import ServiceContainer
from face_attendance.exceptions import ValidationError
from face_attendance.services.match_engine import (
    find_best_match,
    euclidean_distance,
    confidence_from_distance,
    validate_descriptor
)
from face_attendance.utils.clock import epoch_seconds
from conftest import make_descriptor

ZERO = make_descriptor()


def test_confidence_is_one_minus_distance():
    gallery = {7: [make_descriptor(0, 0.35)]}
    result = find_best_match(ZERO, gallery, threshold=0.5)
    assert result is not None
    assert result.person_id == 7
    assert result.distance == pytest.approx(0.35)
    assert result.confidence == pytest.approx(0.65)


def test_distance_equal_to_threshold_is_rejected():
    gallery = {1: [make_descriptor(0, 0.4)]}
    assert find_best_match(ZERO, gallery, threshold=0.4) is None


def test_distance_above_threshold_is_rejected():
    gallery = {1: [make_descriptor(0, 0.5)]}
    assert find_best_match(ZERO, gallery, threshold=0.4) is None


def test_person_distance_is_minimum_over_samples():
    gallery = {
        1: [make_descriptor(0, 0.9), make_descriptor(1, 0.1)],
        2: [make_descriptor(2, 0.2)],
    }
    result = find_best_match(ZERO, gallery, threshold=0.4)
    assert result.person_id == 1
    assert result.distance == pytest.approx(0.1)


def test_inactive_person_is_never_matched():
    gallery = {
        1: [make_descriptor(0, 0.05)],
        2: [make_descriptor(1, 0.3)],
    }
    result = find_best_match(ZERO, gallery, threshold=0.4, is_active=lambda pid: pid != 1)
    assert result.person_id == 2

    assert find_best_match(ZERO, {1: [make_descriptor(0, 0.05)]}, 0.4, is_active=lambda pid: False) is None


def test_exact_tie_is_rejected():
    gallery = {
        1: [make_descriptor(0, 0.2)],
        2: [make_descriptor(1, 0.2)],
    }
    assert find_best_match(ZERO, gallery, threshold=0.4) is None


def test_gap_below_tie_margin_is_rejected():
    gallery = {
        1: [make_descriptor(0, 0.200)],
        2: [make_descriptor(1, 0.205)],
    }
    assert find_best_match(ZERO, gallery, threshold=0.4, tie_margin=0.01) is None
    result = find_best_match(ZERO, gallery, threshold=0.4, tie_margin=0.001)
    assert result.person_id == 1


def test_runner_up_outside_threshold_does_not_cause_tie():
    gallery = {
        1: [make_descriptor(0, 0.39)],
        2: [make_descriptor(1, 0.395)],
    }
    assert find_best_match(ZERO, gallery, threshold=0.392, tie_margin=0.01).person_id == 1


def test_empty_gallery_returns_none():
    assert find_best_match(ZERO, {}, threshold=0.4) is None


def test_malformed_gallery_entry_is_skipped():
    gallery = {
        1: [[0.1, 0.2]],
        2: [make_descriptor(0, 0.1)],
    }
    assert find_best_match(ZERO, gallery, threshold=0.4).person_id == 2


@pytest.mark.parametrize("descriptor", [
    [0.0] * 127,
    [0.0] * 129,
    [],
    [float("nan")] + [0.0] * 127,
    ["a"] * 128,
])
def test_invalid_descriptor_is_rejected(descriptor):
    with pytest.raises(ValidationError):
        validate_descriptor(descriptor)
    with pytest.raises(ValidationError):
        find_best_match(descriptor, {1: [ZERO]}, threshold=0.4)


def test_euclidean_distance():
    assert euclidean_distance(ZERO, make_descriptor(3, 0.25)) == pytest.approx(0.25)
    with pytest.raises(ValidationError):
        euclidean_distance(ZERO, [0.0] * 3)


def test_confidence_never_negative():
    assert confidence_from_distance(1.5) == 0.0


class TestMatchEngine:
    def test_identify_rebuilds_gallery_when_cache_is_cold(self, db, container, person_factory):
        person = person_factory(descriptors=[make_descriptor(0, 0.1)])
        container.cache_backend.clear()
        assert not container.descriptor_cache.is_complete()

        result = container.match_engine.identify(db, ZERO)

        assert result.person_id == person.id
        assert container.descriptor_cache.is_complete()
        assert str(person.id) in container.descriptor_cache.entries()

    def test_partial_cache_still_triggers_full_rebuild(self, db, container, person_factory):
        first = person_factory(descriptors=[make_descriptor(0, 0.1)])
        container.cache_backend.clear()
        # 重启后只单独写入了第二个人员
        person_factory(descriptors=[make_descriptor(1, 0.9)])
        assert not container.descriptor_cache.is_complete()

        result = container.match_engine.identify(db, ZERO)

        assert result.person_id == first.id

    def test_deactivated_person_in_cache_is_not_matched(self, db, container, person_factory):
        person = person_factory(descriptors=[make_descriptor(0, 0.1)])
        container.match_engine.rebuild_gallery(db)
        # 绕过服务直接修改存储，缓存中仍保留该人员的描述符
        person.is_active = False
        db.commit()

        assert str(person.id) in container.descriptor_cache.entries()
        assert container.match_engine.identify(db, ZERO) is None

    def test_new_descriptors_visible_without_rebuild(self, db, container, person_factory):
        container.match_engine.rebuild_gallery(db)
        person = person_factory(descriptors=[make_descriptor(0, 0.2)])

        result = container.match_engine.identify(db, ZERO)
        assert result.person_id == person.id

    def test_cleared_descriptors_are_removed_from_cache(self, db, container, person_factory):
        person = person_factory(descriptors=[make_descriptor(0, 0.2)])
        container.match_engine.rebuild_gallery(db)
        container.person_service.clear_descriptors(db, person.id)

        assert container.match_engine.identify(db, ZERO) is None
        assert container.match_engine.descriptors_for(db, person.id) == []

    def test_gallery_rebuilt_when_lru_evicts_descriptors(self, test_config, clock, embedder, engine):
        backend = TTLCacheBackend(capacity=6, timer=lambda: epoch_seconds(clock()))
        small = ServiceContainer(config=test_config, clock=clock, cache_backend=backend, embedder=embedder, engine=engine)
        db = small.new_session()
        try:
            person = small.person_service.register(db, name="Alice", email="alice@example.com", password="secret123")
            small.person_service.add_descriptors(db, person.id, [make_descriptor(0, 0.1)])
            small.match_engine.rebuild_gallery(db)

            # 会话缓存挤占容量，频繁读取的完整标记留在缓存中，描述符条目被淘汰
            for _ in range(6):
                small.session_manager.issue(db, person)
                small.descriptor_cache.is_complete()
            assert small.descriptor_cache.get_all() == {}
            assert not small.descriptor_cache.is_complete()

            result = small.match_engine.identify(db, ZERO)

            assert result is not None
            assert result.person_id == person.id
            assert small.descriptor_cache.is_complete()
        finally:
            db.close()

import threading

import pytest

from carrymark.config import EngineConfig
from carrymark.core.entities import CompositeRecord, NaturalKey, Weights
from carrymark.core.enums import AuditAction, RecomputeOutcome
from carrymark.core.exceptions import (
    ConcurrentUpdateConflict, DataUnavailable, PersistenceError, RecordNotFound, ValidationError
)
from carrymark.core.interfaces import AttendanceSource
from carrymark.persistence import InMemoryCompositeStore
from carrymark.services import AuditTrail, CarryMarkService, ConcurrencyManager


def test_scenario_a_recompute(service, seed, key):
    seed.assessments({"US1": 80, "US2": 90})
    seed.attendance(present=16, late=2, absent=2)

    result = service.recompute(key)

    assert result.outcome is RecomputeOutcome.COMPUTED
    record = result.record
    assert record.assessment_average == pytest.approx(85.0)
    assert record.assignment_average is None
    assert record.attendance_percentage == pytest.approx(90.0)
    assert record.final_score == 85.63
    assert record.grade == "A"
    assert record.weights == Weights(70, 20, 10)
    assert record.assessment_breakdown == {"US1": 80.0, "US2": 90.0}
    assert record.version == 1


def test_scenario_b_no_data_writes_nothing(service, store, key):
    result = service.recompute(key)

    assert result.outcome is RecomputeOutcome.NO_DATA
    assert not result.has_record
    assert store.count() == 0
    assert service.get(key) is None


def test_scenario_c_adjustment_survives_recompute(service, seed, key):
    seed.assessments({"US1": 60})
    seed.assignment(60)
    seed.attendance(present=3, absent=2)

    assert service.recompute(key).record.final_score == 60.0

    adjusted = service.adjust(key, {"final_score": 65})
    assert adjusted.final_score == 65.0
    assert adjusted.manually_adjusted_fields == frozenset({"final_score"})

    record = service.recompute(key).record
    assert record.final_score == 65.0
    assert record.grade == "B"
    assert record.is_adjusted("final_score")


def test_recompute_is_idempotent(service, seed, key):
    seed.assessments({"US1": 72, "UASA": 64})
    seed.assignment(18, max_score=20)
    seed.attendance(present=9, late=1)

    first = service.recompute(key).record
    second = service.recompute(key).record

    assert second.components() == first.components()
    assert second.final_score == first.final_score
    assert second.grade == first.grade
    assert second.version == first.version + 1
    assert second.created_at == first.created_at


def test_recompute_replaces_computed_fields_when_inputs_change(service, seed, key):
    seed.assessments({"US1": 50})
    first = service.recompute(key).record

    seed.assessments({"US2": 100})
    second = service.recompute(key).record

    assert first.assessment_average == pytest.approx(50.0)
    assert second.assessment_average == pytest.approx(75.0)


def test_recompute_keeps_unadjusted_fields_fresh(service, seed, key):
    seed.assessments({"US1": 40})
    seed.attendance(present=4)
    service.recompute(key)
    service.adjust(key, {"assessment_average": 99.0})

    seed.attendance(absent=4)
    record = service.recompute(key).record

    assert record.assessment_average == 99.0
    assert record.attendance_percentage == pytest.approx(50.0)


def test_adjusted_grade_is_preserved(service, seed, key):
    seed.assessments({"US1": 30})
    service.recompute(key)
    service.adjust(key, {"grade": "C"})

    record = service.recompute(key).record

    assert record.grade == "C"
    assert record.final_score is not None


def test_adjust_creates_record_when_missing(service, key):
    record = service.adjust(key, {"final_score": 77.777})

    assert record.version == 1
    assert record.final_score == 77.78
    assert record.weights == service.config.weights
    assert record.assessment_average is None


def test_adjust_without_create_raises_record_not_found(service, store, key):
    with pytest.raises(RecordNotFound):
        service.adjust(key, {"final_score": 50}, create_if_missing=False)

    assert store.count() == 0


@pytest.mark.parametrize("fields", [
    {},
    {"weights": 10},
    {"final_score": 101},
    {"final_score": -0.5},
    {"attendance_percentage": "high"},
    {"assessment_average": True},
    {"grade": ""},
])
def test_adjust_rejects_invalid_fields(service, key, fields):
    with pytest.raises(ValidationError):
        service.adjust(key, fields)


def test_adjust_does_not_rerun_reducer(service, seed, key):
    seed.assessments({"US1": 90})
    service.recompute(key)

    record = service.adjust(key, {"assessment_average": 10.0})

    assert record.assessment_average == 10.0
    assert record.final_score == 78.75


def test_recompute_with_prior_record_and_no_data_clears_values(service, key):
    service.adjust(key, {"grade": "A"})

    result = service.recompute(key)

    assert result.outcome is RecomputeOutcome.COMPUTED
    assert result.record.final_score is None
    assert result.record.assessment_average is None
    assert result.record.attendance_percentage == 0.0
    assert result.record.grade == "A"


def test_clear_adjustments_lets_recompute_replace_values(service, seed, key):
    seed.assessments({"US1": 60})
    service.recompute(key)
    service.adjust(key, {"final_score": 95, "grade": "A"})

    cleared = service.clear_adjustments(key, ["final_score"])
    assert cleared.manually_adjusted_fields == frozenset({"grade"})
    assert cleared.final_score == 95.0

    record = service.recompute(key).record
    assert record.final_score == 52.5
    assert record.grade == "A"

    service.clear_adjustments(key)
    assert service.recompute(key).record.grade == "C"


def test_clear_adjustments_requires_record(service, key):
    with pytest.raises(RecordNotFound):
        service.clear_adjustments(key)


def test_clear_adjustments_rejects_unknown_field(service, key):
    service.adjust(key, {"grade": "B"})

    with pytest.raises(ValidationError):
        service.clear_adjustments(key, ["version"])


class _BrokenAttendance(AttendanceSource):
    def list_attendance(self, key):
        raise TimeoutError("attendance service timed out")


def test_data_unavailable_aborts_without_write(store, records, seed, key):
    seed.assessments({"US1": 70})
    service = CarryMarkService(store, records, records, _BrokenAttendance())

    with pytest.raises(DataUnavailable):
        service.recompute(key)

    assert store.count() == 0


def test_data_unavailable_leaves_prior_record_untouched(store, records, seed, key):
    seed.assessments({"US1": 70})
    healthy = CarryMarkService(store, records, records, records)
    before = healthy.recompute(key).record

    broken = CarryMarkService(store, records, records, _BrokenAttendance())
    with pytest.raises(DataUnavailable):
        broken.recompute(key)

    after = store.get(key)
    assert after.version == before.version
    assert after.final_score == before.final_score


class _RacingStore(InMemoryCompositeStore):
    """Loses the first ``conflicts`` compare-and-set calls."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts
        self.attempts = 0

    def compare_and_set(self, record, expected_version):
        self.attempts += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConcurrentUpdateConflict("simulated race", error_code="VERSION_CONFLICT")
        return super().compare_and_set(record, expected_version)


def test_conflict_is_retried(records, seed, key):
    seed.assessments({"US1": 70})
    store = _RacingStore(conflicts=2)
    service = CarryMarkService(store, records, records, records,
                               config=EngineConfig(max_retries=3, retry_backoff=0.0))

    result = service.recompute(key)

    assert result.record.final_score is not None
    assert store.attempts == 3
    assert service.get_statistics()["concurrency"]["retries"] == 2


def test_conflict_surfaces_after_bounded_retries(records, seed, key):
    seed.assessments({"US1": 70})
    store = _RacingStore(conflicts=10)
    service = CarryMarkService(store, records, records, records,
                               config=EngineConfig(max_retries=2, retry_backoff=0.0))

    with pytest.raises(ConcurrentUpdateConflict):
        service.recompute(key)

    assert store.attempts == 3
    assert store.count() == 0


def test_concurrent_writers_leave_one_record(service, store, seed, key):
    seed.assessments({"US1": 80})
    errors = []

    def work(i):
        try:
            if i % 2:
                service.recompute(key)
            else:
                service.adjust(key, {"assignment_average": float(i)})
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=work, args=(i,)) for i in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert store.count() == 1
    assert store.get(key).version == 16
    assert store.get(key).is_adjusted("assignment_average")


def test_reads_list_by_student_and_class(service, records, key):
    other = NaturalKey("S002", key.class_id, key.subject, key.term, key.academic_year)
    other_subject = NaturalKey(key.student_id, key.class_id, "Science", key.term, key.academic_year)
    for k in (key, other, other_subject):
        service.adjust(k, {"final_score": 50})

    assert [r.key for r in service.list_for_student("S001")] == [key, other_subject]
    assert [r.key for r in service.list_for_student("S001", subject="Science")] == [other_subject]
    assert [r.key for r in service.list_for_class("5A", subject="Mathematics")] == [key, other]


def test_writes_are_audited(service, audit_trail, seed, key):
    seed.assessments({"US1": 80})
    service.recompute(key, actor="scheduler")
    service.adjust(key, {"final_score": 81}, actor="teacher-1")
    service.clear_adjustments(key, actor="teacher-1")

    entries = audit_trail.entries(key.resource_id)

    assert [e.action for e in entries] == [
        AuditAction.RECOMPUTE.value, AuditAction.ADJUST.value,
        AuditAction.CLEAR_ADJUSTMENTS.value,
    ]
    assert entries[1].actor == "teacher-1"
    assert entries[1].data["fields"] == {"final_score": 81.0}
    assert audit_trail.verify()


def test_no_data_recompute_is_not_audited(service, audit_trail, key):
    service.recompute(key)

    assert audit_trail.entries() == []


def test_statistics_count_operations(service, seed, key):
    service.recompute(key)
    seed.assessments({"US1": 80})
    service.recompute(key)
    service.adjust(key, {"grade": "A"})

    stats = service.get_statistics()

    assert stats["no_data"] == 1
    assert stats["recomputed"] == 1
    assert stats["adjusted"] == 1
    assert stats["concurrency"]["locks_held"] == 0


def test_created_record_type(service, seed, key):
    seed.assessments({"US1": 80})

    assert isinstance(service.recompute(key).record, CompositeRecord)


def test_fresh_service_has_no_lock_activity(store, records):
    service = CarryMarkService(store, records, records, records,
                               concurrency_manager=ConcurrencyManager())

    assert service.get_statistics()["concurrency"]["locks_acquired"] == 0


class _OfflineAuditTrail(AuditTrail):
    def record(self, action, resource_id, actor, data):
        raise PersistenceError("audit database unavailable")


def test_audit_failure_does_not_fail_committed_write(store, records, seed, key):
    seed.assessments({"US1": 80})
    service = CarryMarkService(store, records, records, records,
                               config=EngineConfig(retry_backoff=0.0),
                               audit_trail=_OfflineAuditTrail())

    result = service.recompute(key)
    service.adjust(key, {"grade": "B"}, actor="teacher-1")

    assert result.outcome is RecomputeOutcome.COMPUTED
    assert store.get(key).grade == "B"
    assert service.get_statistics()["audit_failures"] == 2

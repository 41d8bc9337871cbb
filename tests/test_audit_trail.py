import pytest

from carrymark.core.audit import GENESIS_HASH
from carrymark.core.enums import AuditAction
from carrymark.core.exceptions import PersistenceError
from carrymark.persistence import AuditRepository, SQLiteDatabase
from carrymark.services import AuditTrail


def test_entries_are_chained():
    trail = AuditTrail()

    first = trail.record(AuditAction.RECOMPUTE, "carry_mark:a", None, {"final_score": 70.0})
    second = trail.record(AuditAction.ADJUST, "carry_mark:a", "teacher", {"fields": {"grade": "A"}})

    assert first.prev_hash == GENESIS_HASH
    assert second.prev_hash == first.hash
    assert trail.verify()


def test_tampering_breaks_verification():
    trail = AuditTrail()
    trail.record(AuditAction.RECOMPUTE, "carry_mark:a", None, {"final_score": 70.0})
    entry = trail.record(AuditAction.ADJUST, "carry_mark:a", "teacher", {"fields": {"final_score": 90.0}})

    entry.data["fields"]["final_score"] = 99.0

    assert not trail.verify()


def test_entries_filter_by_resource():
    trail = AuditTrail()
    trail.record(AuditAction.RECOMPUTE, "carry_mark:a", None, {})
    trail.record(AuditAction.RECOMPUTE, "carry_mark:b", None, {})

    assert [e.resource_id for e in trail.entries("carry_mark:b")] == ["carry_mark:b"]
    assert len(trail.entries()) == 2


def test_persisted_trail_continues_chain(tmp_path):
    database = SQLiteDatabase(str(tmp_path / "audit.db"))
    trail = AuditTrail(AuditRepository(database))
    last = trail.record(AuditAction.RECOMPUTE, "carry_mark:a", "scheduler", {"version": 1})

    reopened = AuditTrail(AuditRepository(database))
    entry = reopened.record(AuditAction.ADJUST, "carry_mark:a", "teacher", {"version": 2})

    assert entry.prev_hash == last.hash
    stored = reopened.entries()
    assert [e.action for e in stored] == ["recompute", "adjust"]
    assert stored[0].hash == last.hash
    assert reopened.verify()


def test_persisted_trail_keeps_no_memory_copy(tmp_path):
    trail = AuditTrail(AuditRepository(SQLiteDatabase(str(tmp_path / "audit.db"))))

    for version in range(3):
        trail.record(AuditAction.RECOMPUTE, "carry_mark:a", None, {"version": version})

    assert trail._entries == []
    assert len(trail.entries()) == 3


class _BrokenAuditRepository(AuditRepository):
    def append(self, entry):
        raise PersistenceError("audit table is locked")


def test_failed_append_keeps_chain_head(tmp_path):
    database = SQLiteDatabase(str(tmp_path / "audit.db"))
    trail = AuditTrail(AuditRepository(database))
    last = trail.record(AuditAction.RECOMPUTE, "carry_mark:a", None, {"version": 1})
    broken = AuditTrail(_BrokenAuditRepository(database))

    with pytest.raises(PersistenceError):
        broken.record(AuditAction.ADJUST, "carry_mark:a", "teacher", {"version": 2})

    assert broken._last_hash == last.hash
    assert broken.verify()

from datetime import time
from unittest.mock import MagicMock

import pytest

from attendance.errors import StorageError
from attendance.models import AttendanceRecord
from attendance.reconciler import AttendanceReconciler
from faces.face_matcher import MatchResult

from conftest import at


def reconciler_for(repository, mode="atomic"):
    return AttendanceReconciler(repository, late_cutoff=time(8, 30), escalation_threshold=3, mode=mode)


def match_for(person, distance=0.2):
    return MatchResult(person_id=person.id, distance=distance)


@pytest.mark.parametrize("moment, late", [
    (at(7, 59), False),
    (at(8, 29, 59), False),
    (at(8, 30, 0), False),
    (at(8, 30, 59), False),
    (at(8, 31, 0), True),
    (at(9, 0), True),
    (at(17, 45), True),
])
def test_is_late_uses_minute_resolution(repository, moment, late):
    assert reconciler_for(repository).is_late(moment) is late


def test_unknown_mode_is_rejected(repository):
    with pytest.raises(ValueError):
        AttendanceReconciler(repository, mode="sometimes")


def test_atomic_first_visit_creates_row(repository, alice):
    outcome = reconciler_for(repository).record_match(alice, match_for(alice, 0.2), at(8, 0))

    assert outcome.recorded and outcome.created
    assert outcome.record.late_count == 0
    assert outcome.record.confidence == pytest.approx(0.8)
    assert outcome.record.status == "present"
    assert len(repository.list_records()) == 1


def test_atomic_same_day_keeps_highest_confidence(repository, alice):
    reconciler = reconciler_for(repository)
    reconciler.record_match(alice, match_for(alice, 0.4), at(8, 0))
    better = reconciler.record_match(alice, match_for(alice, 0.1), at(8, 5))
    worse = reconciler.record_match(alice, match_for(alice, 0.5), at(8, 10))

    rows = repository.list_records()
    assert len(rows) == 1
    assert rows[0].confidence == pytest.approx(0.9)
    assert not better.created and not worse.created
    assert worse.record.confidence == pytest.approx(0.9)


def test_atomic_late_count_advances_once_per_day(repository, alice):
    reconciler = reconciler_for(repository)
    reconciler.record_match(alice, match_for(alice), at(8, 45))
    outcome = reconciler.record_match(alice, match_for(alice), at(9, 15))

    assert outcome.is_late
    assert repository.latest_counts(alice.id) == (1, 0)


def test_on_time_visit_carries_late_count(repository, alice):
    reconciler = reconciler_for(repository)
    reconciler.record_match(alice, match_for(alice), at(8, 45, day=1))
    outcome = reconciler.record_match(alice, match_for(alice), at(8, 0, day=2))

    assert not outcome.record.is_late
    assert outcome.record.late_count == 1


def test_late_comer_added_after_threshold(repository, alice):
    reconciler = reconciler_for(repository)
    outcomes = [reconciler.record_match(alice, match_for(alice), at(8, 45, day=d)) for d in range(1, 5)]

    assert [o.record.late_count for o in outcomes] == [1, 2, 3, 4]
    assert all(o.late_comer is None for o in outcomes[:3])
    assert outcomes[3].late_comer.total_late_count == 4

    roster = repository.list_late_comers()
    assert len(roster) == 1
    assert (roster[0].student_name, roster[0].student_class, roster[0].total_late_count) == ("Alice", "10A", 4)


def test_late_comer_count_updated_not_duplicated(repository, alice):
    reconciler = reconciler_for(repository)
    for day in range(1, 7):
        reconciler.record_match(alice, match_for(alice), at(8, 45, day=day))

    roster = repository.list_late_comers()
    assert len(roster) == 1
    assert roster[0].total_late_count == 6


def test_absent_count_is_carried_over(repository, alice):
    repository.insert_record(AttendanceRecord(
        student_id=alice.id, student_name="Alice", student_class="10A",
        confidence=0.7, late_count=2, absent_count=5, created_at=at(8, 0, day=1),
    ))
    outcome = reconciler_for(repository).record_match(alice, match_for(alice), at(8, 0, day=2))

    assert outcome.record.absent_count == 5
    assert outcome.record.late_count == 2


def test_reconcile_mode_collapses_same_day_rows(repository, alice):
    reconciler = reconciler_for(repository, mode="reconcile")
    reconciler.record_match(alice, match_for(alice, 0.3), at(8, 0))
    reconciler.record_match(alice, match_for(alice, 0.1), at(8, 1))
    last = reconciler.record_match(alice, match_for(alice, 0.5), at(8, 2))

    rows = repository.list_records()
    assert len(rows) == 1
    assert rows[0].confidence == pytest.approx(0.9)
    assert len(last.deleted_ids) == 1
    assert not last.created


def test_reconcile_mode_counts_every_late_detection(repository, alice):
    reconciler = reconciler_for(repository, mode="reconcile")
    reconciler.record_match(alice, match_for(alice, 0.3), at(8, 45))
    outcome = reconciler.record_match(alice, match_for(alice, 0.2), at(8, 46))

    assert outcome.record.late_count == 2
    rows = repository.list_records()
    assert len(rows) == 1
    assert rows[0].late_count == 2


def test_reconcile_mode_escalates(repository, alice):
    reconciler = reconciler_for(repository, mode="reconcile")
    for day in range(1, 5):
        reconciler.record_match(alice, match_for(alice), at(9, 0, day=day))

    assert repository.list_late_comers()[0].total_late_count == 4


def test_reconcile_day_keeps_best_row(repository, alice, bob):
    for confidence in (0.6, 0.9, 0.7):
        repository.insert_record(AttendanceRecord(
            student_id=alice.id, student_name="Alice", student_class="10A",
            confidence=confidence, created_at=at(8, 0),
        ))
    repository.insert_record(AttendanceRecord(
        student_id=bob.id, student_name="Bob", student_class="10B",
        confidence=0.5, created_at=at(8, 0),
    ))

    deleted = reconciler_for(repository, mode="reconcile").reconcile_day(alice.id, at(8, 0).date())

    assert len(deleted) == 2
    remaining = repository.records_for_day(alice.id, at(8, 0).date())
    assert [r.confidence for r in remaining] == [pytest.approx(0.9)]
    assert len(repository.records_for_day(bob.id, at(8, 0).date())) == 1


def test_storage_failure_is_reported_not_raised(alice):
    repository = MagicMock()
    repository.record_attendance_atomic.side_effect = StorageError("database is locked")

    outcome = reconciler_for(repository).record_match(alice, match_for(alice), at(8, 45))

    assert not outcome.recorded
    assert outcome.is_late
    assert "locked" in outcome.error
    repository.upsert_late_comer.assert_not_called()

"""
Lateness and same-day reconciliation of attendance rows.

Two recording modes:
- atomic: a single serialized repository call keeps one row per person per
  day (highest confidence wins) and advances the late count once per day.
- reconcile: insert a row for every accepted detection, then delete all but
  the highest-confidence row of the day.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import List, Optional

from utils.logger import logger as attendance_log
from faces.face_matcher import MatchResult
from .errors import StorageError
from .models import AttendanceRecord, LateComer, Person
from .repository import AttendanceRepository

logger = logging.getLogger(__name__)

RECONCILE_MODES = ("atomic", "reconcile")


@dataclass
class AttendanceOutcome:
    """Result of recording one accepted match."""
    recorded: bool
    record: Optional[AttendanceRecord] = None
    created: bool = False
    is_late: bool = False
    late_comer: Optional[LateComer] = None
    deleted_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'recorded': self.recorded,
            'record': self.record.to_dict() if self.record else None,
            'created': self.created,
            'is_late': self.is_late,
            'late_comer': self.late_comer.to_dict() if self.late_comer else None,
            'deleted_ids': list(self.deleted_ids),
            'error': self.error,
        }


class AttendanceReconciler:
    """Turns accepted matches into attendance rows."""

    def __init__(self, repository: AttendanceRepository,
                 late_cutoff: Optional[time] = None,
                 escalation_threshold: Optional[int] = None,
                 mode: Optional[str] = None):
        from utils.config import config

        self.repository = repository
        self.late_cutoff = late_cutoff or config.attendance.late_cutoff
        self.escalation_threshold = (escalation_threshold if escalation_threshold is not None
                                     else config.attendance.late_escalation_threshold)
        self.mode = mode or config.attendance.reconcile_mode
        if self.mode not in RECONCILE_MODES:
            raise ValueError(f"Unknown reconcile mode: {self.mode}")

    def is_late(self, now: datetime) -> bool:
        """True when the hour and minute of ``now`` are past the cutoff.

        Seconds are ignored: with an 08:30 cutoff, 08:30:59 is on time.
        """
        return (now.hour, now.minute) > (self.late_cutoff.hour, self.late_cutoff.minute)

    def record_match(self, person: Person, match: MatchResult,
                     now: Optional[datetime] = None) -> AttendanceOutcome:
        """Record an accepted match for ``person``.

        Storage failures are logged and reported with ``recorded=False``;
        nothing is retried or rolled back.
        """
        now = now or datetime.now()
        is_late = self.is_late(now)
        try:
            if self.mode == "atomic":
                outcome = self._record_atomic(person, match.confidence, is_late, now)
            else:
                outcome = self._record_and_reconcile(person, match.confidence, is_late, now)
        except StorageError as e:
            logger.error(f"Failed to record attendance for {person.name}: {e}")
            return AttendanceOutcome(recorded=False, is_late=is_late, error=str(e))

        attendance_log.log_attendance_event(
            person.name,
            event_type="LATE" if is_late else "PRESENT",
            details={
                'class': person.student_class,
                'late_count': outcome.record.late_count if outcome.record else 0,
                'new_row': outcome.created,
            },
            confidence=match.confidence,
        )
        return outcome

    def _record_atomic(self, person: Person, confidence: float, is_late: bool,
                       now: datetime) -> AttendanceOutcome:
        record, created = self.repository.record_attendance_atomic(person, confidence, is_late, now)
        outcome = AttendanceOutcome(recorded=True, record=record, created=created, is_late=is_late)
        # The count only moves on the first row of the day
        if created:
            outcome.late_comer = self._escalate(person, record.late_count)
        return outcome

    def _record_and_reconcile(self, person: Person, confidence: float, is_late: bool,
                              now: datetime) -> AttendanceOutcome:
        late_count, absent_count = self.repository.latest_counts(person.id)
        if is_late:
            late_count += 1

        record = self.repository.insert_record(AttendanceRecord(
            student_id=person.id,
            student_name=person.name,
            student_class=person.student_class,
            confidence=confidence,
            is_late=is_late,
            late_count=late_count,
            absent_count=absent_count,
            created_at=now,
        ))
        outcome = AttendanceOutcome(recorded=True, record=record, created=True, is_late=is_late)
        outcome.deleted_ids = self.reconcile_day(person.id, now.date())
        if record.id in outcome.deleted_ids:
            outcome.created = False
        outcome.late_comer = self._escalate(person, late_count)
        return outcome

    def reconcile_day(self, student_id: str, day: date) -> List[str]:
        """Keep only the highest-confidence row of the day, returning deleted ids."""
        rows = self.repository.records_for_day(student_id, day)
        duplicates = [row.id for row in rows[1:] if row.id is not None]
        if duplicates:
            self.repository.delete_records(duplicates)
            logger.debug(f"Removed {len(duplicates)} duplicate rows for {student_id} on {day}")
        return duplicates

    def _escalate(self, person: Person, late_count: int) -> Optional[LateComer]:
        if late_count <= self.escalation_threshold:
            return None
        late_comer = self.repository.upsert_late_comer(person.name, person.student_class, late_count)
        logger.info(f"{person.name} ({person.student_class}) on late-comers list: {late_count} late arrivals")
        return late_comer

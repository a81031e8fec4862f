"""
Persistence contract shared by the SQLite and Supabase backends.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import AttendanceRecord, FaceCandidate, LateComer, Person


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Local [start, end) of a calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class AttendanceRepository(ABC):
    """Storage operations used by the reconciler, session and admin surfaces.

    Every backend failure is raised as ``StorageError``.
    """

    @abstractmethod
    def get_face_descriptors_for_recognition(self) -> List[FaceCandidate]:
        """Restricted projection: id and stored descriptor only."""

    @abstractmethod
    def get_student_basic_info(self, student_id: str) -> Optional[Person]:
        """Display-safe lookup of name and class, None when unknown."""

    @abstractmethod
    def register_person(self, name: str, student_class: str, descriptor: Sequence[float]) -> Person:
        """Store a new person with their face descriptor."""

    @abstractmethod
    def latest_counts(self, student_id: str) -> Tuple[int, int]:
        """(late_count, absent_count) of the person's most recent record, (0, 0) if none."""

    @abstractmethod
    def insert_record(self, record: AttendanceRecord) -> AttendanceRecord:
        """Insert one attendance row and return it with id and created_at."""

    @abstractmethod
    def records_for_day(self, student_id: str, day: date) -> List[AttendanceRecord]:
        """The person's rows created on ``day``, highest confidence first."""

    @abstractmethod
    def delete_records(self, ids: Iterable[str]) -> int:
        """Delete rows by id, returning the number removed."""

    @abstractmethod
    def get_late_comer(self, student_name: str, student_class: str) -> Optional[LateComer]:
        pass

    @abstractmethod
    def insert_late_comer(self, late_comer: LateComer) -> LateComer:
        pass

    @abstractmethod
    def update_late_comer(self, student_name: str, student_class: str, total_late_count: int):
        pass

    @abstractmethod
    def record_attendance_atomic(self, person: Person, confidence: float, is_late: bool,
                                 now: datetime) -> Tuple[AttendanceRecord, bool]:
        """Record a visit as one serialized operation.

        Keeps a single row per person per day: the first visit of the day
        inserts it (late count incremented when late), later visits only
        raise its confidence when higher.

        Returns:
            The day's row and whether it was created by this call.
        """

    @abstractmethod
    def list_records(self, limit: Optional[int] = 50) -> List[AttendanceRecord]:
        """Most recent records first."""

    @abstractmethod
    def list_late_comers(self) -> List[LateComer]:
        """Roster ordered by total_late_count, highest first."""

    @abstractmethod
    def clear_records(self) -> int:
        """Delete every attendance record."""

    def upsert_late_comer(self, student_name: str, student_class: str, total_late_count: int) -> LateComer:
        """Insert the roster entry, or update its count when it already exists."""
        existing = self.get_late_comer(student_name, student_class)
        if existing is None:
            return self.insert_late_comer(LateComer(
                student_name=student_name,
                student_class=student_class,
                total_late_count=total_late_count,
            ))
        self.update_late_comer(student_name, student_class, total_late_count)
        existing.total_late_count = total_late_count
        return existing

    def close(self):
        pass

"""
Supabase storage backend.

Recognition reads go through restricted RPCs so the client never selects
full student rows; see supabase/schema.sql for the matching database side.
"""
import logging
from datetime import date, datetime
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from supabase import Client, create_client

from faces.descriptor import serialize_descriptor
from .errors import StorageError
from .models import AttendanceRecord, FaceCandidate, LateComer, Person
from .repository import AttendanceRepository, day_bounds

logger = logging.getLogger(__name__)

NIL_UUID = "00000000-0000-0000-0000-000000000000"


def _aware(value: datetime) -> str:
    """ISO timestamp with the local offset attached."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


class SupabaseAttendanceRepository(AttendanceRepository):
    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_credentials(cls, url: str, key: str) -> "SupabaseAttendanceRepository":
        try:
            client = create_client(url, key)
        except Exception as e:
            raise StorageError(f"Cannot create Supabase client: {e}") from e
        logger.info(f"Connected to Supabase at {url}")
        return cls(client)

    def _execute(self, action: str, request: Callable[[], Any]) -> Any:
        try:
            response = request()
        except Exception as e:
            logger.error(f"Supabase error while trying to {action}: {e}")
            raise StorageError(f"Failed to {action}: {e}") from e
        return response.data

    # Persons

    def get_face_descriptors_for_recognition(self) -> List[FaceCandidate]:
        rows = self._execute(
            "load face descriptors",
            lambda: self.client.rpc('get_face_descriptors_for_recognition').execute(),
        )
        return [FaceCandidate.from_row(row) for row in rows or []]

    def get_student_basic_info(self, student_id: str) -> Optional[Person]:
        rows = self._execute(
            "load student info",
            lambda: self.client.rpc('get_student_basic_info', {'student_id': student_id}).execute(),
        )
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            return None
        row = dict(rows[0])
        row.setdefault('id', student_id)
        return Person.from_row(row)

    def register_person(self, name: str, student_class: str, descriptor: Sequence[float]) -> Person:
        descriptor_json = serialize_descriptor(descriptor)
        rows = self._execute(
            "register student",
            lambda: self.client.table('students').insert({
                'name': name,
                'class': student_class,
                'face_descriptor_json': descriptor_json,
            }).execute(),
        )
        if not rows:
            raise StorageError("Student insert returned no row")
        person = Person.from_row(rows[0])
        logger.info(f"Registered {name} ({student_class}) as {person.id}")
        return person

    # Attendance records

    def latest_counts(self, student_id: str) -> Tuple[int, int]:
        rows = self._execute(
            "load latest attendance counts",
            lambda: self.client.table('attendance_records')
            .select('late_count, absent_count')
            .eq('student_id', student_id)
            .order('created_at', desc=True)
            .limit(1)
            .execute(),
        )
        if not rows:
            return 0, 0
        return int(rows[0].get('late_count') or 0), int(rows[0].get('absent_count') or 0)

    def insert_record(self, record: AttendanceRecord) -> AttendanceRecord:
        row = record.to_row()
        if record.created_at is not None:
            row['created_at'] = _aware(record.created_at)
        rows = self._execute(
            "insert attendance record",
            lambda: self.client.table('attendance_records').insert(row).execute(),
        )
        if not rows:
            raise StorageError("Attendance insert returned no row")
        return AttendanceRecord.from_row(rows[0])

    def records_for_day(self, student_id: str, day: date) -> List[AttendanceRecord]:
        start, end = day_bounds(day)
        rows = self._execute(
            "load today's attendance",
            lambda: self.client.table('attendance_records')
            .select('*')
            .eq('student_id', student_id)
            .gte('created_at', _aware(start))
            .lt('created_at', _aware(end))
            .order('confidence', desc=True)
            .execute(),
        )
        return [AttendanceRecord.from_row(row) for row in rows or []]

    def delete_records(self, ids: Iterable[str]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        rows = self._execute(
            "delete duplicate records",
            lambda: self.client.table('attendance_records').delete().in_('id', ids).execute(),
        )
        return len(rows) if rows else len(ids)

    def record_attendance_atomic(self, person: Person, confidence: float, is_late: bool,
                                 now: datetime) -> Tuple[AttendanceRecord, bool]:
        rows = self._execute(
            "record attendance",
            lambda: self.client.rpc('record_attendance', {
                'p_student_id': person.id,
                'p_student_name': person.name,
                'p_student_class': person.student_class,
                'p_confidence': confidence,
                'p_is_late': is_late,
                'p_attendance_date': now.date().isoformat(),
                'p_created_at': _aware(now),
            }).execute(),
        )
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            raise StorageError("record_attendance returned no row")
        row = dict(rows[0])
        created = bool(row.pop('created', False))
        return AttendanceRecord.from_row(row), created

    def list_records(self, limit: Optional[int] = 50) -> List[AttendanceRecord]:
        def request():
            query = self.client.table('attendance_records').select('*').order('created_at', desc=True)
            if limit is not None:
                query = query.limit(limit)
            return query.execute()

        rows = self._execute("load attendance records", request)
        return [AttendanceRecord.from_row(row) for row in rows or []]

    def clear_records(self) -> int:
        rows = self._execute(
            "clear attendance records",
            lambda: self.client.table('attendance_records').delete().neq('id', NIL_UUID).execute(),
        )
        deleted = len(rows or [])
        logger.warning(f"Cleared {deleted} attendance records")
        return deleted

    # Late comers

    def get_late_comer(self, student_name: str, student_class: str) -> Optional[LateComer]:
        rows = self._execute(
            "load late comer",
            lambda: self.client.table('late_comers')
            .select('*')
            .eq('student_name', student_name)
            .eq('student_class', student_class)
            .limit(1)
            .execute(),
        )
        return LateComer.from_row(rows[0]) if rows else None

    def insert_late_comer(self, late_comer: LateComer) -> LateComer:
        rows = self._execute(
            "insert late comer",
            lambda: self.client.table('late_comers').insert({
                'student_name': late_comer.student_name,
                'student_class': late_comer.student_class,
                'total_late_count': late_comer.total_late_count,
            }).execute(),
        )
        return LateComer.from_row(rows[0]) if rows else late_comer

    def update_late_comer(self, student_name: str, student_class: str, total_late_count: int):
        self._execute(
            "update late comer",
            lambda: self.client.table('late_comers')
            .update({'total_late_count': total_late_count, 'updated_at': _aware(datetime.now())})
            .eq('student_name', student_name)
            .eq('student_class', student_class)
            .execute(),
        )

    def list_late_comers(self) -> List[LateComer]:
        rows = self._execute(
            "load late comers",
            lambda: self.client.table('late_comers')
            .select('*')
            .order('total_late_count', desc=True)
            .execute(),
        )
        return [LateComer.from_row(row) for row in rows or []]

"""
SQLite storage backend.

One shared connection guarded by a lock. The connection runs in autocommit
mode; multi-statement operations open an explicit ``BEGIN IMMEDIATE``
transaction so concurrent writers are serialized by the database.
"""
import sqlite3
import threading
import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from faces.descriptor import serialize_descriptor
from .errors import StorageError
from .models import AttendanceRecord, FaceCandidate, LateComer, Person
from .repository import AttendanceRepository

logger = logging.getLogger(__name__)


def _timestamp(value: datetime) -> str:
    return value.isoformat(timespec='microseconds')


class SQLiteAttendanceRepository(AttendanceRepository):
    def __init__(self, db_path: str = "attendance.db"):
        self.db_path = db_path
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {db_path}: {e}") from e
        self.init_database()

    def init_database(self):
        """Create the tables when missing."""
        with self._cursor() as cursor:
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS students (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    class TEXT NOT NULL,
                    face_descriptor_json TEXT,
                    created_at TEXT NOT NULL
                )
            ''')

            # No uniqueness on (student_id, attendance_date): duplicates are
            # collapsed by the reconciler or prevented by record_attendance_atomic
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS attendance_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    student_id TEXT NOT NULL,
                    student_name TEXT NOT NULL,
                    student_class TEXT NOT NULL,
                    confidence REAL,
                    status TEXT NOT NULL DEFAULT 'present',
                    is_late INTEGER NOT NULL DEFAULT 0,
                    late_count INTEGER NOT NULL DEFAULT 0,
                    absent_count INTEGER NOT NULL DEFAULT 0,
                    attendance_date TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            ''')
            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_attendance_student_day
                ON attendance_records (student_id, attendance_date)
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS late_comers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    student_name TEXT NOT NULL,
                    student_class TEXT NOT NULL,
                    total_late_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(student_name, student_class)
                )
            ''')
        logger.info(f"Attendance database initialized at {self.db_path}")

    @contextmanager
    def _cursor(self):
        with self._lock:
            try:
                cursor = self._conn.cursor()
                try:
                    yield cursor
                finally:
                    cursor.close()
            except sqlite3.Error as e:
                logger.error(f"Database error: {e}")
                raise StorageError(f"Database error: {e}") from e

    @contextmanager
    def _transaction(self):
        with self._cursor() as cursor:
            cursor.execute("BEGIN IMMEDIATE")
            try:
                yield cursor
            except BaseException:
                if self._conn.in_transaction:
                    cursor.execute("ROLLBACK")
                raise
            else:
                cursor.execute("COMMIT")

    # Persons

    def get_face_descriptors_for_recognition(self) -> List[FaceCandidate]:
        with self._cursor() as cursor:
            cursor.execute('SELECT id, face_descriptor_json FROM students ORDER BY id')
            return [FaceCandidate.from_row(dict(row)) for row in cursor.fetchall()]

    def get_student_basic_info(self, student_id: str) -> Optional[Person]:
        with self._cursor() as cursor:
            cursor.execute('SELECT id, name, class FROM students WHERE id = ?', (student_id,))
            row = cursor.fetchone()
        return Person.from_row(dict(row)) if row else None

    def register_person(self, name: str, student_class: str, descriptor: Sequence[float]) -> Person:
        descriptor_json = serialize_descriptor(descriptor)
        with self._cursor() as cursor:
            cursor.execute('''
                INSERT INTO students (name, class, face_descriptor_json, created_at)
                VALUES (?, ?, ?, ?)
            ''', (name, student_class, descriptor_json, _timestamp(datetime.now())))
            person_id = cursor.lastrowid
        logger.info(f"Registered {name} ({student_class}) as {person_id}")
        return Person(id=str(person_id), name=name, student_class=student_class)

    # Attendance records

    def latest_counts(self, student_id: str) -> Tuple[int, int]:
        with self._cursor() as cursor:
            return self._latest_counts(cursor, student_id)

    @staticmethod
    def _latest_counts(cursor, student_id: str) -> Tuple[int, int]:
        cursor.execute('''
            SELECT late_count, absent_count FROM attendance_records
            WHERE student_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT 1
        ''', (student_id,))
        row = cursor.fetchone()
        if not row:
            return 0, 0
        return int(row['late_count'] or 0), int(row['absent_count'] or 0)

    @staticmethod
    def _insert(cursor, record: AttendanceRecord) -> AttendanceRecord:
        if record.created_at is None:
            record.created_at = datetime.now()
        cursor.execute('''
            INSERT INTO attendance_records
            (student_id, student_name, student_class, confidence, status,
             is_late, late_count, absent_count, attendance_date, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (record.student_id, record.student_name, record.student_class, record.confidence,
              record.status, int(record.is_late), record.late_count, record.absent_count,
              record.created_at.date().isoformat(), _timestamp(record.created_at)))
        record.id = str(cursor.lastrowid)
        return record

    def insert_record(self, record: AttendanceRecord) -> AttendanceRecord:
        with self._cursor() as cursor:
            return self._insert(cursor, record)

    def records_for_day(self, student_id: str, day: date) -> List[AttendanceRecord]:
        with self._cursor() as cursor:
            cursor.execute('''
                SELECT * FROM attendance_records
                WHERE student_id = ? AND attendance_date = ?
                ORDER BY confidence DESC, id ASC
            ''', (student_id, day.isoformat()))
            return [AttendanceRecord.from_row(dict(row)) for row in cursor.fetchall()]

    def delete_records(self, ids: Iterable[str]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        placeholders = ','.join('?' for _ in ids)
        with self._cursor() as cursor:
            cursor.execute(f'DELETE FROM attendance_records WHERE id IN ({placeholders})', ids)
            return cursor.rowcount

    def record_attendance_atomic(self, person: Person, confidence: float, is_late: bool,
                                 now: datetime) -> Tuple[AttendanceRecord, bool]:
        with self._transaction() as cursor:
            cursor.execute('''
                SELECT * FROM attendance_records
                WHERE student_id = ? AND attendance_date = ?
                ORDER BY confidence DESC, id ASC
                LIMIT 1
            ''', (person.id, now.date().isoformat()))
            row = cursor.fetchone()

            if row:
                existing = AttendanceRecord.from_row(dict(row))
                if existing.confidence is None or confidence > existing.confidence:
                    cursor.execute('UPDATE attendance_records SET confidence = ? WHERE id = ?',
                                   (confidence, existing.id))
                    existing.confidence = confidence
                return existing, False

            late_count, absent_count = self._latest_counts(cursor, person.id)
            record = AttendanceRecord(
                student_id=person.id,
                student_name=person.name,
                student_class=person.student_class,
                confidence=confidence,
                is_late=is_late,
                late_count=late_count + 1 if is_late else late_count,
                absent_count=absent_count,
                created_at=now,
            )
            return self._insert(cursor, record), True

    def list_records(self, limit: Optional[int] = 50) -> List[AttendanceRecord]:
        query = 'SELECT * FROM attendance_records ORDER BY created_at DESC, id DESC'
        params: tuple = ()
        if limit is not None:
            query += ' LIMIT ?'
            params = (limit,)
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return [AttendanceRecord.from_row(dict(row)) for row in cursor.fetchall()]

    def clear_records(self) -> int:
        with self._cursor() as cursor:
            cursor.execute('DELETE FROM attendance_records')
            deleted = cursor.rowcount
        logger.warning(f"Cleared {deleted} attendance records")
        return deleted

    # Late comers

    def get_late_comer(self, student_name: str, student_class: str) -> Optional[LateComer]:
        with self._cursor() as cursor:
            cursor.execute('''
                SELECT id, student_name, student_class, total_late_count FROM late_comers
                WHERE student_name = ? AND student_class = ?
            ''', (student_name, student_class))
            row = cursor.fetchone()
        return LateComer.from_row(dict(row)) if row else None

    def insert_late_comer(self, late_comer: LateComer) -> LateComer:
        now = _timestamp(datetime.now())
        with self._cursor() as cursor:
            cursor.execute('''
                INSERT INTO late_comers (student_name, student_class, total_late_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
            ''', (late_comer.student_name, late_comer.student_class,
                  late_comer.total_late_count, now, now))
            late_comer.id = str(cursor.lastrowid)
        return late_comer

    def update_late_comer(self, student_name: str, student_class: str, total_late_count: int):
        with self._cursor() as cursor:
            cursor.execute('''
                UPDATE late_comers SET total_late_count = ?, updated_at = ?
                WHERE student_name = ? AND student_class = ?
            ''', (total_late_count, _timestamp(datetime.now()), student_name, student_class))

    def list_late_comers(self) -> List[LateComer]:
        with self._cursor() as cursor:
            cursor.execute('''
                SELECT id, student_name, student_class, total_late_count FROM late_comers
                ORDER BY total_late_count DESC, student_name ASC
            ''')
            return [LateComer.from_row(dict(row)) for row in cursor.fetchall()]

    def close(self):
        with self._lock:
            self._conn.close()

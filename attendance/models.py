"""
Data models for the attendance tracker.

- Person: a registered student (name, class) owning one face descriptor
- FaceCandidate: restricted projection used for recognition (id + descriptor)
- AttendanceRecord: one accepted detection
- LateComer: roster entry once the running late count passes the threshold
- RecognitionEvent: what the session shows for the current/recent detections
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp into a naive local datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


class DetectionStatus(str, Enum):
    SUCCESS = "success"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Person:
    id: str
    name: str
    student_class: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Person":
        return cls(
            id=str(row['id']),
            name=row['name'],
            student_class=row.get('class') or row.get('student_class') or "",
        )

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'class': self.student_class}


@dataclass(frozen=True)
class FaceCandidate:
    id: str
    face_descriptor_json: Optional[str]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "FaceCandidate":
        return cls(id=str(row['id']), face_descriptor_json=row.get('face_descriptor_json'))


@dataclass
class AttendanceRecord:
    """A persisted attendance row."""
    student_id: str
    student_name: str
    student_class: str
    confidence: Optional[float]
    is_late: bool = False
    late_count: int = 0
    absent_count: int = 0
    status: str = "present"
    created_at: Optional[datetime] = None
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AttendanceRecord":
        return cls(
            id=str(row['id']) if row.get('id') is not None else None,
            student_id=str(row.get('student_id') or ""),
            student_name=row.get('student_name') or "",
            student_class=row.get('student_class') or "",
            confidence=float(row['confidence']) if row.get('confidence') is not None else None,
            is_late=bool(row.get('is_late') or False),
            late_count=int(row.get('late_count') or 0),
            absent_count=int(row.get('absent_count') or 0),
            status=row.get('status') or "present",
            created_at=parse_timestamp(row.get('created_at')),
        )

    def to_row(self) -> Dict[str, Any]:
        """Column values for an insert (id and created_at left to the backend when unset)."""
        row = {
            'student_id': self.student_id,
            'student_name': self.student_name,
            'student_class': self.student_class,
            'confidence': self.confidence,
            'status': self.status,
            'is_late': self.is_late,
            'late_count': self.late_count,
            'absent_count': self.absent_count,
        }
        if self.created_at is not None:
            row['created_at'] = self.created_at.isoformat()
        return row

    def to_dict(self) -> dict:
        data = self.to_row()
        data['id'] = self.id
        data['created_at'] = self.created_at.isoformat() if self.created_at else None
        return data


@dataclass
class LateComer:
    student_name: str
    student_class: str
    total_late_count: int
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "LateComer":
        return cls(
            id=str(row['id']) if row.get('id') is not None else None,
            student_name=row['student_name'],
            student_class=row.get('student_class') or "",
            total_late_count=int(row.get('total_late_count') or 0),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RecognitionEvent:
    """A detection as shown to the operator."""
    name: str
    timestamp: datetime
    confidence: float
    status: DetectionStatus
    is_late: bool = False
    student_class: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'timestamp': self.timestamp.isoformat(),
            'confidence': round(self.confidence, 4),
            'status': self.status.value,
            'is_late': self.is_late,
            'class': self.student_class,
        }

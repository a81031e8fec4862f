"""
Attendance tracking for the face recognition camera.

This package provides:
- Repository contract with SQLite and Supabase backends
- Late detection and same-day reconciliation of attendance rows
- Late-comer roster escalation
- Session controller driving the camera, detector and matcher
- Excel export and password-gated admin operations
"""

from .errors import AttendanceError, AcquisitionError, DescriptorError, StorageError, AuthorizationError
from .models import Person, FaceCandidate, AttendanceRecord, LateComer, RecognitionEvent, DetectionStatus

__version__ = "1.0.0"

__all__ = [
    'AttendanceError',
    'AcquisitionError',
    'DescriptorError',
    'StorageError',
    'AuthorizationError',
    'Person',
    'FaceCandidate',
    'AttendanceRecord',
    'LateComer',
    'RecognitionEvent',
    'DetectionStatus',
]

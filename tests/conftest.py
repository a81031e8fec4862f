import os
import tempfile
from datetime import datetime
from types import SimpleNamespace

# Keep log files and reports out of the working tree
_scratch = tempfile.mkdtemp(prefix="attendance-tests-")
os.environ.setdefault("LOG_DIR", os.path.join(_scratch, "logs"))
os.environ.setdefault("REPORTS_DIR", os.path.join(_scratch, "reports"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import numpy as np
import pytest

from attendance.sqlite_repository import SQLiteAttendanceRepository
from attendance.errors import AcquisitionError


def descriptor(offset: float = 0.0, index: int = 0) -> np.ndarray:
    """128-d descriptor that is ``offset`` away from the zero descriptor."""
    values = np.zeros(128)
    values[index] = offset
    return values


def euclidean(a, b) -> float:
    """Stand-in for face_recognition.face_distance so tests run without dlib."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        from attendance.errors import DescriptorError
        raise DescriptorError(f"Descriptor shapes differ: {a.shape} vs {b.shape}")
    return float(np.linalg.norm(a - b))


def at(hour: int, minute: int, second: int = 0, day: int = 14) -> datetime:
    return datetime(2024, 5, day, hour, minute, second)


class FakeDetector:
    """Returns queued faces; None means no face in the frame."""

    def __init__(self, faces=None):
        self.faces = list(faces or [])
        self.encoded = None

    def queue(self, encoding):
        self.faces.append(None if encoding is None else SimpleNamespace(encoding=np.asarray(encoding)))

    def detect_primary_face(self, frame):
        if not self.faces:
            return None
        face = self.faces.pop(0)
        if isinstance(face, Exception):
            raise face
        return face

    def encode_image_bytes(self, data):
        if self.encoded is None:
            from attendance.errors import DescriptorError
            raise DescriptorError("No face detected in image")
        return self.encoded


class FakeCamera:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.running = False
        self.started = 0
        self.stopped = 0
        self.frame = np.zeros((4, 4, 3), dtype=np.uint8)

    def start_stream(self):
        if self.fail:
            raise AcquisitionError("Cannot open camera 0")
        self.running = True
        self.started += 1
        return True

    def stop_stream(self):
        self.running = False
        self.stopped += 1

    def get_frame(self, timeout: float = 1.0):
        return self.frame if self.running else None

    def get_camera_info(self):
        return {"device_id": 0, "running": self.running}


@pytest.fixture
def repository(tmp_path):
    repo = SQLiteAttendanceRepository(str(tmp_path / "attendance.db"))
    yield repo
    repo.close()


@pytest.fixture
def alice(repository):
    return repository.register_person("Alice", "10A", descriptor(0.0))


@pytest.fixture
def bob(repository):
    return repository.register_person("Bob", "10B", descriptor(1.0, index=5))

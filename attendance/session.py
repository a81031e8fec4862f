"""
Attendance session controller.

Owns the camera, the face detector and matcher, the reconciler and the
operator-facing state: the current detection, the recent attendance list
and the error banner. A background thread runs one detection cycle per
sampling interval while the session is started.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional

from faces.face_matcher import FaceMatcher
from .errors import AcquisitionError, StorageError
from .models import DetectionStatus, RecognitionEvent
from .reconciler import AttendanceReconciler
from .repository import AttendanceRepository

logger = logging.getLogger(__name__)

UNKNOWN_PERSON = "Unknown Person"
ACCESS_DENIED = "Access Denied"


class AttendanceSession:
    """Camera-driven attendance capture with an explicit lifecycle."""

    def __init__(self, repository: AttendanceRepository, detector, camera,
                 matcher: Optional[FaceMatcher] = None,
                 reconciler: Optional[AttendanceReconciler] = None,
                 sampling_interval: Optional[float] = None,
                 recent_limit: Optional[int] = None,
                 clock: Callable[[], datetime] = datetime.now):
        from utils.config import config

        self.repository = repository
        self.detector = detector
        self.camera = camera
        self.matcher = matcher or FaceMatcher()
        self.reconciler = reconciler or AttendanceReconciler(repository)
        self.sampling_interval = sampling_interval or config.attendance.sampling_interval
        self.recent_limit = recent_limit or config.attendance.recent_limit
        self.clock = clock

        self.models_loaded = False
        self.running = False
        self.error: Optional[str] = None
        self.current_detection: Optional[RecognitionEvent] = None
        self.recent_attendance: List[RecognitionEvent] = []
        self.last_frame = None
        self.last_face = None

        self.cycles_run = 0
        self._state_lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None

    def load_models(self) -> bool:
        """Load the face gallery. On failure the banner is set and the session stays disabled."""
        if self.detector is None:
            self.error = "Face detection model is not available"
            self.models_loaded = False
            return False

        try:
            candidates = self.repository.get_face_descriptors_for_recognition()
        except StorageError as e:
            logger.error(f"Failed to load face descriptors: {e}")
            self.error = f"Failed to load face models: {e}"
            self.models_loaded = False
            return False

        usable = self.matcher.load_candidates(candidates)
        self.models_loaded = True
        self.error = None
        logger.info(f"Face models loaded ({usable} registered faces)")
        return True

    def start(self):
        """Acquire the camera and start the sampling thread.

        Raises:
            AcquisitionError: models are not loaded or the camera cannot be opened.
        """
        with self._state_lock:
            if self.running:
                logger.warning("Session is already running")
                return

            if not self.models_loaded:
                raise AcquisitionError(self.error or "Face models are not loaded")

            try:
                self.camera.start_stream()
            except AcquisitionError as e:
                self.error = f"Unable to access camera: {e}"
                logger.error(self.error)
                raise

            self.error = None
            self.running = True
            self._stop_event.clear()
            self._timer_thread = threading.Thread(target=self._run_timer, daemon=True)
            self._timer_thread.start()

        logger.info("Attendance session started")

    def stop(self):
        """Stop sampling, release the camera and clear the current detection."""
        with self._state_lock:
            if not self.running:
                return

            self.running = False
            self._stop_event.set()
            thread = self._timer_thread
            self._timer_thread = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(2.0, self.sampling_interval * 2))

        # Wait for an in-flight cycle before releasing the device
        with self._cycle_lock:
            self.camera.stop_stream()
            self.current_detection = None
            self.last_face = None

        logger.info("Attendance session stopped")

    def _run_timer(self):
        while not self._stop_event.wait(self.sampling_interval):
            try:
                self.run_cycle()
            except Exception as e:
                logger.error(f"Attendance cycle failed: {e}")

    def run_cycle(self, frame=None) -> Optional[RecognitionEvent]:
        """Run one detection-and-match cycle.

        Uses the camera's latest frame when ``frame`` is None. Returns the
        resulting event, or None when no face was found or the session has
        been stopped.
        """
        with self._cycle_lock:
            if self._stop_event.is_set():
                return None
            if frame is None:
                if not self.running:
                    return None
                frame = self.camera.get_frame()
                if frame is None:
                    return None

            self.cycles_run += 1
            self.last_frame = frame
            now = self.clock()

            try:
                face = self.detector.detect_primary_face(frame)
            except Exception as e:
                logger.error(f"Face detection failed: {e}")
                face = None

            self.last_face = face
            if face is None:
                self.current_detection = None
                return None

            match = self.matcher.match(face.encoding)
            if match is None:
                event = RecognitionEvent(
                    name=UNKNOWN_PERSON,
                    timestamp=now,
                    confidence=0.0,
                    status=DetectionStatus.UNKNOWN,
                )
                self.current_detection = event
                return event

            try:
                person = self.repository.get_student_basic_info(match.person_id)
            except StorageError as e:
                logger.error(f"Student lookup failed for {match.person_id}: {e}")
                person = None

            if person is None:
                event = RecognitionEvent(
                    name=ACCESS_DENIED,
                    timestamp=now,
                    confidence=match.confidence,
                    status=DetectionStatus.UNKNOWN,
                    details={'person_id': match.person_id},
                )
                self.current_detection = event
                return event

            outcome = self.reconciler.record_match(person, match, now)
            event = RecognitionEvent(
                name=person.name,
                timestamp=now,
                confidence=match.confidence,
                status=DetectionStatus.SUCCESS,
                is_late=outcome.is_late,
                student_class=person.student_class,
                details={'recorded': outcome.recorded},
            )
            self.current_detection = event

            if outcome.recorded:
                with self._state_lock:
                    self.recent_attendance = ([event] + self.recent_attendance)[:self.recent_limit]

            return event

    def get_recent_attendance(self) -> List[RecognitionEvent]:
        with self._state_lock:
            return list(self.recent_attendance)

    def get_status(self) -> dict:
        """Session state for the API and CLI."""
        with self._state_lock:
            recent_count = len(self.recent_attendance)
        return {
            'running': self.running,
            'models_loaded': self.models_loaded,
            'error': self.error,
            'registered_faces': self.matcher.gallery_size,
            'cycles_run': self.cycles_run,
            'recent_count': recent_count,
            'current_detection': self.current_detection.to_dict() if self.current_detection else None,
            'reconcile_mode': self.reconciler.mode,
        }

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

"""
Face detection and descriptor extraction.
Uses the face_recognition library (dlib) for locations, landmarks and
128-dimensional descriptors.
"""
import logging
import threading
import time
from typing import Dict, List, Optional, Tuple

import cv2
import face_recognition
import numpy as np

from attendance.errors import AcquisitionError, DescriptorError

logger = logging.getLogger(__name__)


class FaceDetection:
    """The primary face found in a frame."""

    def __init__(self, bbox: Tuple[int, int, int, int], encoding: np.ndarray,
                 landmarks: Optional[Dict[str, List[Tuple[int, int]]]] = None):
        if len(bbox) != 4:
            raise ValueError("bbox must have 4 elements: (top, right, bottom, left)")

        self.bbox = bbox  # (top, right, bottom, left)
        self.encoding = encoding
        self.landmarks = landmarks or {}
        self.timestamp = time.time()

        self.top, self.right, self.bottom, self.left = bbox
        self.width = max(0, self.right - self.left)
        self.height = max(0, self.bottom - self.top)

    @property
    def area(self) -> int:
        return self.width * self.height


class FaceDetector:
    """Extracts the primary face descriptor from frames."""

    def __init__(self, model: Optional[str] = None, detection_scale: Optional[float] = None):
        try:
            from utils.config import config
            self.model = model or config.face.model
            self.detection_scale = detection_scale or config.face.detection_scale
        except ImportError:
            self.model = model or "hog"
            self.detection_scale = detection_scale or 1.0

        self.detection_times: List[float] = []
        self.total_detections = 0
        self._stats_lock = threading.Lock()

        self._initialize_detector()
        logger.info(f"Face detector initialized with model: {self.model}")

    def _initialize_detector(self):
        """Verify the detection model loads."""
        test_image = np.zeros((100, 100, 3), dtype=np.uint8)
        try:
            face_recognition.face_locations(test_image, model=self.model)
        except Exception as e:
            if self.model == "cnn":
                logger.warning(f"CNN model failed, falling back to HOG: {e}")
                self.model = "hog"
                self._initialize_detector()
                return
            raise AcquisitionError(f"Failed to load face detection model: {e}") from e

    def detect_primary_face(self, frame: np.ndarray) -> Optional[FaceDetection]:
        """Detect the largest face in a BGR frame with its descriptor.

        Returns None when no face (or no descriptor) is found. Library errors
        are logged and also reported as None.
        """
        if frame is None or frame.size == 0:
            logger.warning("Invalid frame provided to detect_primary_face")
            return None

        if len(frame.shape) != 3 or frame.shape[2] != 3:
            logger.warning(f"Invalid frame shape: {frame.shape}")
            return None

        start_time = time.time()
        try:
            height, width = frame.shape[:2]
            small_frame = frame
            scale_factor = 1.0
            if self.detection_scale < 1.0:
                new_size = (int(width * self.detection_scale), int(height * self.detection_scale))
                if new_size[0] > 0 and new_size[1] > 0:
                    small_frame = cv2.resize(frame, new_size)
                    scale_factor = 1.0 / self.detection_scale

            rgb_frame = cv2.cvtColor(small_frame, cv2.COLOR_BGR2RGB)
            face_locations = face_recognition.face_locations(rgb_frame, model=self.model)
            if not face_locations:
                return None

            # Largest box is the primary face
            location = max(face_locations, key=lambda loc: (loc[2] - loc[0]) * (loc[1] - loc[3]))

            encodings = face_recognition.face_encodings(rgb_frame, [location])
            if not encodings:
                logger.debug("Face found but no descriptor could be computed")
                return None

            landmarks_list = face_recognition.face_landmarks(rgb_frame, [location])
            landmarks = landmarks_list[0] if landmarks_list else {}

            top, right, bottom, left = location
            if scale_factor != 1.0:
                top, right, bottom, left = (int(v * scale_factor) for v in (top, right, bottom, left))
                landmarks = {
                    feature: [(int(x * scale_factor), int(y * scale_factor)) for x, y in points]
                    for feature, points in landmarks.items()
                }

            detection = FaceDetection(
                bbox=(max(0, top), min(width, right), min(height, bottom), max(0, left)),
                encoding=np.asarray(encodings[0], dtype=np.float64),
                landmarks=landmarks,
            )
        except cv2.error as e:
            logger.error(f"Color conversion error: {e}")
            return None
        except Exception as e:
            logger.error(f"Face detection error: {e}")
            return None

        with self._stats_lock:
            self.total_detections += 1
            self.detection_times.append(time.time() - start_time)
            if len(self.detection_times) > 100:
                self.detection_times = self.detection_times[-100:]

        return detection

    def encode_image_file(self, image_path: str) -> np.ndarray:
        """Descriptor of the single face in a registration image.

        Raises:
            DescriptorError: no face found in the image.
        """
        image = face_recognition.load_image_file(image_path)
        encodings = face_recognition.face_encodings(image)

        if not encodings:
            raise DescriptorError(f"No face found in {image_path}")

        if len(encodings) > 1:
            logger.warning(f"Multiple faces found in {image_path}, using the first one")

        return np.asarray(encodings[0], dtype=np.float64)

    def encode_image_bytes(self, data: bytes) -> np.ndarray:
        """Descriptor of the face in an encoded (JPEG/PNG) image."""
        buffer = np.frombuffer(data, np.uint8)
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        if image is None:
            raise DescriptorError("Invalid image format")

        detection = self.detect_primary_face(image)
        if detection is None:
            raise DescriptorError("No face detected in image")
        return detection.encoding

    def get_detection_statistics(self) -> Dict:
        with self._stats_lock:
            avg_time = float(np.mean(self.detection_times)) if self.detection_times else 0.0
            return {
                'model': self.model,
                'total_detections': self.total_detections,
                'average_detection_time_ms': avg_time * 1000,
            }


def draw_overlay(frame: np.ndarray, detection: FaceDetection, label: str,
                 recognized: bool = True, show_landmarks: bool = True) -> np.ndarray:
    """Draw the face box, landmarks and label on a copy of the frame."""
    output = frame.copy()
    color = (0, 255, 0) if recognized else (0, 0, 255)
    top, right, bottom, left = detection.bbox

    cv2.rectangle(output, (left, top), (right, bottom), color, 2)

    if show_landmarks:
        for points in detection.landmarks.values():
            for point in points:
                cv2.circle(output, point, 1, (255, 255, 0), -1)

    label_size = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, 0.6, 2)[0]
    cv2.rectangle(output, (left, top - label_size[1] - 10),
                  (left + label_size[0], top), color, -1)
    cv2.putText(output, label, (left, top - 5),
                cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 2, cv2.LINE_AA)
    return output

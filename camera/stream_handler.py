"""
Camera stream handler for the attendance session.
The device is held only between start_stream() and stop_stream().
"""
import cv2
import time
import numpy as np
from typing import Optional, Tuple
import threading
from queue import Queue, Empty

from attendance.errors import AcquisitionError
from utils.config import config
from utils.logger import logger


class CameraStream:
    """Threaded webcam reader keeping only the newest frames."""

    def __init__(self, device_id: Optional[int] = None, resolution: Optional[Tuple[int, int]] = None):
        self.device_id = device_id if device_id is not None else config.camera.device_id
        self.resolution = resolution or config.camera.resolution

        self.cap: Optional[cv2.VideoCapture] = None
        self.frame_queue = Queue(maxsize=config.camera.buffer_size)
        self.running = False
        self.capture_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.latest_frame: Optional[np.ndarray] = None

        self._fps_counter = 0
        self._fps_start_time = time.time()
        self._current_fps = 0

    def _open_device(self):
        """Open the camera with the configured settings."""
        cap = cv2.VideoCapture(self.device_id)
        if not cap.isOpened():
            cap.release()
            raise AcquisitionError(f"Cannot open camera {self.device_id}")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])
        cap.set(cv2.CAP_PROP_FPS, config.camera.fps)
        cap.set(cv2.CAP_PROP_BUFFERSIZE, config.camera.buffer_size)

        actual_width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        actual_fps = int(cap.get(cv2.CAP_PROP_FPS))
        logger.info(f"Camera initialized: {actual_width}x{actual_height} @ {actual_fps}fps")

        self.cap = cap

    def _capture_frames(self):
        """Background thread for frame capture."""
        frame_time = 1.0 / max(1, config.camera.fps)

        while self.running:
            try:
                ret, frame = self.cap.read()
                if not ret:
                    logger.warning("Failed to capture frame")
                    time.sleep(frame_time)
                    continue

                # Drop the oldest frame when the buffer is full
                if self.frame_queue.full():
                    try:
                        self.frame_queue.get_nowait()
                    except Empty:
                        pass

                self.frame_queue.put(frame)
                self.latest_frame = frame
                time.sleep(frame_time)

            except Exception as e:
                logger.error(f"Error in capture thread: {e}")
                break

    def start_stream(self, strict: bool = True) -> bool:
        """Acquire the device and start capturing.

        Raises:
            AcquisitionError: the device cannot be opened and ``strict`` is set.
        """
        with self._lock:
            if self.running:
                logger.warning("Stream already running")
                return True

            try:
                self._open_device()
            except AcquisitionError as e:
                logger.error(f"Failed to initialize camera: {e}")
                if strict:
                    raise
                return False

            self.running = True
            self.capture_thread = threading.Thread(target=self._capture_frames, daemon=True)
            self.capture_thread.start()

        logger.info("Camera stream started")
        return True

    def stop_stream(self):
        """Release the device and drain buffered frames."""
        with self._lock:
            self.running = False

            if self.capture_thread and self.capture_thread.is_alive():
                self.capture_thread.join(timeout=2.0)
            self.capture_thread = None

            if self.cap:
                self.cap.release()
                self.cap = None

            while not self.frame_queue.empty():
                try:
                    self.frame_queue.get_nowait()
                except Empty:
                    break
            self.latest_frame = None

        logger.info("Camera stream stopped")

    def get_frame(self, timeout: float = 1.0) -> Optional[np.ndarray]:
        """Get the latest frame, or None when stopped or nothing arrived."""
        if not self.running:
            return None

        try:
            frame = self.frame_queue.get(timeout=timeout)
            self._update_fps()
            return frame
        except Empty:
            logger.warning("Frame timeout")
            return None

    def peek_frame(self) -> Optional[np.ndarray]:
        """Newest captured frame without consuming it, for previews."""
        return self.latest_frame if self.running else None

    def _update_fps(self):
        self._fps_counter += 1
        current_time = time.time()

        if current_time - self._fps_start_time >= 1.0:
            self._current_fps = self._fps_counter
            self._fps_counter = 0
            self._fps_start_time = current_time

    def get_fps(self) -> float:
        return self._current_fps

    def get_camera_info(self) -> dict:
        if not self.cap:
            return {"device_id": self.device_id, "running": False}

        return {
            "device_id": self.device_id,
            "running": self.running,
            "width": int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            "height": int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            "fps": int(self.cap.get(cv2.CAP_PROP_FPS)),
            "processing_fps": self._current_fps,
        }

    def is_running(self) -> bool:
        return self.running and (self.cap is not None) and self.cap.isOpened()

    def __enter__(self):
        self.start_stream()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop_stream()

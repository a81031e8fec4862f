"""
Logging utilities for the face attendance tracker.
Wraps the standard logging module with console/file handlers and a
separate attendance event log.
"""
import logging
import threading
import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional


class AttendanceLogger:
    """Application logger with an attendance event trail."""

    def __init__(self, name: str = "face_attendance", max_events: int = 1000):
        self.logger = logging.getLogger(name)
        self._setup_logger()

        self.attendance_logger = self._setup_attendance_logger()
        self.attendance_events: List[Dict] = []
        self.max_attendance_events = max_events
        self._events_lock = threading.Lock()

    def _setup_logger(self):
        """Setup console and file handlers."""
        try:
            from utils.config import config
            log_level = getattr(logging, config.logging.log_level.upper(), logging.INFO)
            log_dir = config.logging.log_dir
            log_file = config.logging.log_file
        except ImportError:
            log_level = logging.INFO
            log_dir = "logs"
            log_file = "attendance.log"

        self.logger.handlers.clear()
        self.logger.setLevel(log_level)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(log_level)
        self.logger.addHandler(console_handler)

        try:
            path = Path(log_dir)
            path.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path / log_file, encoding='utf-8')
            file_handler.setFormatter(formatter)
            file_handler.setLevel(log_level)
            self.logger.addHandler(file_handler)
        except OSError as e:
            self.logger.warning(f"Could not setup file logging: {e}")

        self.logger.propagate = False

    def _setup_attendance_logger(self) -> logging.Logger:
        """Child logger for attendance events, sharing the main handlers."""
        attendance_logger = self.logger.getChild("events")
        attendance_logger.setLevel(logging.INFO)
        return attendance_logger

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs):
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(message, **kwargs)

    def critical(self, message: str, **kwargs):
        self.logger.critical(message, **kwargs)

    def log_event(self, event_type: str, details: dict):
        """Log an application event with structured details."""
        message = f"EVENT: {event_type} | {json.dumps(details, default=str)}"
        self.info(message)

    def log_attendance_event(self, student_name: str, event_type: str = "DETECTED",
                             details: Optional[Dict] = None, confidence: float = 0.0):
        """Log an attendance event and keep it in the bounded recent list."""
        event_details = details or {}
        attendance_event = {
            'timestamp': datetime.now().isoformat(),
            'student_name': student_name,
            'event_type': event_type,
            'confidence': confidence,
            'details': event_details,
        }

        with self._events_lock:
            self.attendance_events.append(attendance_event)
            if len(self.attendance_events) > self.max_attendance_events:
                self.attendance_events = self.attendance_events[-self.max_attendance_events:]

        message = f"Student: {student_name} | Event: {event_type} | Confidence: {confidence:.2f}"
        if event_details:
            message += f" | Details: {json.dumps(event_details, default=str)}"
        self.attendance_logger.info(message)

    def get_recent_attendance_events(self, hours: int = 24) -> List[Dict]:
        """Get attendance events within the last ``hours``."""
        cutoff = datetime.now() - timedelta(hours=hours)
        with self._events_lock:
            return [
                event.copy() for event in self.attendance_events
                if datetime.fromisoformat(event['timestamp']) >= cutoff
            ]

    def get_attendance_summary(self, hours: int = 24) -> Dict:
        """Summarise recent attendance events by type."""
        events = self.get_recent_attendance_events(hours)
        by_type: Dict[str, int] = {}
        names = set()
        for event in events:
            by_type[event['event_type']] = by_type.get(event['event_type'], 0) + 1
            names.add(event['student_name'])
        return {
            'total_events': len(events),
            'unique_students': len(names),
            'events_by_type': by_type,
            'time_period_hours': hours,
        }


logger = AttendanceLogger()

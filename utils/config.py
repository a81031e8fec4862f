"""
Configuration settings for the face attendance tracker.
Values come from dataclass defaults overridden by environment variables.
"""
import os
import logging
from dataclasses import dataclass, field
from datetime import time
from typing import Tuple, Optional
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:MM`` string into a time of day."""
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError) as e:
        raise ValueError(f"Invalid time of day '{value}', expected HH:MM") from e


@dataclass
class CameraConfig:
    """Camera configuration settings."""
    device_id: int = 0
    resolution: Tuple[int, int] = (640, 480)
    fps: int = 30
    buffer_size: int = 1


@dataclass
class FaceConfig:
    """Face detection and matching configuration."""
    model: str = "hog"  # hog or cnn
    tolerance: float = 0.6
    descriptor_length: int = 128
    detection_scale: float = 1.0


@dataclass
class AttendanceConfig:
    """Attendance recording rules."""
    late_cutoff: time = field(default_factory=lambda: time(8, 30))
    late_escalation_threshold: int = 3
    sampling_interval: float = 1.0  # seconds between detection cycles
    recent_limit: int = 49
    reconcile_mode: str = "atomic"  # atomic or reconcile


@dataclass
class StorageConfig:
    """Persistence backend settings."""
    backend: str = "sqlite"  # sqlite or supabase
    database_path: str = "attendance.db"
    supabase_url: str = ""
    supabase_key: str = ""


@dataclass
class SecurityConfig:
    """Password re-entry gate for export and clear."""
    admin_email: str = ""
    admin_password: str = ""
    admin_password_hash: str = ""


@dataclass
class ExportConfig:
    """Spreadsheet export settings."""
    reports_directory: str = "attendance_reports"
    records_limit: int = 50


@dataclass
class LoggingConfig:
    """Logging configuration."""
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_file: str = "attendance.log"


@dataclass
class ApiConfig:
    """HTTP API settings."""
    host: str = "0.0.0.0"
    port: int = 8080


class Config:
    """Main configuration class with validation."""

    def __init__(self):
        self.camera = CameraConfig()
        self.face = FaceConfig()
        self.attendance = AttendanceConfig()
        self.storage = StorageConfig()
        self.security = SecurityConfig()
        self.export = ExportConfig()
        self.logging = LoggingConfig()
        self.api = ApiConfig()

        self._load_environment_variables()
        self._validate_configuration()

    def _load_environment_variables(self):
        """Load configuration from environment variables, keeping defaults on bad input."""
        # Camera settings
        try:
            self.camera.device_id = int(os.getenv("CAMERA_ID", self.camera.device_id))
        except ValueError as e:
            logger.warning(f"Invalid camera id, using default: {e}")

        resolution_str = os.getenv("CAMERA_RESOLUTION")
        if resolution_str:
            try:
                width, height = map(int, resolution_str.split('x'))
                self.camera.resolution = (width, height)
            except ValueError:
                logger.warning(f"Invalid resolution format: {resolution_str}, using default")

        # Face settings
        self.face.model = os.getenv("FACE_MODEL", self.face.model)
        try:
            tolerance = float(os.getenv("FACE_TOLERANCE", self.face.tolerance))
            if not 0.0 < tolerance <= 1.0:
                raise ValueError("Face tolerance must be in (0.0, 1.0]")
            self.face.tolerance = tolerance
        except ValueError as e:
            logger.warning(f"Invalid face tolerance, using default: {e}")

        # Attendance rules
        cutoff = os.getenv("LATE_CUTOFF")
        if cutoff:
            try:
                self.attendance.late_cutoff = parse_time_of_day(cutoff)
            except ValueError as e:
                logger.warning(f"{e}, using default")

        try:
            threshold = int(os.getenv("LATE_ESCALATION_THRESHOLD", self.attendance.late_escalation_threshold))
            if threshold < 0:
                raise ValueError("Late escalation threshold must be non-negative")
            self.attendance.late_escalation_threshold = threshold
        except ValueError as e:
            logger.warning(f"Invalid late escalation threshold, using default: {e}")

        try:
            interval = float(os.getenv("SAMPLING_INTERVAL", self.attendance.sampling_interval))
            if interval <= 0:
                raise ValueError("Sampling interval must be positive")
            self.attendance.sampling_interval = interval
        except ValueError as e:
            logger.warning(f"Invalid sampling interval, using default: {e}")

        try:
            self.attendance.recent_limit = int(os.getenv("RECENT_LIMIT", self.attendance.recent_limit))
        except ValueError as e:
            logger.warning(f"Invalid recent limit, using default: {e}")

        mode = os.getenv("RECONCILE_MODE", self.attendance.reconcile_mode).lower()
        if mode in ("atomic", "reconcile"):
            self.attendance.reconcile_mode = mode
        else:
            logger.warning(f"Invalid reconcile mode: {mode}, using default")

        # Storage
        backend = os.getenv("STORAGE_BACKEND", self.storage.backend).lower()
        if backend in ("sqlite", "supabase"):
            self.storage.backend = backend
        else:
            logger.warning(f"Invalid storage backend: {backend}, using default")
        self.storage.database_path = os.getenv("DATABASE_PATH", self.storage.database_path)
        self.storage.supabase_url = os.getenv("SUPABASE_URL", self.storage.supabase_url)
        self.storage.supabase_key = os.getenv("SUPABASE_KEY", self.storage.supabase_key)

        # Security
        self.security.admin_email = os.getenv("ADMIN_EMAIL", self.security.admin_email)
        self.security.admin_password = os.getenv("ADMIN_PASSWORD", self.security.admin_password)
        self.security.admin_password_hash = os.getenv("ADMIN_PASSWORD_HASH", self.security.admin_password_hash)

        # Export
        self.export.reports_directory = os.getenv("REPORTS_DIR", self.export.reports_directory)

        # Logging
        log_level = os.getenv("LOG_LEVEL", self.logging.log_level).upper()
        if log_level in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            self.logging.log_level = log_level
        else:
            logger.warning(f"Invalid log level: {log_level}, using default")
        self.logging.log_dir = os.getenv("LOG_DIR", self.logging.log_dir)

        # API
        self.api.host = os.getenv("API_HOST", self.api.host)
        try:
            self.api.port = int(os.getenv("API_PORT", self.api.port))
        except ValueError as e:
            logger.warning(f"Invalid API port, using default: {e}")

    def _validate_configuration(self):
        """Validate configuration values."""
        errors = []

        if self.camera.device_id < 0:
            errors.append("Camera device ID must be non-negative")

        if self.camera.fps <= 0:
            errors.append("Camera FPS must be positive")

        if any(dim <= 0 for dim in self.camera.resolution):
            errors.append("Camera resolution must have positive width and height")

        if self.face.model not in ("hog", "cnn"):
            errors.append("Face model must be 'hog' or 'cnn'")

        if not 0.0 < self.face.tolerance <= 1.0:
            errors.append("Face tolerance must be between 0.0 and 1.0")

        if self.attendance.recent_limit < 1:
            errors.append("Recent attendance limit must be positive")

        if self.storage.backend == "supabase" and not (self.storage.supabase_url and self.storage.supabase_key):
            errors.append("SUPABASE_URL and SUPABASE_KEY are required for the supabase backend")

        if errors:
            error_msg = "Configuration validation errors:\n" + "\n".join(f"- {error}" for error in errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.debug("Configuration validation passed")

    def ensure_directories(self):
        """Create the report and log directories."""
        for directory in (self.export.reports_directory, self.logging.log_dir):
            try:
                Path(directory).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"Could not create directory {directory}: {e}")

    def get_effective_config(self) -> dict:
        """Get complete effective configuration as dictionary, without secrets."""
        return {
            'camera': {
                'device_id': self.camera.device_id,
                'resolution': self.camera.resolution,
                'fps': self.camera.fps,
            },
            'face': {
                'model': self.face.model,
                'tolerance': self.face.tolerance,
                'descriptor_length': self.face.descriptor_length,
            },
            'attendance': {
                'late_cutoff': self.attendance.late_cutoff.strftime("%H:%M"),
                'late_escalation_threshold': self.attendance.late_escalation_threshold,
                'sampling_interval': self.attendance.sampling_interval,
                'recent_limit': self.attendance.recent_limit,
                'reconcile_mode': self.attendance.reconcile_mode,
            },
            'storage': {
                'backend': self.storage.backend,
                'database_path': self.storage.database_path,
                'supabase_url': self.storage.supabase_url,
            },
            'export': {
                'reports_directory': self.export.reports_directory,
            },
            'logging': {
                'log_level': self.logging.log_level,
                'log_dir': self.logging.log_dir,
            },
        }


# Global configuration instance with fallback
try:
    config = Config()
except Exception as e:
    logger.error(f"Failed to initialize configuration: {e}")
    config = Config.__new__(Config)
    config.camera = CameraConfig()
    config.face = FaceConfig()
    config.attendance = AttendanceConfig()
    config.storage = StorageConfig()
    config.security = SecurityConfig()
    config.export = ExportConfig()
    config.logging = LoggingConfig()
    config.api = ApiConfig()
    logger.warning("Using fallback configuration")


def validate_config(cfg: Optional[Config] = None) -> bool:
    """Validate current configuration."""
    try:
        (cfg or config)._validate_configuration()
        return True
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        return False

"""Camera acquisition for the attendance session."""
from .stream_handler import CameraStream
__all__ = ['CameraStream']

"""Face descriptor handling and matching.

The detector module needs the face_recognition library and is imported
directly (``from faces.face_detector import FaceDetector``).
"""
from .descriptor import DESCRIPTOR_LENGTH, parse_descriptor, serialize_descriptor, face_distance
from .face_matcher import FaceMatcher, MatchResult
__all__ = [
    'DESCRIPTOR_LENGTH', 'parse_descriptor', 'serialize_descriptor', 'face_distance',
    'FaceMatcher', 'MatchResult',
]

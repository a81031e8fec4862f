"""
Exception types shared by the attendance tracker.
"""


class AttendanceError(Exception):
    """Base class for attendance tracker errors."""


class AcquisitionError(AttendanceError):
    """Camera or face model could not be acquired."""


class DescriptorError(AttendanceError):
    """A face descriptor could not be extracted or parsed."""


class StorageError(AttendanceError):
    """The persistence backend rejected or failed a call."""


class AuthorizationError(AttendanceError):
    """Password re-entry failed for a protected operation."""

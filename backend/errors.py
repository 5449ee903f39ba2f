"""
Study Tracker - Error kinds surfaced to callers
"""

from typing import Optional


class StudyTrackerError(Exception):
    """Base class for domain errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(StudyTrackerError):
    """Requested row does not exist."""

    status_code = 404


class ValidationError(StudyTrackerError):
    """Malformed snapshot, condition or date. Raised before any store access."""

    status_code = 400


class StoreError(StudyTrackerError):
    """Underlying persistence failure (connectivity, constraint violation)."""

    status_code = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class CollaboratorError(StudyTrackerError):
    """The aggregation routine failed."""

    status_code = 502

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

"""
Exception hierarchy for the verification subsystem.

Liveliness and matching never raise for malformed input; they return
sentinels instead. The classes below cover the conditions that are truly
exceptional: camera acquisition, model loading, misuse of the session
state machine and transport failures during submit.
"""

from typing import Any, Dict, Optional


class PanchayatFaceError(Exception):
    """
    Base class for all errors raised by panchayat_face.

    Parameters
    ----------
    message : str
        Human-readable error message, safe to show to the user.
    context : dict, optional
        Extra fields for structured logging. Never holds descriptor values.
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class CameraUnavailableError(PanchayatFaceError):
    """Raised when the camera cannot be opened (permission denied, busy, missing)."""

    def __init__(self, message: str, device: Optional[int] = None) -> None:
        super().__init__(message, {"device": device} if device is not None else None)


class LandmarkModelError(PanchayatFaceError):
    """Raised when the landmark model cannot be loaded."""


class PreconditionError(PanchayatFaceError):
    """Raised when a session is started without the context its flow needs."""

    def __init__(self, message: str, field: str) -> None:
        super().__init__(message, {"field": field})
        self.field = field


class InvalidStateError(PanchayatFaceError):
    """Raised when an operation is not allowed in the current session state."""

    def __init__(self, message: str, state: str) -> None:
        super().__init__(message, {"state": state})
        self.state = state


class LivelinessIncompleteError(InvalidStateError):
    """Raised when submit is attempted before both liveliness checks pass."""


class SubmissionError(PanchayatFaceError):
    """
    Raised by a submitter when the request could not be completed.

    ``retryable`` is True for transport problems (connection refused,
    timeouts, 5xx) and False when the server understood and refused.
    """

    def __init__(self, message: str, retryable: bool = True, status: Optional[int] = None) -> None:
        context = {"retryable": retryable}
        if status is not None:
            context["status"] = status
        super().__init__(message, context)
        self.retryable = retryable
        self.status = status

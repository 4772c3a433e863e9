"""
Verification session state machine.

Ties the camera lifecycle, liveliness progress and the final submit
together for the enrollment, login and attendance flows:

    IDLE -> CAMERA_ACTIVE -> VERIFYING -> VERIFIED -> SUBMITTING -> SUCCEEDED | FAILED

Submit is only reachable from VERIFIED. cancel() returns any state to IDLE.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Optional

from panchayat_face.config.settings import SUBMIT_TIMEOUT, VERIFICATION_METHOD
from panchayat_face.core.liveness import LivelinessSnapshot, LivelinessVerifier
from panchayat_face.exceptions import (
    CameraUnavailableError,
    InvalidStateError,
    LivelinessIncompleteError,
    PreconditionError,
    SubmissionError,
)
from panchayat_face.services.api_client import FlowKind, SubmitRequest
from panchayat_face.utils.image_codec import encode_jpeg_data_url
from panchayat_face.utils.logging import setup_logger


class SessionState(Enum):
    IDLE = "idle"
    CAMERA_ACTIVE = "camera_active"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_FRAME_STATES = (SessionState.CAMERA_ACTIVE, SessionState.VERIFYING, SessionState.VERIFIED)
_STARTABLE_STATES = (SessionState.IDLE, SessionState.FAILED, SessionState.SUCCEEDED)


@dataclass
class VerificationContext:
    """
    Caller-supplied context that travels with the captured descriptor.
    """
    panchayat_id: Optional[str] = None
    voter_id: Optional[str] = None
    voter_id_last_four: Optional[str] = None
    meeting_id: Optional[str] = None

    def validate(self, flow: FlowKind):
        """
        Raise PreconditionError if the flow cannot start with this context.
        """
        if not self.panchayat_id:
            raise PreconditionError("Select a panchayat first", "panchayat_id")
        if flow is FlowKind.ENROLLMENT:
            if not self.voter_id:
                raise PreconditionError("Select a member first", "voter_id")
            return
        last_four = self.voter_id_last_four or ""
        if len(last_four) != 4 or not last_four.isalnum():
            raise PreconditionError("Enter exactly the last 4 digits of the voter ID", "voter_id_last_four")
        if flow is FlowKind.ATTENDANCE and not self.meeting_id:
            raise PreconditionError("Select a meeting first", "meeting_id")


@dataclass(frozen=True)
class SubmissionResult:
    success: bool
    message: str
    state: SessionState
    response: Dict[str, Any] = field(default_factory=dict)


def build_submit_request(flow: FlowKind, context: VerificationContext, face_descriptor, face_image=None):
    """
    Package a descriptor with its context in the shape the API expects.
    """
    if flow is FlowKind.ENROLLMENT:
        payload = {
            "voterId": context.voter_id,
            "faceDescriptor": face_descriptor,
            "faceImage": face_image,
            "panchayatId": context.panchayat_id,
        }
        return SubmitRequest(flow, "/users/register-face", payload)
    if flow is FlowKind.LOGIN:
        payload = {
            "faceDescriptor": face_descriptor,
            "panchayatId": context.panchayat_id,
            "voterIdLastFour": context.voter_id_last_four,
        }
        return SubmitRequest(flow, "/citizens/face-login", payload)
    payload = {
        "faceDescriptor": face_descriptor,
        "voterIdLastFour": context.voter_id_last_four,
        "panchayatId": context.panchayat_id,
        "faceImage": face_image,
        "verificationMethod": VERIFICATION_METHOD,
    }
    return SubmitRequest(flow, f"/gram-sabha/{context.meeting_id}/mark-attendance", payload,
                         meeting_id=context.meeting_id)


class VerificationSession:
    """
    One verification attempt for one flow.

    Frames must be fed in arrival order from a single task; sessions share
    no mutable state with each other.

    Args:
        flow: Which submit flow this session feeds
        context: Panchayat and identifiers sent with the descriptor
        submitter: Object with an async submit(SubmitRequest) -> dict
        recognizer: Object with capture_descriptor(frame) -> list or None
        camera: Optional Camera; opened on start, released on stop
        verifier: LivelinessVerifier (default thresholds when omitted)
        submit_timeout: Seconds before a pending submit is abandoned
        teardown_on_failure: Release the camera when a submit fails
    """

    def __init__(self, flow: FlowKind, context: VerificationContext, submitter, recognizer,
                 camera=None, verifier: Optional[LivelinessVerifier] = None,
                 submit_timeout: float = SUBMIT_TIMEOUT, teardown_on_failure: bool = False):
        self.flow = flow
        self.context = context
        self.submitter = submitter
        self.recognizer = recognizer
        self.camera = camera
        self.verifier = verifier or LivelinessVerifier()
        self.submit_timeout = submit_timeout
        self.teardown_on_failure = teardown_on_failure
        self.logger = setup_logger()

        self.liveliness = self.verifier.new_session()
        self.failure_reason: Optional[str] = None
        self.last_snapshot: Optional[LivelinessSnapshot] = None
        self._state = SessionState.IDLE
        self._retryable = False
        self._last_image = None
        self._pending: Optional[asyncio.Future] = None
        # Bumped on every start/cancel so late submit results can be recognised and dropped
        self._generation = 0

    @property
    def state(self) -> SessionState:
        return self._state

    def _set_state(self, state: SessionState):
        if state is not self._state:
            self.logger.info(f"{self.flow.value} session: {self._state.value} -> {state.value}")
            self._state = state

    def _reset_liveliness(self):
        self.liveliness.reset()
        self.last_snapshot = None
        self._last_image = None

    def _release_camera(self):
        if self.camera is not None:
            self.camera.release()

    def _fail(self, reason: str, retryable: bool):
        self.failure_reason = reason
        self._retryable = retryable
        if self.teardown_on_failure:
            self._release_camera()
        self._set_state(SessionState.FAILED)
        self.logger.warning(f"{self.flow.value} session failed: {reason}")
        return SubmissionResult(False, reason, self._state)

    def start_camera(self):
        """
        Start a fresh verification period. Liveliness always recalibrates from the first frame.
        """
        if self._state not in _STARTABLE_STATES:
            raise InvalidStateError(f"Cannot start camera while {self._state.value}", self._state.value)
        self.context.validate(self.flow)

        self._generation += 1
        self._reset_liveliness()
        self.failure_reason = None
        self._retryable = False

        if self.camera is not None:
            try:
                self.camera.open()
            except CameraUnavailableError as e:
                self._fail(e.message, retryable=False)
                raise
        self._set_state(SessionState.CAMERA_ACTIVE)

    def process_frame(self, landmarks, image=None, now: Optional[float] = None) -> Optional[LivelinessSnapshot]:
        """
        Feed one frame. Returns the liveliness snapshot, or None when the
        session is not accepting frames.

        Args:
            landmarks: LandmarkFrame of the frame, or None if no face was found
            image: The BGR frame itself, kept for the descriptor capture
            now: Frame timestamp in seconds
        """
        if self._state not in _FRAME_STATES:
            self.logger.debug(f"Frame ignored in state {self._state.value}")
            return None

        snapshot = self.verifier.process(landmarks, self.liveliness, now)
        self.last_snapshot = snapshot
        if image is not None:
            self._last_image = image

        if self._state is SessionState.CAMERA_ACTIVE:
            self._set_state(SessionState.VERIFYING)
        if self._state is SessionState.VERIFYING and snapshot.fully_verified:
            self._set_state(SessionState.VERIFIED)
        return snapshot

    def process_stream(self, frames: Iterable, until_verified: bool = True) -> Iterator[LivelinessSnapshot]:
        """
        Feed (landmarks, image, timestamp) tuples in order, yielding each snapshot.
        Stops when the session leaves the frame-accepting states or, with
        until_verified, once it reaches VERIFIED.
        """
        for landmarks, image, now in frames:
            snapshot = self.process_frame(landmarks, image, now)
            if snapshot is None:
                return
            yield snapshot
            if until_verified and self._state is SessionState.VERIFIED:
                return

    async def submit(self) -> SubmissionResult:
        """
        Capture a descriptor from the latest frame and hand it to the submitter.

        Raises LivelinessIncompleteError before any I/O when the liveliness
        checks have not both passed.
        """
        if self._state in (SessionState.CAMERA_ACTIVE, SessionState.VERIFYING):
            raise LivelinessIncompleteError("Complete both verification checks", self._state.value)
        if self._state is not SessionState.VERIFIED:
            raise InvalidStateError(f"Cannot submit while {self._state.value}", self._state.value)

        image = self._last_image
        face_descriptor = self.recognizer.capture_descriptor(image)
        if face_descriptor is None:
            # Recoverable: stay VERIFIED so the user can simply try again
            self.logger.info("No face found in capture frame")
            return SubmissionResult(False, "No face detected in frame. Please face the camera and try again.",
                                    self._state)

        face_image = None
        if self.flow in (FlowKind.ENROLLMENT, FlowKind.ATTENDANCE):
            face_image = encode_jpeg_data_url(image)
        request = build_submit_request(self.flow, self.context, face_descriptor, face_image)

        generation = self._generation
        self._set_state(SessionState.SUBMITTING)
        self._pending = asyncio.ensure_future(self.submitter.submit(request))
        try:
            response = await asyncio.wait_for(self._pending, timeout=self.submit_timeout)
        except asyncio.CancelledError:
            if generation != self._generation:
                return self._discarded()
            raise
        except asyncio.TimeoutError:
            if generation != self._generation:
                return self._discarded()
            return self._fail("Submission timed out", retryable=True)
        except SubmissionError as e:
            if generation != self._generation:
                return self._discarded()
            return self._fail(e.message, retryable=e.retryable)
        except Exception as e:
            if generation == self._generation:
                self._fail(f"Submission failed: {e}", retryable=False)
            raise
        finally:
            if generation == self._generation:
                self._pending = None

        if generation != self._generation:
            return self._discarded()

        if not isinstance(response, dict) or not response.get("success"):
            response = response if isinstance(response, dict) else {}
            result = self._fail(response.get("message") or "Request rejected", retryable=False)
            return SubmissionResult(False, result.message, result.state, response)

        # Success: liveliness state is discarded with the camera
        self._release_camera()
        self._reset_liveliness()
        self._set_state(SessionState.SUCCEEDED)
        return SubmissionResult(True, response.get("message", "Verification succeeded"), self._state, response)

    def _discarded(self):
        self.logger.info(f"Late {self.flow.value} submit result discarded after cancel")
        return SubmissionResult(False, "Verification cancelled", self._state)

    @property
    def can_resume(self) -> bool:
        return (self._state is SessionState.FAILED and self._retryable
                and (self.camera is None or self.camera.is_open)
                and self.liveliness.fully_verified)

    def resume(self):
        """
        Return to VERIFIED after a retryable submit failure so submit() can be called again.
        Liveliness progress from before the failure is kept.
        """
        if self._state is not SessionState.FAILED or not self._retryable:
            raise InvalidStateError("Nothing to retry; restart the camera", self._state.value)
        if self.camera is not None and not self.camera.is_open:
            raise InvalidStateError("Camera was released; restart the camera", self._state.value)
        if not self.liveliness.fully_verified:
            raise LivelinessIncompleteError("Complete both verification checks", self._state.value)
        self.failure_reason = None
        self._retryable = False
        self._set_state(SessionState.VERIFIED)

    def cancel(self):
        """
        Stop the session from any state: cancel a pending submit, release the
        camera and discard all liveliness progress.
        """
        self._generation += 1
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self._release_camera()
        self._reset_liveliness()
        self.failure_reason = None
        self._retryable = False
        self._set_state(SessionState.IDLE)

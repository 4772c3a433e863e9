import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Iterable, Iterator, Optional, Tuple

from panchayat_face.config import settings
from panchayat_face.core.landmarks import LandmarkFrame
from panchayat_face.utils.geometry import displacements, eye_aspect_ratio
from panchayat_face.utils.logging import setup_logger


@dataclass(frozen=True)
class LivelinessThresholds:
    """
    Tunable parameters of the liveliness checks.

    Values were tuned empirically for webcam FaceMesh input and usually
    need re-tuning per camera or landmark model.
    """
    left_eye: Tuple[int, ...] = settings.LEFT_EYE_INDICES
    right_eye: Tuple[int, ...] = settings.RIGHT_EYE_INDICES
    min_landmarks: int = settings.MIN_LANDMARKS
    ear_baseline_factor: float = settings.EAR_BASELINE_FACTOR
    ear_closed_ratio: float = settings.EAR_CLOSED_RATIO
    blink_min_duration: float = settings.BLINK_MIN_DURATION
    blink_max_duration: float = settings.BLINK_MAX_DURATION
    blinks_required: int = settings.BLINKS_REQUIRED
    reference_points: Tuple[int, ...] = settings.MOVEMENT_REFERENCE_POINTS
    noise_floor: float = settings.MOVEMENT_NOISE_FLOOR
    min_valid_points: int = settings.MOVEMENT_MIN_VALID_POINTS
    movement_threshold: float = settings.MOVEMENT_THRESHOLD
    history_size: int = settings.MOVEMENT_HISTORY_SIZE
    history_required: int = settings.MOVEMENT_HISTORY_REQUIRED
    movements_required: int = settings.MOVEMENTS_REQUIRED

    @classmethod
    def default(cls):
        return cls()

    @classmethod
    def strict(cls):
        """
        Wider 8-of-15 movement window over eight reference points.
        """
        return cls(
            reference_points=settings.STRICT_MOVEMENT_REFERENCE_POINTS,
            noise_floor=settings.STRICT_MOVEMENT_NOISE_FLOOR,
            min_valid_points=settings.STRICT_MOVEMENT_MIN_VALID_POINTS,
            movement_threshold=settings.STRICT_MOVEMENT_THRESHOLD,
            history_size=settings.STRICT_MOVEMENT_HISTORY_SIZE,
            history_required=settings.STRICT_MOVEMENT_HISTORY_REQUIRED,
        )

    @classmethod
    def from_profile(cls, name: str):
        if name == "strict":
            return cls.strict()
        if name == "default":
            return cls.default()
        raise ValueError(f"Unknown liveliness profile: {name}")


@dataclass
class CheckProgress:
    """
    Progress of one liveliness check. Once verified it stays verified.
    """
    count: int = 0
    verified: bool = False

    def register(self, required: int) -> bool:
        """
        Count one confirmed event. Returns True when this event verified the check.
        """
        if self.verified:
            return False
        self.count += 1
        if self.count >= required:
            self.verified = True
            return True
        return False


@dataclass
class LivelinessSession:
    """
    Mutable per-session detection state.

    Owned by one verification flow for one camera-active period and
    passed explicitly into every LivelinessVerifier.process() call.
    """
    history_size: int = settings.MOVEMENT_HISTORY_SIZE
    baseline_ear: Optional[float] = None
    blink_start_time: Optional[float] = None
    previous_landmarks: Optional[LandmarkFrame] = None
    movement_history: Deque[bool] = field(default=None)
    blink_check: CheckProgress = field(default_factory=CheckProgress)
    movement_check: CheckProgress = field(default_factory=CheckProgress)

    def __post_init__(self):
        if self.movement_history is None:
            self.movement_history = deque(maxlen=self.history_size)

    @classmethod
    def for_thresholds(cls, thresholds: LivelinessThresholds):
        return cls(history_size=thresholds.history_size)

    def reset(self):
        """
        Discard all progress, baseline and buffers.
        Called when the camera stops or the session restarts.
        """
        self.baseline_ear = None
        self.blink_start_time = None
        self.previous_landmarks = None
        self.movement_history = deque(maxlen=self.history_size)
        self.blink_check = CheckProgress()
        self.movement_check = CheckProgress()

    @property
    def fully_verified(self) -> bool:
        return self.blink_check.verified and self.movement_check.verified


@dataclass(frozen=True)
class LivelinessSnapshot:
    """
    Result of processing one frame.
    """
    face_detected: bool
    blink_count: int
    blink_verified: bool
    movement_count: int
    movement_verified: bool
    blink_detected: bool = False
    movement_detected: bool = False

    @property
    def fully_verified(self) -> bool:
        return self.blink_verified and self.movement_verified

    @classmethod
    def of(cls, session: LivelinessSession, face_detected: bool,
           blink_detected: bool = False, movement_detected: bool = False):
        return cls(
            face_detected=face_detected,
            blink_count=session.blink_check.count,
            blink_verified=session.blink_check.verified,
            movement_count=session.movement_check.count,
            movement_verified=session.movement_check.verified,
            blink_detected=blink_detected,
            movement_detected=movement_detected,
        )

    def to_dict(self):
        """
        Verification state in the shape the web client renders.
        """
        return {
            "faceDetected": self.face_detected,
            "blink": {"verified": self.blink_verified, "count": self.blink_count},
            "movement": {"verified": self.movement_verified, "count": self.movement_count},
        }


class LivelinessVerifier:
    """
    Lightweight liveliness detection using:
    - Eye blink detection (EAR with a per-session baseline and duration window)
    - Sustained macro movement of facial reference points

    The verifier itself is stateless; all progress lives in the
    LivelinessSession passed to process().
    """

    def __init__(self, thresholds: Optional[LivelinessThresholds] = None):
        self.thresholds = thresholds or LivelinessThresholds.from_profile(settings.LIVELINESS_PROFILE)
        self.logger = setup_logger()

    def new_session(self) -> LivelinessSession:
        return LivelinessSession.for_thresholds(self.thresholds)

    def process(self, frame: Optional[LandmarkFrame], session: LivelinessSession,
                now: Optional[float] = None) -> LivelinessSnapshot:
        """
        Advance the session by one frame and return the resulting snapshot.

        Args:
            frame: Landmarks of the current frame, or None when no face was found
            session: Session state to update in place
            now: Frame timestamp in seconds (monotonic clock when omitted)
        """
        # Missing landmark data never decays progress
        if frame is None or len(frame) < self.thresholds.min_landmarks:
            return LivelinessSnapshot.of(session, face_detected=False)

        if now is None:
            now = time.monotonic()

        blinked = self._detect_blink(frame, session, now)
        moved = self._detect_movement(frame, session)

        if blinked:
            self.logger.debug(f"Blink confirmed ({session.blink_check.count + 1})")
            if session.blink_check.register(self.thresholds.blinks_required):
                self.logger.info("Blink check verified")
        if moved:
            if session.movement_check.register(self.thresholds.movements_required):
                self.logger.info("Movement check verified")

        return LivelinessSnapshot.of(session, face_detected=True,
                                     blink_detected=blinked, movement_detected=moved)

    def run(self, frames: Iterable[Tuple[Optional[LandmarkFrame], Optional[float]]],
            session: LivelinessSession) -> Iterator[LivelinessSnapshot]:
        """
        Process a stream of (frame, timestamp) pairs in order, yielding a snapshot per frame.
        """
        for frame, now in frames:
            yield self.process(frame, session, now)

    def _average_ear(self, frame: LandmarkFrame) -> Optional[float]:
        left = eye_aspect_ratio(frame.take(self.thresholds.left_eye))
        right = eye_aspect_ratio(frame.take(self.thresholds.right_eye))
        if left is None or right is None:
            return None
        return (left + right) / 2.0

    def _detect_blink(self, frame: LandmarkFrame, session: LivelinessSession, now: float) -> bool:
        ear = self._average_ear(frame)
        if ear is None:
            return False

        # First usable frame calibrates the open-eye baseline
        if session.baseline_ear is None:
            session.baseline_ear = ear * self.thresholds.ear_baseline_factor
            self.logger.debug(f"EAR baseline calibrated: {session.baseline_ear:.4f}")
            return False

        if ear < session.baseline_ear * self.thresholds.ear_closed_ratio:
            if session.blink_start_time is None:
                session.blink_start_time = now
            return False

        if session.blink_start_time is not None:
            duration = now - session.blink_start_time
            session.blink_start_time = None
            # Rejects both flicker and deliberate long closures
            return self.thresholds.blink_min_duration < duration < self.thresholds.blink_max_duration

        return False

    def _detect_movement(self, frame: LandmarkFrame, session: LivelinessSession) -> bool:
        previous = session.previous_landmarks
        if previous is None:
            session.previous_landmarks = frame
            return False

        t = self.thresholds
        moved_by = displacements(frame.take(t.reference_points), previous.take(t.reference_points))
        valid = moved_by[moved_by > t.noise_floor]

        # The anchor holds through sub-noise frames so slow drift still adds up
        if len(valid) < t.min_valid_points:
            return False

        movement_detected = float(valid.mean()) > t.movement_threshold
        session.movement_history.append(movement_detected)
        session.previous_landmarks = frame

        # Sustained motion only: most of the recent window must have moved
        return sum(session.movement_history) >= t.history_required

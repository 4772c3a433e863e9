"""
Shared fixtures: synthetic FaceMesh frames and fake collaborators.
"""
import os
import tempfile

# Keep data/, logs/ of the test run out of the source tree
os.environ.setdefault("PANCHAYAT_FACE_HOME", tempfile.mkdtemp(prefix="panchayat_face_"))

import asyncio

import numpy as np
import pytest

from panchayat_face.core.landmarks import LandmarkFrame
from panchayat_face.database.db_manager import DatabaseManager
from panchayat_face.exceptions import CameraUnavailableError

LEFT_EYE = (33, 160, 158, 133, 153, 144)
RIGHT_EYE = (362, 385, 387, 263, 373, 380)
OPEN_EYE_HALF_HEIGHT = 0.015  # EAR = 0.30
CLOSED_EYE_HALF_HEIGHT = 0.002  # EAR = 0.04


def _place_eye(points, indices, left_x, y, half_height):
    outer, top1, top2, inner, bottom2, bottom1 = indices
    points[outer] = (left_x, y)
    points[top1] = (left_x + 0.03, y - half_height)
    points[top2] = (left_x + 0.07, y - half_height)
    points[inner] = (left_x + 0.10, y)
    points[bottom2] = (left_x + 0.07, y + half_height)
    points[bottom1] = (left_x + 0.03, y + half_height)


def build_frame(eyes_open=True, offset=(0.0, 0.0), count=468, moved_points=None):
    """
    Synthetic landmark frame.

    offset translates the whole face; with moved_points only those indices
    are translated.
    """
    points = np.tile([0.5, 0.6], (count, 1)).astype(float)
    # Spread the non-eye points so corners differ from each other
    points[:, 0] += np.linspace(-0.2, 0.2, count)
    half_height = OPEN_EYE_HALF_HEIGHT if eyes_open else CLOSED_EYE_HALF_HEIGHT
    if count >= 468:
        _place_eye(points, LEFT_EYE, 0.30, 0.40, half_height)
        _place_eye(points, RIGHT_EYE, 0.60, 0.40, half_height)
    if moved_points is None:
        points += offset
    else:
        for index in moved_points:
            points[index] += offset
    return LandmarkFrame(points)


@pytest.fixture
def make_frame():
    return build_frame


@pytest.fixture
def live_frames():
    """
    Frames of a live subject: the head sways every frame and the eyes blink
    for ~90 ms once every 8 frames. Both checks pass within 32 frames.
    """
    def _frames(n=32, step=0.03, start=0.0):
        sequence = []
        for i in range(n):
            eyes_open = i == 0 or i % 8 not in (3, 4, 5)
            offset = (0.004 * (i % 2), 0.0)
            sequence.append((build_frame(eyes_open=eyes_open, offset=offset), start + i * step))
        return sequence
    return _frames


@pytest.fixture
def db_manager(tmp_path):
    db = DatabaseManager(tmp_path / "test.db")
    db.initialize_db()
    return db


@pytest.fixture
def blank_image():
    return np.zeros((48, 64, 3), dtype=np.uint8)


class FakeRecognizer:
    def __init__(self, descriptor=None):
        self.descriptor = descriptor if descriptor is not None else [0.0, 0.0, 0.0, 0.0]
        self.calls = 0

    def capture_descriptor(self, frame):
        self.calls += 1
        if frame is None:
            return None
        return self.descriptor


class FakeSubmitter:
    """
    Records requests; responds with a fixed dict, raises, or waits on an event.
    """
    def __init__(self, response=None, error=None, wait=False):
        self.response = response if response is not None else {"success": True, "message": "ok"}
        self.error = error
        self.wait = wait
        self.requests = []
        self.release = None

    async def submit(self, request):
        self.requests.append(request)
        if self.wait:
            # Created here so it binds to the running loop
            self.release = asyncio.Event()
            await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.response


class FakeCamera:
    def __init__(self, fail=False):
        self.fail = fail
        self.is_open = False
        self.open_calls = 0
        self.release_calls = 0

    def open(self):
        self.open_calls += 1
        if self.fail:
            raise CameraUnavailableError("Camera permission denied", device=0)
        self.is_open = True

    def release(self):
        self.release_calls += 1
        self.is_open = False


@pytest.fixture
def fake_recognizer():
    return FakeRecognizer()


@pytest.fixture
def fake_camera():
    return FakeCamera()


@pytest.fixture
def make_submitter():
    return FakeSubmitter


@pytest.fixture
def make_camera():
    return FakeCamera


@pytest.fixture
def make_recognizer():
    return FakeRecognizer

import queue
import time
import cv2
from panchayat_face.config.settings import CAMERA_INDEX, FRAME_WIDTH, FRAME_HEIGHT, FRAME_POLL_INTERVAL
from panchayat_face.exceptions import CameraUnavailableError
from panchayat_face.utils.logging import setup_logger


class Camera:
    """
    Webcam wrapper around cv2.VideoCapture.
    """

    def __init__(self, device_index=CAMERA_INDEX, width=FRAME_WIDTH, height=FRAME_HEIGHT, mirror=True):
        self.device_index = device_index
        self.width = width
        self.height = height
        self.mirror = mirror
        self.logger = setup_logger()
        self._cap = None

    @property
    def is_open(self):
        return self._cap is not None

    def open(self):
        """
        Acquire the device. Raises CameraUnavailableError if it cannot be opened.
        """
        if self._cap is not None:
            return
        cap = cv2.VideoCapture(self.device_index)
        if not cap.isOpened():
            cap.release()
            self.logger.error(f"Failed to open webcam {self.device_index}")
            raise CameraUnavailableError(
                "Could not access webcam. Check that it is connected, permitted and not in use by another application.",
                device=self.device_index,
            )
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._cap = cap
        self.logger.info(f"Webcam {self.device_index} opened")

    def read(self):
        """
        Returns the next BGR frame, or None if the device produced nothing.
        """
        if self._cap is None:
            return None
        ret, frame = self._cap.read()
        if not ret:
            return None
        # Flip frame horizontally for mirror effect
        return cv2.flip(frame, 1) if self.mirror else frame

    def release(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            self.logger.info(f"Webcam {self.device_index} released")


def read_frame(camera, interval=FRAME_POLL_INTERVAL):
    """
    Read one frame. When an open camera produced nothing, wait one poll
    interval before returning None.
    """
    frame = camera.read()
    if frame is None and camera.is_open:
        time.sleep(interval)
    return frame


def poll_frames(camera, interval=FRAME_POLL_INTERVAL, should_stop=None):
    """
    Pull frames from an open camera at a fixed interval until should_stop() is true
    or the camera is released.
    """
    while camera.is_open and not (should_stop and should_stop()):
        started = time.monotonic()
        frame = camera.read()
        if frame is not None:
            yield frame
        remaining = interval - (time.monotonic() - started)
        if remaining > 0:
            time.sleep(remaining)


class FrameStream:
    """
    Adapts push callbacks (e.g. a capture thread) into an ordered pull iterator.

    push() may be called from any thread; iteration yields items in
    arrival order and ends after close().
    """

    _CLOSED = object()

    def __init__(self, maxsize=0):
        self._queue = queue.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self):
        return self._closed

    def push(self, item):
        """
        Enqueue an item. Items pushed after close() are dropped.
        """
        if self._closed:
            return False
        self._queue.put(item)
        return True

    def close(self):
        if not self._closed:
            self._closed = True
            self._queue.put(self._CLOSED)

    def __iter__(self):
        while True:
            item = self._queue.get()
            if item is self._CLOSED:
                return
            yield item

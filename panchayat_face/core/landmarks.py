import numpy as np
from panchayat_face.config.settings import MIN_LANDMARKS


class LandmarkFrame:
    """
    One frame of face landmarks in normalized [0, 1] image coordinates.

    Indices follow the FaceMesh topology. A frame is only usable for
    liveliness when it carries at least MIN_LANDMARKS points.
    """

    __slots__ = ("points",)

    def __init__(self, points):
        points = np.array(points, dtype=float)
        if points.size == 0:
            points = points.reshape(0, 2)
        # Drop z when the source provides 3-D landmarks
        self.points = points.reshape(len(points), -1)[:, :2]
        self.points.setflags(write=False)

    @classmethod
    def from_landmarks(cls, landmarks):
        """
        Build from objects exposing .x and .y (MediaPipe NormalizedLandmark).
        """
        return cls([(lm.x, lm.y) for lm in landmarks])

    def __len__(self):
        return len(self.points)

    def __getitem__(self, index):
        return self.points[index]

    @property
    def is_usable(self):
        return len(self.points) >= MIN_LANDMARKS

    def take(self, indices):
        """
        Return the (len(indices), 2) array of the selected points.
        """
        return self.points[list(indices)]

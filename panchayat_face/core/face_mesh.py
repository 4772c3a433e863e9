import cv2
from panchayat_face.config.settings import FACE_LANDMARKER_MODEL
from panchayat_face.core.landmarks import LandmarkFrame
from panchayat_face.exceptions import LandmarkModelError
from panchayat_face.utils.logging import setup_logger

# Try to import MediaPipe - handle both old and new API
try:
    import mediapipe as mp
    # Check if solutions API is available (older versions)
    USE_LEGACY_API = hasattr(mp, 'solutions')
except ImportError:
    raise ImportError("MediaPipe is not installed. Please install it with: pip install mediapipe")


class FaceMeshLandmarkSource:
    """
    Turns BGR video frames into LandmarkFrame values using MediaPipe FaceMesh.
    At most one face is tracked.
    """

    def __init__(self, model_path=FACE_LANDMARKER_MODEL):
        self.logger = setup_logger()
        self.USE_LEGACY_API = USE_LEGACY_API

        if USE_LEGACY_API:
            # Legacy API (MediaPipe < 0.10 and the 0.10.x builds that still ship solutions)
            self.face_mesh = mp.solutions.face_mesh.FaceMesh(
                static_image_mode=False,
                max_num_faces=1,
                refine_landmarks=True,
                min_detection_confidence=0.5,
                min_tracking_confidence=0.5
            )
            self.face_landmarker = None
        else:
            # Tasks API needs a downloaded face_landmarker.task bundle
            if not model_path.exists():
                raise LandmarkModelError(
                    f"Face landmarker model not found: {model_path}",
                    {"model_path": str(model_path)},
                )
            from mediapipe.tasks.python import BaseOptions
            from mediapipe.tasks.python import vision
            options = vision.FaceLandmarkerOptions(
                base_options=BaseOptions(model_asset_path=str(model_path)),
                num_faces=1,
                min_face_detection_confidence=0.5,
                min_tracking_confidence=0.5,
            )
            self.face_mesh = None
            self.face_landmarker = vision.FaceLandmarker.create_from_options(options)
        self.logger.info(f"Landmark source ready (legacy API: {USE_LEGACY_API})")

    def detect(self, frame):
        """
        Returns the LandmarkFrame of the face in frame, or None if no face was found.
        """
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

        if self.USE_LEGACY_API:
            results = self.face_mesh.process(rgb)
            if not results.multi_face_landmarks:
                return None
            landmarks = results.multi_face_landmarks[0].landmark
        else:
            mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
            detection_result = self.face_landmarker.detect(mp_image)
            if not detection_result.face_landmarks:
                return None
            landmarks = detection_result.face_landmarks[0]

        return LandmarkFrame.from_landmarks(landmarks)

    def close(self):
        if self.face_mesh is not None:
            self.face_mesh.close()
        if self.face_landmarker is not None:
            self.face_landmarker.close()

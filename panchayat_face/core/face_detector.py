from insightface.app import FaceAnalysis
from panchayat_face.config.settings import FACE_MODEL_NAME, CTX_ID

class FaceDetector:
    """
    Face detection and descriptor extraction using InsightFace.
    """
    def __init__(self, model_name=FACE_MODEL_NAME, ctx_id=CTX_ID):
        self._model = FaceAnalysis(name=model_name)
        self._model.prepare(ctx_id=ctx_id)

    def detect(self, frame):
        """
        Detect faces in a BGR frame.
        Returns a list of face objects carrying .bbox and .embedding.
        """
        return self._model.get(frame)

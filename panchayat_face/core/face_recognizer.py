import numpy as np
from panchayat_face.utils.logging import setup_logger

class FaceRecognizer:
    """
    Captures a face descriptor from a single frame.
    """
    def __init__(self, detector=None):
        self.logger = setup_logger()
        if detector is None:
            # Deferred so importing this module does not load the model stack
            from panchayat_face.core.face_detector import FaceDetector
            detector = FaceDetector()
        self.detector = detector

    @staticmethod
    def extract_embedding(face):
        """
        Returns the descriptor of a detected face as a float vector.
        """
        embedding = face.embedding
        return np.asarray(embedding, dtype="float32")

    def capture_descriptor(self, frame):
        """
        Returns the descriptor as a list of floats, or None unless exactly one face is in frame.
        """
        if frame is None:
            return None
        faces = self.detector.detect(frame)
        if len(faces) != 1:
            self.logger.info(f"Descriptor capture skipped: {len(faces)} face(s) in frame")
            return None
        return [float(v) for v in self.extract_embedding(faces[0])]

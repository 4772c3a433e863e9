import sqlite3
import time
from pathlib import Path
from panchayat_face.config.paths import FACES_DIR
from panchayat_face.config.settings import MATCH_THRESHOLD, MATCH_POLICY
from panchayat_face.core.matcher import find_match
from panchayat_face.database.db_manager import DatabaseManager
from panchayat_face.database.models import Citizen, FaceTemplate, safe_filename
from panchayat_face.utils.image_codec import decode_base64_image
from panchayat_face.utils.logging import setup_logger


def is_valid_descriptor(descriptor):
    """
    A descriptor must be a non-empty list of numbers.
    """
    if not isinstance(descriptor, (list, tuple)) or len(descriptor) == 0:
        return False
    return all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in descriptor)


class EnrollmentService:
    """
    Handles face enrollment of registered citizens.
    """
    def __init__(self, db_manager=None, faces_dir=None, embeddings_dir=None,
                 match_threshold=MATCH_THRESHOLD, match_policy=MATCH_POLICY):
        self.logger = setup_logger()
        self.db_manager = db_manager or DatabaseManager()
        self.db_manager.ensure_initialized()
        self.citizen_model = Citizen(self.db_manager)
        self.template_model = FaceTemplate(self.db_manager, embeddings_dir)
        self.faces_dir = Path(faces_dir) if faces_dir is not None else FACES_DIR
        self.match_threshold = match_threshold
        self.match_policy = match_policy

    def add_citizen(self, voter_id: str, panchayat_id: str, name: str = None):
        """
        Add a citizen to a panchayat's registry.
        """
        voter_id = (voter_id or "").strip()
        panchayat_id = (panchayat_id or "").strip()
        if not voter_id or not panchayat_id:
            return {"success": False, "message": "Voter ID and panchayatId are required"}
        try:
            self.citizen_model.create(voter_id, panchayat_id, name.strip() if name else None)
        except sqlite3.IntegrityError:
            return {"success": False, "message": "Member already exists in this panchayat"}
        self.logger.info(f"Added citizen {voter_id} to panchayat {panchayat_id}")
        return {"success": True, "message": "Member added successfully"}

    def list_citizens(self, panchayat_id: str = None):
        return self.citizen_model.get_all(panchayat_id)

    def check_duplicate_face(self, face_descriptor, panchayat_id: str, voter_id: str):
        """
        Check the descriptor against every other enrolled citizen of the same panchayat.
        Returns the MatchResult of the conflicting citizen, or None.
        """
        candidates = self.template_model.get_descriptors(panchayat_id, exclude_voter_id=voter_id)
        match = find_match(face_descriptor, candidates, self.match_threshold, self.match_policy)
        if match:
            self.logger.info(f"Face distance with {match.identity_id}: {match.distance:.4f}")
        return match

    def _save_face_image(self, voter_id: str, panchayat_id: str, face_image: str):
        raw = decode_base64_image(face_image)
        if raw is None:
            self.logger.warning(f"Ignoring undecodable face image for {voter_id}")
            return None

        faces_dir = self.faces_dir / safe_filename(panchayat_id) / "faces"
        faces_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{safe_filename(voter_id)}_{int(time.time() * 1000)}.jpg"
        (faces_dir / filename).write_bytes(raw)
        face_image_path = f"/uploads/{safe_filename(panchayat_id)}/faces/{filename}"
        self.logger.info(f"Face image saved at: {face_image_path}")
        return face_image_path

    def register_face(self, voter_id: str, face_descriptor, panchayat_id: str, face_image: str = None):
        """
        Enroll (or re-enroll) a citizen's face.

        The enrollment is rejected when the face is already registered to
        another citizen of the same panchayat.
        """
        self.logger.info(f"Register face request received for voter ID: {voter_id}")

        if not panchayat_id:
            return {"success": False, "message": "PanchayatId is required for face registration"}
        if not voter_id:
            return {"success": False, "message": "Voter ID is required for face registration"}
        if not is_valid_descriptor(face_descriptor):
            return {"success": False, "message": "Valid face descriptor is required for registration"}

        citizen = self.citizen_model.get(voter_id, panchayat_id)
        if not citizen:
            return {"success": False, "message": "Member not found"}

        existing_match = self.check_duplicate_face(face_descriptor, panchayat_id, voter_id)
        if existing_match:
            conflict = self.citizen_model.get(existing_match.identity_id, panchayat_id) or {}
            self.logger.warning(
                f"Duplicate face detected during enrollment. "
                f"Attempted voter_id: {voter_id}, Matched existing: {existing_match.identity_id}"
            )
            return {
                "success": False,
                "message": (
                    f"This face appears to be already registered with voter ID: "
                    f"{existing_match.identity_id} ({conflict.get('name')})"
                ),
                "conflictVoterId": existing_match.identity_id,
            }

        face_image_path = self._save_face_image(voter_id, panchayat_id, face_image) if face_image else None

        self.template_model.save(voter_id, panchayat_id, face_descriptor)
        self.citizen_model.mark_registered(voter_id, panchayat_id, face_image_path)
        action = "Re-enrolled" if citizen['is_registered'] else "Enrolled"
        self.logger.info(f"{action} face for {voter_id} in panchayat {panchayat_id}")

        response = {
            "success": True,
            "message": "Face registered successfully",
            "user": {
                "name": citizen['name'],
                "voterIdNumber": voter_id,
                "panchayatId": panchayat_id,
                "isRegistered": True,
                "faceImagePath": face_image_path or citizen['face_image_path'],
            },
        }
        if face_image_path:
            response["attachmentId"] = face_image_path
        return response

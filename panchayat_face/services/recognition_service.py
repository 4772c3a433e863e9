from panchayat_face.config.settings import MATCH_THRESHOLD, MATCH_POLICY, VERIFICATION_METHOD
from panchayat_face.core.matcher import find_match
from panchayat_face.database.db_manager import DatabaseManager
from panchayat_face.database.models import Citizen, FaceTemplate, Attendance
from panchayat_face.services.enrollment_service import is_valid_descriptor
from panchayat_face.utils.logging import setup_logger


def is_valid_last_four(value):
    return isinstance(value, str) and len(value) == 4 and value.isalnum()


class RecognitionService:
    """
    Identifies citizens by face within a panchayat, for login and meeting attendance.
    """
    def __init__(self, db_manager=None, embeddings_dir=None,
                 match_threshold=MATCH_THRESHOLD, match_policy=MATCH_POLICY):
        self.logger = setup_logger()
        self.db_manager = db_manager or DatabaseManager()
        self.db_manager.ensure_initialized()
        self.citizen_model = Citizen(self.db_manager)
        self.template_model = FaceTemplate(self.db_manager, embeddings_dir)
        self.attendance_model = Attendance(self.db_manager)
        self.match_threshold = match_threshold
        self.match_policy = match_policy

    def identify(self, face_descriptor, panchayat_id: str, voter_id_last_four: str):
        """
        Find the citizen matching a descriptor among the panchayat's registered
        citizens whose voter ID ends with voter_id_last_four.

        Returns (citizen, match, error_message); exactly one of citizen and
        error_message is set.
        """
        if not is_valid_descriptor(face_descriptor):
            return None, None, "Valid face descriptor is required for authentication"
        if not is_valid_last_four(voter_id_last_four):
            return None, None, "Last 4 digits of voter ID are required"
        if not panchayat_id:
            return None, None, "Panchayat not found"

        citizens = self.citizen_model.find_registered_by_last_four(panchayat_id, voter_id_last_four)
        if not citizens:
            return None, None, "No registered users found with matching voter ID"

        candidates = self.template_model.get_descriptors(
            panchayat_id, voter_ids=[c['voter_id'] for c in citizens]
        )
        match = find_match(face_descriptor, candidates, self.match_threshold, self.match_policy)
        if match is None:
            self.logger.info(f"No face match in panchayat {panchayat_id} among {len(candidates)} candidate(s)")
            return None, None, "Face not recognized. Please try again or contact administrator."

        self.logger.info(f"Face distance with {match.identity_id}: {match.distance:.4f}")
        citizen = next(c for c in citizens if c['voter_id'] == match.identity_id)
        return citizen, match, None

    def face_login(self, face_descriptor, panchayat_id: str, voter_id_last_four: str):
        """
        Authenticate a citizen by face.
        """
        citizen, match, error = self.identify(face_descriptor, panchayat_id, voter_id_last_four)
        if error:
            return {"success": False, "message": error}

        self.logger.info(f"Citizen {citizen['voter_id']} logged in by face")
        return {
            "success": True,
            "user": {
                "name": citizen['name'],
                "voterIdNumber": citizen['voter_id'],
                "panchayatId": citizen['panchayat_id'],
                "isRegistered": bool(citizen['is_registered']),
            },
        }

    def mark_attendance(self, meeting_id: str, face_descriptor, voter_id_last_four: str,
                        panchayat_id: str, face_image: str = None,
                        verification_method: str = VERIFICATION_METHOD):
        """
        Mark a citizen present at a meeting after identifying them by face.
        """
        if not meeting_id:
            return {"success": False, "message": "Gram Sabha meeting not found"}
        # The capture image is accepted for parity with the web client but not stored
        self.logger.info(f"Attendance request for meeting {meeting_id}, face image received: {'Yes' if face_image else 'No'}")

        citizen, match, error = self.identify(face_descriptor, panchayat_id, voter_id_last_four)
        if error:
            return {"success": False, "message": error}

        if self.attendance_model.get(meeting_id, citizen['voter_id'], panchayat_id):
            return {"success": False, "message": "Attendance already marked for this user"}

        record = self.attendance_model.create(
            meeting_id, citizen['voter_id'], panchayat_id,
            verification_method, match_distance=match.distance
        )
        self.logger.info(f"Attendance marked for {citizen['voter_id']} at meeting {meeting_id}")
        return {
            "success": True,
            "message": "Attendance marked successfully",
            "data": {
                "user": {"name": citizen['name'], "voterIdNumber": citizen['voter_id']},
                "attendance": {
                    "checkInTime": record['check_in_time'],
                    "verificationMethod": record['verification_method'],
                    "status": record['status'],
                },
            },
        }

    def get_attendance(self, meeting_id: str, panchayat_id: str):
        return self.attendance_model.get_by_meeting(meeting_id, panchayat_id)

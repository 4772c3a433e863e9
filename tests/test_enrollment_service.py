"""
Unit tests for EnrollmentService
"""
import pytest

from panchayat_face.database.models import FaceTemplate, safe_filename
from panchayat_face.services.enrollment_service import EnrollmentService, is_valid_descriptor

FACE_A = [0.0, 0.0, 0.0, 0.0]
FACE_B = [0.1, 0.0, 0.0, 0.0]
FACE_C = [0.6, 0.0, 0.0, 0.0]

# JPEG header only; the service stores whatever bytes it receives
IMAGE = "data:image/jpeg;base64,/9j/4AAQSkZJRgABAQ=="


@pytest.fixture
def service(db_manager, tmp_path):
    service = EnrollmentService(db_manager, faces_dir=tmp_path / "uploads", embeddings_dir=tmp_path / "embeddings")
    for voter_id, name in [("VOTER0001", "Asha"), ("VOTER0002", "Bhanu"), ("VOTER0003", "Chitra")]:
        service.add_citizen(voter_id, "P1", name)
    return service


class TestAddCitizen:
    def test_duplicate_member_rejected(self, service):
        result = service.add_citizen("VOTER0001", "P1", "Asha")

        assert result == {"success": False, "message": "Member already exists in this panchayat"}

    def test_same_voter_in_other_panchayat_allowed(self, service):
        assert service.add_citizen("VOTER0001", "P2", "Asha")["success"] is True

    def test_missing_ids_rejected(self, service):
        assert service.add_citizen("", "P1")["success"] is False

    def test_list_is_scoped_to_panchayat(self, service):
        service.add_citizen("VOTER0009", "P2", "Dev")

        assert [c['voter_id'] for c in service.list_citizens("P2")] == ["VOTER0009"]
        assert len(service.list_citizens()) == 4


class TestRegisterFace:
    def test_first_enrollment_succeeds(self, service):
        result = service.register_face("VOTER0001", FACE_A, "P1")

        assert result["success"] is True
        assert result["message"] == "Face registered successfully"
        assert result["user"]["isRegistered"] is True
        assert "attachmentId" not in result

    def test_near_duplicate_rejected_citing_existing_member(self, service):
        service.register_face("VOTER0001", FACE_A, "P1")

        result = service.register_face("VOTER0002", FACE_B, "P1")

        assert result["success"] is False
        assert result["conflictVoterId"] == "VOTER0001"
        assert result["message"] == "This face appears to be already registered with voter ID: VOTER0001 (Asha)"
        assert service.citizen_model.get("VOTER0002", "P1")["is_registered"] == 0

    def test_distinct_face_accepted(self, service):
        service.register_face("VOTER0001", FACE_A, "P1")

        result = service.register_face("VOTER0003", FACE_C, "P1")

        assert result["success"] is True

    def test_duplicate_check_ignores_other_panchayats(self, service):
        service.add_citizen("VOTER0001", "P2", "Asha")
        service.register_face("VOTER0001", FACE_A, "P2")

        assert service.register_face("VOTER0002", FACE_B, "P1")["success"] is True

    def test_re_enrollment_replaces_template(self, service):
        service.register_face("VOTER0001", FACE_A, "P1")

        result = service.register_face("VOTER0001", FACE_C, "P1")
        descriptors = service.template_model.get_descriptors("P1")

        assert result["success"] is True
        assert len(descriptors) == 1
        assert descriptors[0][0] == "VOTER0001"
        assert descriptors[0][1].tolist() == FACE_C

    def test_face_image_saved_under_panchayat(self, service, tmp_path):
        result = service.register_face("VOTER0001", FACE_A, "P1", face_image=IMAGE)

        path = result["user"]["faceImagePath"]
        assert path.startswith("/uploads/P1/faces/VOTER0001_")
        assert result["attachmentId"] == path
        saved = list((tmp_path / "uploads" / "P1" / "faces").iterdir())
        assert len(saved) == 1
        assert saved[0].read_bytes().startswith(b"\xff\xd8")

    def test_undecodable_image_is_skipped(self, service):
        result = service.register_face("VOTER0001", FACE_A, "P1", face_image="not base64!")

        assert result["success"] is True
        assert result["user"]["faceImagePath"] is None

    @pytest.mark.parametrize("voter_id, descriptor, panchayat_id, message", [
        ("VOTER0001", FACE_A, None, "PanchayatId is required for face registration"),
        (None, FACE_A, "P1", "Voter ID is required for face registration"),
        ("VOTER0001", [], "P1", "Valid face descriptor is required for registration"),
        ("VOTER0001", ["x", 1], "P1", "Valid face descriptor is required for registration"),
        ("NOBODY", FACE_A, "P1", "Member not found"),
        ("VOTER0001", FACE_A, "P9", "Member not found"),
    ])
    def test_invalid_requests(self, service, voter_id, descriptor, panchayat_id, message):
        result = service.register_face(voter_id, descriptor, panchayat_id)

        assert result == {"success": False, "message": message}


def test_descriptor_validation():
    assert is_valid_descriptor([0.1, 2]) is True
    assert is_valid_descriptor((0.1,)) is True
    assert is_valid_descriptor([True, 0.1]) is False
    assert is_valid_descriptor("0.1,0.2") is False
    assert is_valid_descriptor(None) is False


def test_template_delete_removes_file(db_manager, tmp_path):
    templates = FaceTemplate(db_manager, tmp_path)
    db_manager.execute_update("INSERT INTO citizens (voter_id, panchayat_id) VALUES (?, ?)", ("V1", "P1"))
    path = templates.save("V1", "P1", FACE_A)

    templates.delete("V1", "P1")

    assert not path.exists()
    assert templates.get_descriptors("P1") == []


def test_re_enrollment_without_image_keeps_earlier_image(service):
    first = service.register_face("VOTER0001", FACE_A, "P1", face_image=IMAGE)

    second = service.register_face("VOTER0001", FACE_C, "P1")

    path = first["user"]["faceImagePath"]
    assert second["user"]["faceImagePath"] == path
    assert "attachmentId" not in second
    assert service.citizen_model.get("VOTER0001", "P1")["face_image_path"] == path


def test_safe_filename_never_yields_dot_names():
    assert safe_filename("p/1") == "p_1"
    assert safe_filename("..") == "__"
    assert safe_filename(".") == "_"

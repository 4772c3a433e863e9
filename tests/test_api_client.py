"""
Unit tests for ApiClient and LocalSubmitter
"""
import asyncio
import io
import json
import urllib.error
import urllib.request

import pytest

from panchayat_face.exceptions import SubmissionError
from panchayat_face.services.api_client import ApiClient, FlowKind, LocalSubmitter, SubmitRequest
from panchayat_face.services.enrollment_service import EnrollmentService
from panchayat_face.services.recognition_service import RecognitionService

LOGIN = SubmitRequest(FlowKind.LOGIN, "/citizens/face-login",
                      {"faceDescriptor": [0.0, 0.0], "panchayatId": "P1", "voterIdLastFour": "1234"})


class FakeResponse:
    def __init__(self, body, status=200):
        self._body = body
        self.status = status

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


def http_error(code, body=b"", reason="Error"):
    return urllib.error.HTTPError("http://api.test/citizens/face-login", code, reason, {}, io.BytesIO(body))


@pytest.fixture
def urlopen(monkeypatch):
    """Replace urlopen; set .result to a response or an exception."""
    class Stub:
        result = None
        requests = []

        def __call__(self, request, timeout=None):
            self.requests.append((request, timeout))
            if isinstance(self.result, Exception):
                raise self.result
            return self.result

    stub = Stub()
    stub.requests = []
    monkeypatch.setattr(urllib.request, "urlopen", stub)
    return stub


class TestApiClient:
    def test_posts_json_with_token(self, urlopen):
        urlopen.result = FakeResponse(json.dumps({"success": True, "user": {"name": "Asha"}}).encode())
        client = ApiClient("http://api.test/api/", auth_token="secret", timeout=3)

        response = asyncio.run(client.submit(LOGIN))

        request, timeout = urlopen.requests[0]
        assert response == {"success": True, "user": {"name": "Asha"}}
        assert request.full_url == "http://api.test/api/citizens/face-login"
        assert request.get_method() == "POST"
        assert request.get_header("Authorization") == "Bearer secret"
        assert json.loads(request.data) == LOGIN.payload
        assert timeout == 3

    def test_client_error_is_a_rejection(self, urlopen):
        body = json.dumps({"success": False, "message": "Face not recognized"}).encode()
        urlopen.result = http_error(401, body, reason="Unauthorized")

        response = asyncio.run(ApiClient("http://api.test").submit(LOGIN))

        assert response == {"success": False, "message": "Face not recognized"}

    def test_client_error_without_body(self, urlopen):
        urlopen.result = http_error(404, reason="Not Found")

        response = asyncio.run(ApiClient("http://api.test").submit(LOGIN))

        assert response == {"success": False, "message": "Not Found"}

    def test_server_error_is_retryable(self, urlopen):
        urlopen.result = http_error(503, b"<html>unavailable</html>")

        with pytest.raises(SubmissionError) as exc_info:
            asyncio.run(ApiClient("http://api.test").submit(LOGIN))

        assert exc_info.value.retryable is True
        assert exc_info.value.status == 503

    def test_network_error_is_retryable(self, urlopen):
        urlopen.result = urllib.error.URLError("Connection refused")

        with pytest.raises(SubmissionError) as exc_info:
            asyncio.run(ApiClient("http://api.test").submit(LOGIN))

        assert exc_info.value.retryable is True
        assert "Connection refused" in exc_info.value.message

    def test_non_json_success_body(self, urlopen):
        urlopen.result = FakeResponse(b"OK")

        with pytest.raises(SubmissionError) as exc_info:
            asyncio.run(ApiClient("http://api.test").submit(LOGIN))

        assert exc_info.value.retryable is False


class TestLocalSubmitter:
    @pytest.fixture
    def submitter(self, db_manager, tmp_path):
        enrollment = EnrollmentService(db_manager, faces_dir=tmp_path / "uploads",
                                       embeddings_dir=tmp_path / "embeddings")
        recognition = RecognitionService(db_manager, embeddings_dir=tmp_path / "embeddings")
        enrollment.add_citizen("ABC1231234", "P1", "Asha")
        return LocalSubmitter(enrollment, recognition)

    def test_enroll_then_login_then_attend(self, submitter):
        enroll = SubmitRequest(FlowKind.ENROLLMENT, "/users/register-face",
                               {"voterId": "ABC1231234", "faceDescriptor": [0.0, 0.0],
                                "faceImage": None, "panchayatId": "P1"})
        attend = SubmitRequest(FlowKind.ATTENDANCE, "/gram-sabha/M1/mark-attendance",
                               {"faceDescriptor": [0.0, 0.0], "voterIdLastFour": "1234", "panchayatId": "P1",
                                "faceImage": None, "verificationMethod": "FACE_RECOGNITION"},
                               meeting_id="M1")

        assert asyncio.run(submitter.submit(enroll))["success"] is True
        assert asyncio.run(submitter.submit(LOGIN))["user"]["name"] == "Asha"
        assert asyncio.run(submitter.submit(attend))["message"] == "Attendance marked successfully"

    def test_login_before_enrollment_is_rejected(self, submitter):
        response = asyncio.run(submitter.submit(LOGIN))

        assert response == {"success": False, "message": "No registered users found with matching voter ID"}

import asyncio
import json
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from panchayat_face.config.settings import API_URL, SUBMIT_TIMEOUT
from panchayat_face.exceptions import SubmissionError
from panchayat_face.utils.logging import setup_logger


class FlowKind(Enum):
    ENROLLMENT = "enrollment"
    LOGIN = "login"
    ATTENDANCE = "attendance"


@dataclass(frozen=True)
class SubmitRequest:
    """
    A verified capture ready to be handed to the persistence/API layer.
    """
    flow: FlowKind
    path: str
    payload: Dict[str, Any]
    meeting_id: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)


class ApiClient:
    """
    Posts verification payloads to the platform's REST API.

    urllib is blocking, so each request runs in the default executor to
    keep the event loop free.
    """

    def __init__(self, base_url=API_URL, auth_token=None, timeout=SUBMIT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.logger = setup_logger()

    def _post(self, request: SubmitRequest):
        url = f"{self.base_url}{request.path}"
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        headers.update(request.headers)
        http_request = urllib.request.Request(
            url, data=json.dumps(request.payload).encode("utf-8"), headers=headers, method="POST"
        )

        try:
            with urllib.request.urlopen(http_request, timeout=self.timeout) as response:
                return self._read_json(response.read(), response.status)
        except urllib.error.HTTPError as e:
            body = e.read()
            if e.code >= 500:
                raise SubmissionError(f"Server error ({e.code})", retryable=True, status=e.code) from e
            # 4xx: the server understood the request and refused it
            data = self._read_json(body, e.code)
            data.setdefault("success", False)
            data.setdefault("message", e.reason or f"Request rejected ({e.code})")
            self.logger.info(f"{request.flow.value} rejected by server ({e.code}): {data['message']}")
            return data
        except (urllib.error.URLError, socket.timeout, ConnectionError) as e:
            reason = getattr(e, "reason", e)
            raise SubmissionError(f"Network error: {reason}", retryable=True) from e

    @staticmethod
    def _read_json(body: bytes, status: int):
        try:
            data = json.loads(body.decode("utf-8")) if body else {}
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SubmissionError(f"Invalid response from server ({status})",
                                  retryable=status >= 500, status=status) from e
        if not isinstance(data, dict):
            raise SubmissionError(f"Invalid response from server ({status})", retryable=False, status=status)
        return data

    async def submit(self, request: SubmitRequest):
        self.logger.info(f"Submitting {request.flow.value} to {request.path}")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._post, request)


class LocalSubmitter:
    """
    Dispatches verification payloads straight to the in-process services.

    The services block on SQLite and file I/O, so each call runs in the
    default executor like ApiClient requests do.
    """

    def __init__(self, enrollment_service, recognition_service):
        self.enrollment_service = enrollment_service
        self.recognition_service = recognition_service
        self.logger = setup_logger()

    async def submit(self, request: SubmitRequest):
        self.logger.info(f"Submitting {request.flow.value} locally")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._dispatch, request)

    def _dispatch(self, request: SubmitRequest):
        payload = request.payload
        if request.flow is FlowKind.ENROLLMENT:
            return self.enrollment_service.register_face(
                payload.get("voterId"), payload.get("faceDescriptor"),
                payload.get("panchayatId"), payload.get("faceImage"),
            )
        if request.flow is FlowKind.LOGIN:
            return self.recognition_service.face_login(
                payload.get("faceDescriptor"), payload.get("panchayatId"), payload.get("voterIdLastFour"),
            )
        if request.flow is FlowKind.ATTENDANCE:
            return self.recognition_service.mark_attendance(
                request.meeting_id, payload.get("faceDescriptor"), payload.get("voterIdLastFour"),
                payload.get("panchayatId"), payload.get("faceImage"),
                payload.get("verificationMethod"),
            )
        raise SubmissionError(f"Unsupported flow: {request.flow}", retryable=False)

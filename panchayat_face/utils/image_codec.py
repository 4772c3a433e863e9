import base64
import binascii
import re

import cv2
import numpy as np

from panchayat_face.config.settings import FACE_IMAGE_QUALITY

_DATA_URL_HEADER = re.compile(r"^data:image/\w+;base64,")


def encode_jpeg_data_url(frame, quality=FACE_IMAGE_QUALITY):
    """
    Encode a BGR frame as a base64 JPEG data URL.
    """
    ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ValueError("Could not encode frame as JPEG")
    return "data:image/jpeg;base64," + base64.b64encode(buffer.tobytes()).decode("ascii")


def strip_data_url_header(data):
    return _DATA_URL_HEADER.sub("", data, count=1)


def decode_base64_image(data):
    """
    Decode a base64 image (with or without data URL header) to raw bytes.
    Returns None when the payload is not valid base64.
    """
    if not data:
        return None
    try:
        return base64.b64decode(strip_data_url_header(data), validate=True)
    except (binascii.Error, ValueError):
        return None


def decode_image(data):
    """
    Decode a base64 image to a BGR array, or None if it is not a readable image.
    """
    raw = decode_base64_image(data)
    if raw is None:
        return None
    return cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)

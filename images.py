import base64
import binascii
from typing import Tuple

from models import UploadedFile

IMAGE_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


def to_data_url(file: UploadedFile) -> str:
    """Encodes an image upload so the page can display it as-is."""
    mime_type = IMAGE_MIME_TYPES.get(file.extension, "image/png")
    return bytes_to_data_url(file.data, mime_type)


def bytes_to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def split_data_url(data_url: str) -> Tuple[str, bytes]:
    """Returns (mime_type, raw bytes) for a base64 data URL."""
    header, sep, payload = data_url.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Evidence image is not a base64 data URL")

    mime_type = header[len("data:"):-len(";base64")] or "image/png"
    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Evidence image payload is not valid base64: {e}") from e

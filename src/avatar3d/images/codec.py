"""
Image Codec
===========

Base64 / data-URI handling and thumbnailing for uploaded photos.

Design Rules:
    - This is the ONLY place in the codebase that decodes upload payloads
    - Fails fast on corrupt base64
    - Thumbnails never raise; an undecodable image is returned as-is
"""

import base64
import binascii
import logging
from typing import Optional, Tuple

import cv2
import numpy as np


logger = logging.getLogger(__name__)


class ImageDecodeError(Exception):
    """Raised when an uploaded image payload cannot be decoded."""
    pass


_MAGIC_TYPES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


def sniff_mime_type(data: bytes, default: str = "image/png") -> str:
    """Guess an image MIME type from its leading bytes."""
    for magic, mime in _MAGIC_TYPES:
        if data.startswith(magic):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return default


def split_data_uri(payload: str) -> Tuple[Optional[str], str]:
    """
    Split ``data:<mime>;base64,<data>`` into (mime, data).

    Plain base64 strings are returned with a ``None`` MIME type.
    """
    if payload.startswith("data:"):
        header, _, data = payload.partition(",")
        mime = header[len("data:"):].split(";")[0] or None
        return mime, data
    return None, payload


def decode_image_payload(payload: str) -> bytes:
    """
    Decode a base64 string or data URI into raw bytes.

    Args:
        payload: Base64-encoded image, optionally as a data URI

    Returns:
        Raw image bytes

    Raises:
        ImageDecodeError: If the payload is empty or not valid base64
    """
    _, data = split_data_uri(payload.strip())
    if not data:
        raise ImageDecodeError("Image payload is empty")

    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageDecodeError(f"Base64 decode failed: {e}")


def encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def to_data_uri(data: bytes, mime_type: Optional[str] = None) -> str:
    """Embed raw image bytes as a self-describing data URI."""
    mime = mime_type or sniff_mime_type(data)
    return f"data:{mime};base64,{encode_base64(data)}"


def decode_bgr(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes into a BGR matrix.

    Raises:
        ImageDecodeError: If OpenCV cannot decode the bytes
    """
    nparr = np.frombuffer(data, np.uint8)
    if nparr.size == 0:
        raise ImageDecodeError("Image is empty")

    bgr = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if bgr is None:
        raise ImageDecodeError("cv2.imdecode returned None")

    if len(bgr.shape) != 3 or bgr.shape[2] != 3:
        raise ImageDecodeError(f"Invalid image shape: {bgr.shape}")

    return bgr


def make_thumbnail(data: bytes, size: int = 200, quality: int = 70) -> str:
    """
    Create a JPEG thumbnail data URI that fits in a ``size × size`` box.

    Aspect ratio is preserved. If the image cannot be decoded the original
    bytes are returned as a data URI instead.
    """
    try:
        bgr = decode_bgr(data)
    except ImageDecodeError as e:
        logger.warning(f"Thumbnail skipped, image not decodable: {e}")
        return to_data_uri(data)

    height, width = bgr.shape[:2]
    ratio = min(size / width, size / height)
    new_size = (max(1, int(width * ratio)), max(1, int(height * ratio)))

    interpolation = cv2.INTER_AREA if ratio < 1 else cv2.INTER_LINEAR
    resized = cv2.resize(bgr, new_size, interpolation=interpolation)

    ok, encoded = cv2.imencode(".jpg", resized, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        logger.warning("Thumbnail JPEG encoding failed, using original image")
        return to_data_uri(data)

    return to_data_uri(encoded.tobytes(), "image/jpeg")

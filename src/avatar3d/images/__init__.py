"""
Images Module
=============

Upload decoding, data-URI encoding and thumbnail generation.
"""

from avatar3d.images.codec import (
    ImageDecodeError,
    decode_bgr,
    decode_image_payload,
    encode_base64,
    make_thumbnail,
    sniff_mime_type,
    split_data_uri,
    to_data_uri,
)


__all__ = [
    "ImageDecodeError",
    "decode_bgr",
    "decode_image_payload",
    "encode_base64",
    "make_thumbnail",
    "sniff_mime_type",
    "split_data_uri",
    "to_data_uri",
]

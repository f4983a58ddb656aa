"""
Image Codec
Conversion between `data:image/...;base64,...` strings and Gemini request parts
"""
import re
import base64
import binascii
from io import BytesIO
from typing import NamedTuple

from PIL import Image, UnidentifiedImageError
from google.genai import types

BASE64_MARKER = ';base64,'

# Stricter form used before video requests: a single-word subtype only
_STRICT_DATA_URL = re.compile(r'^data:(image/\w+);base64,(.*)$', re.DOTALL)


class FormatError(ValueError):
    """Raised when an encoded image is not a valid image data URL"""
    pass


class DecodedImage(NamedTuple):
    mime_type: str
    data: str  # base64 payload, still encoded


def decode(data_url: str, context: str) -> DecodedImage:
    """
    Split an image data URL into its mime type and base64 payload.

    Args:
        data_url: String of the form data:<mime>;base64,<payload>
        context: Label for error messages (e.g. "Subject Image")

    Raises:
        FormatError: if the marker is missing or the mime type is not image/*
    """
    if not isinstance(data_url, str):
        raise FormatError(f"Invalid image data URL format for {context}. Expected 'data:image/...;base64,...'")

    marker_index = data_url.find(BASE64_MARKER)
    if marker_index == -1 or not data_url.startswith('data:image/'):
        raise FormatError(f"Invalid image data URL format for {context}. Expected 'data:image/...;base64,...'")

    mime_type = data_url[len('data:'):marker_index]
    payload = data_url[marker_index + len(BASE64_MARKER):]
    return DecodedImage(mime_type, payload)


def decode_strict(data_url: str, context: str) -> DecodedImage:
    """Like decode(), but requires exactly image/<word> as the mime type."""
    match = _STRICT_DATA_URL.match(data_url) if isinstance(data_url, str) else None
    if not match:
        raise FormatError(f"Invalid image data URL format for {context}.")
    return DecodedImage(match.group(1), match.group(2))


def payload_bytes(decoded: DecodedImage, context: str) -> bytes:
    """Base64-decode the payload, rejecting anything that is not valid base64."""
    try:
        return base64.b64decode(decoded.data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Invalid base64 payload for {context}: {e}")


def to_part(data_url: str, context: str) -> types.Part:
    """Decode a data URL straight into an inline-data request part."""
    decoded = decode(data_url, context)
    return types.Part.from_bytes(
        data=payload_bytes(decoded, context),
        mime_type=decoded.mime_type
    )


def encode(mime_type: str, data: bytes) -> str:
    """Build a data URL from raw bytes."""
    if not mime_type or not mime_type.startswith('image/'):
        raise FormatError(f"Not an image mime type: {mime_type!r}")
    return f"data:{mime_type}{BASE64_MARKER}{base64.b64encode(data).decode('ascii')}"


def encode_image_bytes(data: bytes, context: str = 'upload') -> str:
    """
    Identify uploaded bytes with Pillow and return them as a data URL.

    The original bytes are kept as-is; Pillow is only used to confirm the
    content is an image and to find its mime type.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise FormatError(f"Unreadable image for {context}: {e}")

    mime_type = Image.MIME.get(image_format or '')
    if not mime_type:
        raise FormatError(f"Unsupported image format for {context}: {image_format}")
    return encode(mime_type, data)

"""Shared utility functions for offline photo sync.

Photo payloads arrive base64 encoded inside the sync envelope; these helpers
decode them, fingerprint them and build thumbnails.
"""

import base64
import binascii
import hashlib
import io
import logging
import re
from functools import wraps
from PIL import Image, UnidentifiedImageError
from fca_shared.validation import ValidationError

logger = logging.getLogger(__name__)


class CorruptedImageError(Exception):
    """Raised when image data is corrupted and cannot be processed."""
    pass


# Photo hash algorithm constant - always SHA256
PHOTO_HASH_ALGO = 'sha256'

# Matches the "data:image/png;base64," prefix browsers put on data URLs
DATA_URL_PREFIX = re.compile(r'^data:[\w.+-]+/[\w.+-]+;base64,', re.IGNORECASE)

THUMBNAIL_MIME_TYPES = {
    'JPEG': 'image/jpeg',
    'PNG': 'image/png',
    'WEBP': 'image/webp',
}


def handle_image_errors(func):
    """Decorator converting Pillow decoding failures into CorruptedImageError."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        image_data = kwargs.get('image_data')
        try:
            return func(*args, **kwargs)
        except UnidentifiedImageError as e:
            logger.error(f"Corrupted or unsupported image format ({len(image_data or b'')} bytes): {e}")
            raise CorruptedImageError(f"Corrupted or unsupported image format: {e}") from e
        except (OSError, ValueError) as e:
            logger.error(f"Error processing image ({len(image_data or b'')} bytes): {e}")
            raise CorruptedImageError(f"Error processing image: {e}") from e

    return wrapper


def decode_photo_blob(photo_blob, field_name='photoBlob'):
    """Decode a base64 photo payload from an offline envelope.

    Accepts plain base64 or a data URL.

    Raises:
        ValidationError: If the payload is empty or not valid base64
    """
    if not photo_blob or not isinstance(photo_blob, str):
        raise ValidationError(f"{field_name} is required", fields=[field_name])

    encoded = DATA_URL_PREFIX.sub('', photo_blob.strip(), count=1)
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"{field_name} is not valid base64: {e}", fields=[field_name]) from e

    if not data:
        raise ValidationError(f"{field_name} decoded to an empty file", fields=[field_name])
    return data


def compute_photo_hash(image_data):
    """Compute the SHA256 hex digest of raw image bytes.

    Raises:
        TypeError: If image_data is not bytes
    """
    if not isinstance(image_data, (bytes, bytearray)):
        raise TypeError(f"compute_photo_hash expected bytes, got {type(image_data).__name__}")
    hasher = hashlib.new(PHOTO_HASH_ALGO)
    hasher.update(image_data)
    return hasher.hexdigest()


@handle_image_errors
def generate_thumbnail(image_data=None, max_size=200):
    """Generate a thumbnail from image bytes while maintaining aspect ratio.

    Preserves PNG/WEBP to keep transparency, otherwise encodes JPEG.

    Args:
        image_data (bytes): Raw image data
        max_size (int, optional): Maximum dimension for thumbnail. Defaults to 200

    Returns:
        tuple: (thumbnail bytes, mime type)

    Raises:
        CorruptedImageError: When image data cannot be decoded.
    """
    img = Image.open(io.BytesIO(image_data))
    original_format = img.format
    img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)

    save_format = original_format if original_format in ('PNG', 'WEBP') else 'JPEG'
    if save_format == 'JPEG' and img.mode not in ('RGB', 'L'):
        img = img.convert('RGB')

    thumb_buffer = io.BytesIO()
    img.save(thumb_buffer, format=save_format, quality=85)
    return thumb_buffer.getvalue(), THUMBNAIL_MIME_TYPES[save_format]


def is_blank(value):
    """True for values the field-merge policy treats as empty: None, blank strings and zero."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return value == 0
    return False

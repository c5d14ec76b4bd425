"""
Upload Helper - Unified image upload for all routes.
Images arrive as base64 data URLs. Uses Cloudinary when configured,
the local uploads directory otherwise.
"""
import os
import io
import re
import uuid
import base64
import binascii
import logging
from typing import Tuple

import cloudinary
import cloudinary.uploader
from PIL import Image, UnidentifiedImageError

from errors import ValidationError

logger = logging.getLogger("gym_app")

ALLOWED_IMAGE_TYPES = {'png', 'jpg', 'jpeg', 'webp', 'gif'}
MAX_IMAGE_SIZE = 5 * 1024 * 1024   # 5MB
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "uploads"))
UPLOAD_URL_PREFIX = "/uploads"

_DATA_URL_RE = re.compile(r"^data:image/(?P<type>[a-zA-Z0-9.+-]+);base64,(?P<data>.+)$", re.DOTALL)


def _is_cloudinary_ready() -> bool:
    """Check if Cloudinary is configured."""
    cloud_name = os.environ.get("CLOUDINARY_CLOUD_NAME")
    api_key = os.environ.get("CLOUDINARY_API_KEY")
    api_secret = os.environ.get("CLOUDINARY_API_SECRET")
    if all([cloud_name, api_key, api_secret]):
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True
        )
        return True
    return False


def decode_data_url(data_url: str) -> Tuple[bytes, str]:
    """Returns (bytes, extension). Raises ValidationError for anything that is not a small image."""
    match = _DATA_URL_RE.match(data_url or "")
    if not match:
        raise ValidationError("Image must be a base64 data URL")

    ext = match.group("type").lower()
    if ext not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(f"Unsupported image type: {ext}")

    try:
        content = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Image data is not valid base64")

    if len(content) > MAX_IMAGE_SIZE:
        raise ValidationError("Image too large (max 5MB)")
    return content, "jpg" if ext == "jpeg" else ext


def _optimize_image(content: bytes, max_size: tuple = (800, 800)) -> Tuple[bytes, str]:
    """Optimize image with Pillow. Returns (bytes, extension)."""
    try:
        img = Image.open(io.BytesIO(content))
        img.load()
    except (UnidentifiedImageError, OSError):
        raise ValidationError("File is not a readable image")

    if img.mode in ('RGBA', 'P', 'LA'):
        img = img.convert('RGB')

    img.thumbnail(max_size, Image.Resampling.LANCZOS)

    buf = io.BytesIO()
    img.save(buf, format='JPEG', quality=85, optimize=True)
    return buf.getvalue(), 'jpg'


def save_data_url(data_url: str, folder: str) -> str:
    """
    Decode, re-encode and store an image.
    Returns the URL/path to the saved file.
    """
    content, _ = decode_data_url(data_url)
    content, ext = _optimize_image(content)
    filename = f"{uuid.uuid4().hex}.{ext}"

    if _is_cloudinary_ready():
        return _upload_cloudinary(content, folder, filename)
    return _save_local(content, folder, filename)


def _upload_cloudinary(content: bytes, folder: str, filename: str) -> str:
    """Upload to Cloudinary and return the secure URL."""
    name_without_ext = os.path.splitext(filename)[0]
    result = cloudinary.uploader.upload(
        content,
        folder=f"gym/{folder}",
        public_id=name_without_ext,
        resource_type="image",
        overwrite=True
    )
    logger.info(f"Cloudinary upload: gym/{folder}/{filename}")
    return result["secure_url"]


def _save_local(content: bytes, folder: str, filename: str) -> str:
    """Save to the uploads directory and return the relative URL."""
    base_dir = os.path.join(UPLOAD_DIR, folder)
    os.makedirs(base_dir, exist_ok=True)

    file_path = os.path.join(base_dir, filename)
    with open(file_path, 'wb') as f:
        f.write(content)

    logger.info(f"Stored upload {folder}/{filename} ({len(content)} bytes)")
    return f"{UPLOAD_URL_PREFIX}/{folder}/{filename}"

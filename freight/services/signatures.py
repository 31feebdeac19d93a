"""Storage for delivery signatures captured as data URLs."""

import base64
import binascii
import logging
import re

from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.utils import timezone

from freight.services.exceptions import LoadValidationError

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r"^data:image/(?P<ext>png|jpeg|jpg);base64,(?P<data>.+)$", re.S)


def decode_signature(data_url: str) -> tuple[bytes, str]:
    """Return (image bytes, file extension) or raise LoadValidationError."""
    match = DATA_URL_RE.match(data_url or "")
    if not match:
        raise LoadValidationError("Signature must be a PNG or JPEG data URL.")
    try:
        content = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError):
        raise LoadValidationError("Signature image is not valid base64.")
    if not content:
        raise LoadValidationError("Signature image is empty.")
    ext = "jpg" if match.group("ext") == "jpeg" else match.group("ext")
    return content, ext


def save_signature(load_id, content: bytes, ext: str) -> str:
    """Persist the image and return its storage name."""
    name = f"signatures/{load_id}-{timezone.now():%Y%m%d%H%M%S}.{ext}"
    return default_storage.save(name, ContentFile(content))


def discard_signature(name: str) -> None:
    try:
        default_storage.delete(name)
    except OSError:
        logger.warning("Could not remove orphaned signature %s", name)

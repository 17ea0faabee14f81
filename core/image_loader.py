# core/image_loader.py
import base64
import io
import logging
import os
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from .errors import ImageLoadError

logger = logging.getLogger(__name__)

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
}

# Pillow has no SVG decoder; these are passed through unverified.
_UNVERIFIED_TYPES = {"image/svg+xml"}


@dataclass(frozen=True)
class ImageData:
    """Encoded bytes of an image plus what Pillow could tell about it."""
    path: str
    mime_type: str
    data: bytes
    width: Optional[int] = None
    height: Optional[int] = None

    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def mime_type_for(path: str) -> str:
    _, ext = os.path.splitext(path)
    return MIME_TYPES.get(ext.lower(), "image/png")


def load_image_data(path: str) -> ImageData:
    """Read *path* and check it decodes. Raises ImageLoadError on any failure."""
    if not os.path.exists(path):
        raise ImageLoadError(f"Image does not exist: {path}")
    if not os.path.isfile(path):
        raise ImageLoadError(f"Path is not a file: {path}")

    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise ImageLoadError(f"Failed to read image: {e}") from e

    mime_type = mime_type_for(path)
    if mime_type in _UNVERIFIED_TYPES:
        return ImageData(path=path, mime_type=mime_type, data=raw)

    try:
        with Image.open(io.BytesIO(raw)) as img:
            width, height = img.size
            img.verify()
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.error(f"Error decoding {path}: {e}")
        raise ImageLoadError(f"Failed to decode image: {e}") from e

    logger.debug(f"Loaded {path} ({width}x{height}, {len(raw)} bytes)")
    return ImageData(path=path, mime_type=mime_type, data=raw, width=width, height=height)

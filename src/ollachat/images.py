"""Image attachment preparation.

Images sent to vision models are downscaled, re-encoded as PNG and
base64-encoded, matching what the Ollama chat endpoint expects in
``messages[].images``.
"""

import base64
import io
import logging
from pathlib import Path

from PIL import Image

from .config import MAX_IMAGE_BYTES, MAX_IMAGE_DIMENSION, VISION_MODEL_HINTS
from .errors import ImageTooLargeError

logger = logging.getLogger(__name__)


def supports_images(model_id: str) -> bool:
    """Whether a model name looks like a multimodal model."""
    name = model_id.lower()
    return any(hint in name for hint in VISION_MODEL_HINTS)


def encode_image(
    source: str | Path | bytes,
    max_dimension: int = MAX_IMAGE_DIMENSION,
    max_bytes: int = MAX_IMAGE_BYTES
) -> str:
    """Prepare an image for a chat request.

    Args:
        source: Path to an image file, or the raw file bytes
        max_dimension: Longest allowed side in pixels
        max_bytes: Largest allowed encoded PNG size

    Returns:
        Base64 text of the PNG

    Raises:
        ImageTooLargeError: If the PNG still exceeds ``max_bytes``
        PIL.UnidentifiedImageError: If ``source`` is not a readable image
    """
    raw = io.BytesIO(source) if isinstance(source, bytes) else Path(source)
    with Image.open(raw) as im:
        im.load()
        if im.mode not in ("RGB", "RGBA", "L", "LA"):
            im = im.convert("RGBA")
        w, h = im.size
        if max(w, h) > max_dimension:
            # thumbnail() keeps aspect ratio and only ever shrinks
            im.thumbnail((max_dimension, max_dimension), Image.LANCZOS)
            logger.debug("Resized image from %dx%d to %dx%d", w, h, *im.size)

        buf = io.BytesIO()
        im.save(buf, format="PNG")

    data = buf.getvalue()
    if len(data) > max_bytes:
        raise ImageTooLargeError(f"{len(data)} bytes exceeds {max_bytes}")
    return base64.b64encode(data).decode("ascii")

"""Small file helpers shared by the client and its callers."""
from __future__ import annotations

import base64
import mimetypes
from pathlib import Path

from vibegen.engine.models import ImageAttachment

# Upper bound for a single image attachment.
MAX_IMAGE_SIZE = 10 * 1024 * 1024

_IMAGE_MIME_TYPES = frozenset({
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
})


def format_size(size: int) -> str:
    """Format a file size for display."""
    if size < 1024:
        return f"{size} B"
    elif size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    else:
        return f"{size / (1024 * 1024):.1f} MB"


def load_image_attachment(path: str | Path) -> ImageAttachment:
    """Read a local image into a base64 attachment.

    Raises ValueError for unsupported types or oversized files and
    OSError if the file cannot be read.
    """
    path = Path(path)
    mime_type, _ = mimetypes.guess_type(path.name)
    if mime_type not in _IMAGE_MIME_TYPES:
        raise ValueError(f"Unsupported image type for {path.name}: {mime_type}")
    raw = path.read_bytes()
    if len(raw) > MAX_IMAGE_SIZE:
        raise ValueError(
            f"{path.name} is {format_size(len(raw))}, "
            f"limit is {format_size(MAX_IMAGE_SIZE)}"
        )
    return ImageAttachment(
        data=base64.b64encode(raw).decode("ascii"),
        mime_type=mime_type,
        filename=path.name,
        size=len(raw),
    )

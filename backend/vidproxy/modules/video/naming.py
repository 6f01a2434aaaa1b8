"""Derived storage keys.

The low-res proxy and the thumbnail are stored under keys computed from the
original's stored filename. Both the pipeline (writer) and the download-URL
endpoint (reader) use these functions, so the keys never need to be stored.
"""

import os
import time
from typing import Optional

LOW_RES_MARKER = "_low"
THUMBNAIL_SUFFIX = "_thumb.jpg"


def _split_extension(file_name: str) -> tuple[str, str]:
    """Split the final extension off, ignoring dots in directories and leading dots."""
    head, tail = os.path.split(file_name)
    stem, ext = os.path.splitext(tail)
    return os.path.join(head, stem) if head else stem, ext


def low_res_key(file_name: str) -> str:
    """Key of the low-res proxy: ``1700_clip.mov`` -> ``1700_clip_low.mov``."""
    stem, ext = _split_extension(file_name)
    return f"{stem}{LOW_RES_MARKER}{ext}"


def thumbnail_key(file_name: str) -> str:
    """Key of the thumbnail: ``1700_clip.mov`` -> ``1700_clip_thumb.jpg``."""
    stem, _ = _split_extension(file_name)
    return f"{stem}{THUMBNAIL_SUFFIX}"


def stored_file_name(original_name: str, now_ms: Optional[int] = None) -> str:
    """Storage key for a fresh upload: ``<epoch-ms>_<basename>``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    base = os.path.basename(original_name.replace("\\", "/")) or "upload"
    return f"{now_ms}_{base}"


def file_extension(file_name: str) -> str:
    """Lower-cased extension without the dot, or an empty string."""
    return _split_extension(file_name)[1].lstrip(".").lower()

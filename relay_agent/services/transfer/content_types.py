"""Content-type inference for relayed files."""

import mimetypes
from pathlib import Path

DEFAULT_CONTENT_TYPE = "application/octet-stream"

VIDEO_CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".avi": "video/x-msvideo",
    ".mov": "video/quicktime",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
}


def get_content_type(file_name: str) -> str:
    ext = Path(file_name).suffix.lower()
    if ext in VIDEO_CONTENT_TYPES:
        return VIDEO_CONTENT_TYPES[ext]

    guessed, _ = mimetypes.guess_type(file_name)
    return guessed or DEFAULT_CONTENT_TYPE

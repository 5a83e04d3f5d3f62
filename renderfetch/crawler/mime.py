"""
MIME type detection used during response materialization.

The crawler normally injects its own detector. SignatureMimeTypeHelper is a
small default based on magic bytes with a filename-extension fallback.
"""

import mimetypes
from typing import Protocol, runtime_checkable

# Leading bytes read from files before detection
SNIFF_SIZE = 4096

_SIGNATURES: list[tuple[bytes, str]] = [
    (b"%PDF-", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\x1f\x8b", "application/gzip"),
    (b"%!PS", "application/postscript"),
]

_ZIP_MAGIC = b"PK\x03\x04"

_HTML_MARKERS = (b"<!doctype html", b"<html", b"<head", b"<body", b"<script", b"<title")


@runtime_checkable
class MimeTypeHelper(Protocol):
    """Content type detector consumed by the browser client."""

    def detect(self, data: bytes, filename: str | None) -> str:
        """Return the MIME type for the given data and filename.

        Inline responses pass the whole body. Downloads pass only the first
        SNIFF_SIZE bytes of the saved file, so detectors that need to look
        inside containers (docx, epub) must decide from the head and the
        filename.
        """
        ...


class SignatureMimeTypeHelper:
    """Detect MIME types from magic bytes, then from the filename."""

    def __init__(self, default: str = "application/octet-stream"):
        self.default = default

    def detect(self, data: bytes, filename: str | None) -> str:
        head = data[:SNIFF_SIZE]

        for magic, mime_type in _SIGNATURES:
            if head.startswith(magic):
                return mime_type

        guessed = None
        if filename:
            guessed, _encoding = mimetypes.guess_type(filename, strict=False)

        # ZIP containers (docx, epub, ...) are identified by extension when possible
        if head.startswith(_ZIP_MAGIC):
            if guessed and guessed != "application/octet-stream":
                return guessed
            return "application/zip"

        stripped = head.lstrip().lower()
        if any(stripped.startswith(marker) for marker in _HTML_MARKERS):
            return "text/html"
        if stripped.startswith(b"<?xml"):
            return guessed or "application/xml"

        if guessed:
            return guessed
        return self.default

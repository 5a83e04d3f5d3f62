"""
Request and response data classes for the browser client.

ResponseData mirrors what a plain HTTP client returns, so the crawler can
treat browser-rendered and directly fetched resources the same way.
"""

import io
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from renderfetch.utils.logging import get_logger

logger = get_logger(__name__)


class RequestMethod(str, Enum):
    """Supported request methods."""

    GET = "GET"
    HEAD = "HEAD"


@dataclass(frozen=True)
class RequestData:
    """A single request to execute.

    Attributes:
        url: Target URL.
        method: GET or HEAD.
    """

    url: str
    method: RequestMethod = RequestMethod.GET

    @classmethod
    def get(cls, url: str) -> "RequestData":
        return cls(url=url, method=RequestMethod.GET)

    @classmethod
    def head(cls, url: str) -> "RequestData":
        return cls(url=url, method=RequestMethod.HEAD)


class TempFileBody(io.RawIOBase):
    """Readable body backed by a temporary file that is deleted on close.

    Used for downloaded resources, which can be large and are already on
    disk when materialized.
    """

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self._file = open(self.path, "rb")

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        return self._file.readinto(buffer)

    def read_all(self) -> bytes:
        """Read the remaining content."""
        return self._file.read()

    def close(self) -> None:
        if self.closed:
            return
        try:
            stream = getattr(self, "_file", None)
            if stream is not None:
                stream.close()
        finally:
            try:
                os.unlink(self.path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Failed to delete temp file", path=str(self.path), error=str(e))
            super().close()


@dataclass
class ResponseData:
    """
    Materialized response of a browser request.

    Attributes:
        url: Final URL after redirects.
        method: Request method.
        http_status_code: HTTP status code.
        charset: Charset from Content-Type (UTF-8 by default).
        mime_type: Detected or declared MIME type.
        last_modified: Parsed Last-Modified header.
        headers: Response headers (lower-cased names).
        content_length: Body size in bytes.
        body: bytes for inline content, TempFileBody for downloads,
            None for HEAD requests.
    """

    url: str
    method: RequestMethod
    http_status_code: int
    charset: str = "UTF-8"
    mime_type: str = "text/html"
    last_modified: datetime | None = None
    headers: dict[str, str] = field(default_factory=dict)
    content_length: int = 0
    body: bytes | TempFileBody | None = None

    @property
    def has_body(self) -> bool:
        return self.body is not None

    def get_body_as_bytes(self) -> bytes | None:
        """Read the body regardless of how it is stored.

        A TempFileBody is consumed and closed (its file deleted).
        """
        if self.body is None or isinstance(self.body, bytes):
            return self.body
        with self.body as stream:
            return stream.read_all()

    def get_body_as_text(self) -> str | None:
        data = self.get_body_as_bytes()
        if data is None:
            return None
        return data.decode(self.charset, errors="replace")

    def close(self) -> None:
        """Release a file-backed body."""
        if isinstance(self.body, TempFileBody):
            self.body.close()

    def __enter__(self) -> "ResponseData":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (without the body)."""
        return {
            "url": self.url,
            "method": self.method.value,
            "http_status_code": self.http_status_code,
            "charset": self.charset,
            "mime_type": self.mime_type,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "headers": self.headers,
            "content_length": self.content_length,
            "has_body": self.has_body,
        }

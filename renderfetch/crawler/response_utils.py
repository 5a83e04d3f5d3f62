"""Response header helpers: filename, charset, content type and date parsing."""

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from renderfetch.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CHARSET = "UTF-8"
DEFAULT_MIME_TYPE = "text/html"
INDEX_FILENAME = "index.html"

_HTTP_DATE = re.compile(
    r"(Mon|Tue|Wed|Thu|Fri|Sat|Sun), \d{1,2} "
    r"(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec) "
    r"\d{4} \d{2}:\d{2}:\d{2} (GMT|UTC|UT|Z)"
)


def get_filename(url: str | None) -> str | None:
    """Derive a filename from the last path segment of a URL.

    Fragment and query are stripped. A blank last segment (root path or
    trailing slash) maps to index.html.

    Args:
        url: URL or bare filename.

    Returns:
        Filename, or None for a blank input.
    """
    if url is None or not url.strip():
        return None

    name = url.split("/")[-1]
    name = name.split("#", 1)[0]
    name = name.split("?", 1)[0]
    if not name.strip():
        return INDEX_FILENAME
    return name


def get_charset(content_type: str | None) -> str:
    """Extract the charset parameter from a Content-Type header value.

    Args:
        content_type: Content-Type header value.

    Returns:
        Charset from the first charset=... segment, or UTF-8.
    """
    if content_type and content_type.strip():
        for segment in content_type.split(";"):
            values = segment.split("=")
            if len(values) == 2 and values[0].strip().lower() == "charset":
                charset = values[1].strip().strip('"').strip("'")
                if charset:
                    return charset
    return DEFAULT_CHARSET


def get_mime_type(content_type: str | None) -> str:
    """Media type of a Content-Type header value, without parameters.

    Args:
        content_type: Content-Type header value.

    Returns:
        Lower-cased media type, or text/html when absent.
    """
    if content_type and content_type.strip():
        mime_type = content_type.split(";", 1)[0].strip().lower()
        if mime_type:
            return mime_type
    return DEFAULT_MIME_TYPE


def parse_date(value: str | None) -> datetime | None:
    """Parse an HTTP-date header value.

    Only the fixed "EEE, dd MMM yyyy HH:mm:ss zzz" shape is accepted, with
    English day and month names regardless of the process locale.

    Args:
        value: Header value such as "Sun, 22 Jan 2023 02:16:34 GMT".

    Returns:
        Timezone-aware UTC datetime, or None for a blank or non-matching value.
    """
    if value is None or not value.strip():
        return None

    value = value.strip()
    if _HTTP_DATE.fullmatch(value) is None:
        logger.debug("Invalid date format", value=value)
        return None

    try:
        return parsedate_to_datetime(value).astimezone(timezone.utc)
    except ValueError as e:
        logger.debug("Invalid date format", value=value, error=str(e))
        return None

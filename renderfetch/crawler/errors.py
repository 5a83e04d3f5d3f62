"""
Crawler error definitions for renderfetch.

Three outcomes reach the caller:
- CrawlerSystemError: the browser session could not be built.
- CrawlingAccessError: a URL could not be fetched (the worker stays usable).
- ChildUrlNotTargetError: a redirect left the crawl scope. This is not a
  failure, so it does not derive from CrawlingAccessError.
"""

from typing import Any


class CrawlerError(Exception):
    """
    Base exception for crawler client errors.

    Carries structured details for logging and error reporting.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a serializable dict."""
        result: dict[str, Any] = {
            "ok": False,
            "error_type": type(self).__name__,
            "error": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class CrawlerSystemError(CrawlerError):
    """Raised when the browser engine, browser, context or page cannot be created."""


class CrawlingAccessError(CrawlerError):
    """Raised when navigation fails and no download resolved within the timeout."""

    def __init__(
        self,
        url: str,
        *,
        response_received: bool = False,
        download_started: bool = False,
        timeout: int | float | None = None,
        message: str | None = None,
    ):
        if message is None:
            message = (
                f"Failed to access the URL. URL: {url}, "
                f"Response received: {str(response_received).lower()}, "
                f"Download started: {str(download_started).lower()}, "
                f"Timeout: {timeout}s"
            )
        super().__init__(
            message,
            details={
                "url": url,
                "response_received": response_received,
                "download_started": download_started,
                "timeout": timeout,
            },
        )
        self.url = url
        self.response_received = response_received
        self.download_started = download_started
        self.timeout = timeout


class ChildUrlNotTargetError(CrawlerError):
    """Raised when a redirected URL is rejected by the crawl's URL filter."""

    def __init__(self, url: str, *, original_url: str | None = None):
        super().__init__(
            f"{url} is not a target URL.",
            details={"url": url, "original_url": original_url},
        )
        self.url = url
        self.original_url = original_url

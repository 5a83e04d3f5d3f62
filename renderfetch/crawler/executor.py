"""
Request execution on a browsing session's page.

Per call, under the session lock:

1. Listeners capture the first response and the latest download.
2. The page navigates to the URL. On success the configured rendered state
   is awaited and the navigation's response is materialized. When navigation
   raises (typical for resources the browser downloads instead of rendering),
   the listeners are polled until both a response and a download show up or
   download_timeout expires.
3. The page is always reset to about:blank so the next call starts clean.
"""

import asyncio
import os
import tempfile
from dataclasses import dataclass
from typing import TYPE_CHECKING

from playwright.async_api import Error as PlaywrightError

from renderfetch.crawler.errors import ChildUrlNotTargetError, CrawlingAccessError
from renderfetch.crawler.mime import SNIFF_SIZE, MimeTypeHelper
from renderfetch.crawler.request_data import (
    RequestData,
    RequestMethod,
    ResponseData,
    TempFileBody,
)
from renderfetch.crawler.response_utils import (
    get_charset,
    get_filename,
    get_mime_type,
    parse_date,
)
from renderfetch.crawler.url_filter import get_url_filter
from renderfetch.utils.config import PlaywrightClientConfig
from renderfetch.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Download, Page, Response

    from renderfetch.crawler.session import BrowsingSession

logger = get_logger(__name__)

DOWNLOAD_POLL_INTERVAL = 0.1  # seconds
BLANK_URL = "about:blank"
TEMP_FILE_PREFIX = "renderfetch-playwright-"


@dataclass
class PendingSignals:
    """Response and download captured by page listeners during one call."""

    response: "Response | None" = None
    download: "Download | None" = None

    def on_response(self, response: "Response") -> None:
        if self.response is None:
            self.response = response

    def on_download(self, download: "Download") -> None:
        self.download = download

    @property
    def resolved(self) -> bool:
        return self.response is not None and self.download is not None


class RequestExecutor:
    """Runs requests against a session page and materializes the responses.

    Args:
        config: Client configuration (rendered state, timeouts, content wait).
        mime_type_helper: Optional MIME detector. Without it the declared
            Content-Type is used and rendered HTML is never re-read.
    """

    def __init__(
        self,
        config: PlaywrightClientConfig,
        mime_type_helper: MimeTypeHelper | None = None,
    ):
        self._config = config
        self._mime_type_helper = mime_type_helper

    async def execute(self, session: "BrowsingSession", request: RequestData) -> ResponseData:
        """Execute one request on the session page.

        Raises:
            CrawlingAccessError: Navigation failed and no download resolved.
            ChildUrlNotTargetError: The redirected URL is outside the crawl.
        """
        async with session.lock:
            page = session.page
            if page is None:
                raise CrawlingAccessError(
                    request.url,
                    message=f"Browsing session is closed. URL: {request.url}",
                )

            signals = PendingSignals()
            page.on("response", signals.on_response)
            page.on("download", signals.on_download)
            try:
                return await self._navigate(page, request, signals)
            finally:
                page.remove_listener("response", signals.on_response)
                page.remove_listener("download", signals.on_download)
                await self._reset_page(page)

    async def _navigate(
        self,
        page: "Page",
        request: RequestData,
        signals: PendingSignals,
    ) -> ResponseData:
        try:
            response = await page.goto(request.url)
            if response is None:
                raise PlaywrightError(f"No response for {request.url}")
        except PlaywrightError as e:
            logger.debug("Navigation failed; waiting for download", error=str(e))
            return await self._resolve_download(page, request, signals, e)

        await self._wait_for_rendered_state(page)

        if self._config.content_wait_millis > 0:
            await asyncio.sleep(self._config.content_wait_millis / 1000)

        logger.debug("Navigation succeeded", final_url=response.url, status=response.status)
        return await self._materialize(page, request, response, None)

    async def _wait_for_rendered_state(self, page: "Page") -> None:
        state = self._config.rendered_state.value
        try:
            await page.wait_for_load_state(state)
        except PlaywrightError as e:
            logger.warning("Rendered state not reached", state=state, error=str(e))

    async def _resolve_download(
        self,
        page: "Page",
        request: RequestData,
        signals: PendingSignals,
        error: Exception,
    ) -> ResponseData:
        """Wait for both a response and a download after a failed navigation."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.download_timeout
        while not signals.resolved and loop.time() < deadline:
            await asyncio.sleep(DOWNLOAD_POLL_INTERVAL)

        if signals.response is not None and signals.download is not None:
            logger.debug("Download resolved", final_url=signals.response.url)
            return await self._materialize(page, request, signals.response, signals.download)

        raise CrawlingAccessError(
            request.url,
            response_received=signals.response is not None,
            download_started=signals.download is not None,
            timeout=self._config.download_timeout,
        ) from error

    async def _reset_page(self, page: "Page") -> None:
        try:
            await page.goto(BLANK_URL)
            await page.wait_for_load_state("load")
        except Exception as e:
            logger.warning("Failed to reset page", error=str(e))

    # ------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------

    def _check_scope(self, request: RequestData, final_url: str) -> None:
        if final_url == request.url:
            return
        url_filter = get_url_filter()
        if url_filter is not None and not url_filter.match(final_url):
            logger.info("Redirected URL is not a target", url=request.url, final_url=final_url)
            raise ChildUrlNotTargetError(final_url, original_url=request.url)

    def _detect_mime_type(self, data: bytes, filename: str | None, fallback: str) -> str:
        if self._mime_type_helper is None:
            return fallback
        try:
            return self._mime_type_helper.detect(data, filename)
        except Exception as e:
            logger.warning("MIME type detection failed", filename=filename, error=str(e))
            return fallback

    async def _materialize(
        self,
        page: "Page",
        request: RequestData,
        response: "Response",
        download: "Download | None",
    ) -> ResponseData:
        final_url = response.url
        try:
            self._check_scope(request, final_url)

            headers = await response.all_headers()
            content_type = headers.get("content-type")
            result = ResponseData(
                url=final_url,
                method=request.method,
                http_status_code=response.status,
                charset=get_charset(content_type),
                mime_type=get_mime_type(content_type),
                last_modified=parse_date(headers.get("last-modified")),
                headers=dict(headers),
            )

            if result.http_status_code > 400:
                result.content_length = 0
                result.body = None if request.method == RequestMethod.HEAD else b""
                if download is not None:
                    await self._discard_download(download)
                return result

            if download is None:
                await self._materialize_inline(page, request, response, result)
            else:
                await self._materialize_download(request, download, result)
            return result
        except PlaywrightError as e:
            if download is not None:
                await self._discard_download(download)
            raise CrawlingAccessError(
                request.url,
                response_received=True,
                download_started=download is not None,
                timeout=self._config.download_timeout,
                message=f"Failed to read the response. URL: {request.url}, Error: {e}",
            ) from e
        except ChildUrlNotTargetError:
            if download is not None:
                await self._discard_download(download)
            raise

    async def _materialize_inline(
        self,
        page: "Page",
        request: RequestData,
        response: "Response",
        result: ResponseData,
    ) -> None:
        body = await response.body()
        result.mime_type = self._detect_mime_type(
            body, get_filename(result.url), result.mime_type
        )

        if self._mime_type_helper is not None and result.mime_type == "text/html":
            try:
                body = (await page.content()).encode(result.charset)
            except Exception as e:
                logger.debug("Using raw response body instead of rendered content", error=str(e))

        result.content_length = len(body)
        if request.method != RequestMethod.HEAD:
            result.body = body

    async def _materialize_download(
        self,
        request: RequestData,
        download: "Download",
        result: ResponseData,
    ) -> None:
        fd, path = tempfile.mkstemp(prefix=TEMP_FILE_PREFIX, suffix=".tmp")
        os.close(fd)
        try:
            try:
                await download.save_as(path)
            finally:
                await self._discard_download(download)

            result.content_length = os.path.getsize(path)

            if self._mime_type_helper is not None:
                filename = download.suggested_filename or get_filename(result.url)
                try:
                    with open(path, "rb") as f:
                        head = f.read(SNIFF_SIZE)
                except OSError as e:
                    logger.warning("Failed to read downloaded file", path=path, error=str(e))
                else:
                    result.mime_type = self._detect_mime_type(head, filename, result.mime_type)

            if request.method == RequestMethod.HEAD:
                os.unlink(path)
            else:
                result.body = TempFileBody(path)
        except BaseException:
            if os.path.exists(path):
                os.unlink(path)
            raise

    async def _discard_download(self, download: "Download") -> None:
        try:
            await download.delete()
        except Exception as e:
            logger.debug("Failed to delete download", error=str(e))

"""
Tests for the public PlaywrightClient worker.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-PC-N-01 | No config given | Equivalence – normal | Client section of settings | Defaults |
| TC-PC-N-02 | TLS/proxy config | Equivalence – normal | Bootstrapper follows config | HTTP client |
| TC-PC-N-03 | init twice | Boundary – repeated | One acquire | Idempotent |
| TC-PC-N-04 | Concurrent init | Equivalence – concurrency | One acquire | Lock |
| TC-PC-A-01 | acquire fails | Abnormal – construction | Error raised, retry possible | Uninitialized |
| TC-PC-N-05 | execute before init | Equivalence – normal | Lazy init with request URL as target, response returned | Lazy |
| TC-PC-N-06 | add_option | Equivalence – normal | env passed to acquire | Browser env |
| TC-PC-N-07 | close twice / before init | Boundary – repeated | One release, no error | Idempotent |
| TC-PC-N-08 | async with | Equivalence – normal | init on enter, release on exit | Context manager |
| TC-PC-N-09 | Two shared clients | Equivalence – normal | One session, closed with the last | Integration |
| TC-PC-A-02 | Access failure | Abnormal – navigation | Worker still usable | Recovery |
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

# All tests in this module are unit tests (no external dependencies)
pytestmark = pytest.mark.unit

from renderfetch.crawler.errors import CrawlerSystemError, CrawlingAccessError
from renderfetch.crawler.playwright_client import PlaywrightClient
from renderfetch.crawler.request_data import RequestData
from renderfetch.crawler.session import BrowsingSession, SessionRegistry
from renderfetch.utils.config import PlaywrightClientConfig

URL = "https://example.com/"


@pytest.fixture
def registry(fake_session) -> MagicMock:
    registry = MagicMock(spec=SessionRegistry)
    registry.acquire = AsyncMock(return_value=fake_session)
    registry.release = AsyncMock()
    return registry


@pytest.fixture
def client(registry) -> PlaywrightClient:
    return PlaywrightClient(
        PlaywrightClientConfig(download_timeout=0),
        registry=registry,
        bootstrapper=MagicMock(),
    )


class TestConstruction:
    """Tests for client construction."""

    def test_default_config_from_settings(self, registry) -> None:
        """Without config the settings client section is used (TC-PC-N-01)."""
        client = PlaywrightClient(registry=registry)

        assert client.config.browser_name == "chromium"
        assert client.is_initialized is False

    def test_default_bootstrapper_follows_config(self, registry) -> None:
        """The HTTP client honors TLS and proxy settings (TC-PC-N-02)."""
        config = PlaywrightClientConfig(
            ignore_ssl_certificate=True, proxy_host="proxy.local", proxy_port=3128
        )

        client = PlaywrightClient(config, registry=registry)

        assert client._bootstrapper._verify is False
        assert client._bootstrapper._proxy == "http://proxy.local:3128"


class TestInit:
    """Tests for init()."""

    @pytest.mark.asyncio
    async def test_init_is_idempotent(self, client, registry) -> None:
        """A second init is a no-op (TC-PC-N-03)."""
        await client.init()
        await client.init()

        registry.acquire.assert_awaited_once()
        assert registry.acquire.call_args.kwargs["target_url"] is None
        assert client.is_initialized

    @pytest.mark.asyncio
    async def test_concurrent_init_builds_once(self, client, registry) -> None:
        """Concurrent callers observe one build (TC-PC-N-04)."""
        await asyncio.gather(client.init(), client.init(), client.init())

        registry.acquire.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_init_can_retry(self, client, registry, fake_session) -> None:
        """A construction failure leaves the worker retryable (TC-PC-A-01)."""
        # Given: The first acquire fails
        registry.acquire = AsyncMock(
            side_effect=[CrawlerSystemError("Failed to create Playwright worker."), fake_session]
        )

        # When/Then: The first init raises, the second succeeds
        with pytest.raises(CrawlerSystemError):
            await client.init()
        assert client.is_initialized is False

        await client.init()
        assert client.is_initialized is True

    @pytest.mark.asyncio
    async def test_add_option_passes_env(self, client, registry) -> None:
        """Options become the browser environment (TC-PC-N-06)."""
        client.add_option("LANG", "ja_JP.UTF-8")
        client.add_option("DEBUG_LEVEL", 2)

        await client.init()

        assert registry.acquire.call_args.kwargs["env"] == {
            "LANG": "ja_JP.UTF-8",
            "DEBUG_LEVEL": "2",
        }
        assert client.options == {"LANG": "ja_JP.UTF-8", "DEBUG_LEVEL": "2"}


class TestExecute:
    """Tests for execute()."""

    @pytest.mark.asyncio
    async def test_execute_initializes_lazily(
        self, client, registry, fake_page, response_factory
    ) -> None:
        """execute() creates the session on first use (TC-PC-N-05)."""
        # Given: An uninitialized client and a page serving HTML
        fake_page.script(URL, response=response_factory(url=URL, body=b"<html>ok</html>"))

        # When: Executing
        result = await client.execute(RequestData.get(URL))

        # Then: The session was acquired and the response returned
        registry.acquire.assert_awaited_once()
        assert registry.acquire.call_args.kwargs["target_url"] == URL
        assert result.http_status_code == 200
        assert result.body == b"<html>ok</html>"

    @pytest.mark.asyncio
    async def test_worker_usable_after_access_error(
        self, client, fake_page, response_factory
    ) -> None:
        """An access failure does not break the worker (TC-PC-A-02)."""
        # Given: One failing URL and one working URL
        bad = "https://example.com/broken"
        fake_page.script(bad, error=PlaywrightError("net::ERR_CONNECTION_REFUSED"))
        fake_page.script(URL, response=response_factory(url=URL, body=b"fine"))

        # When/Then: The failure raises and the next call succeeds
        with pytest.raises(CrawlingAccessError):
            await client.execute(RequestData.get(bad))

        result = await client.execute(RequestData.get(URL))
        assert result.body == b"fine"


class TestClose:
    """Tests for close() and the async context manager."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, client, registry, fake_session) -> None:
        """close() releases once (TC-PC-N-07)."""
        # Given: A client closed before init is a no-op
        await client.close()
        registry.release.assert_not_awaited()

        # When: Initialized and closed twice
        await client.init()
        await client.close()
        await client.close()

        # Then: Released exactly once
        registry.release.assert_awaited_once()
        assert registry.release.call_args.args[0] is fake_session
        assert client.is_initialized is False

    @pytest.mark.asyncio
    async def test_async_context_manager(self, client, registry) -> None:
        """Entering initializes, leaving releases (TC-PC-N-08)."""
        async with client as entered:
            assert entered is client
            assert client.is_initialized

        registry.release.assert_awaited_once()


@pytest.mark.integration
class TestSharedClients:
    """Shared session lifecycle across workers."""

    @pytest.mark.asyncio
    async def test_shared_session_closed_with_last_client(self, fake_page, response_factory) -> None:
        """Two shared workers use one session (TC-PC-N-09)."""
        # Given: A registry whose factory builds sessions around the fake page
        built: list[BrowsingSession] = []

        async def factory(
            config, bootstrapper, *, env=None, shutdown=None, target_url=None
        ) -> BrowsingSession:
            session = BrowsingSession(
                engine=MagicMock(stop=AsyncMock()),
                browser=MagicMock(close=AsyncMock()),
                context=MagicMock(close=AsyncMock()),
                page=fake_page,
            )
            built.append(session)
            return session

        registry = SessionRegistry(factory)
        config = PlaywrightClientConfig(shared_client=True, close_timeout=1)
        first = PlaywrightClient(config, registry=registry, bootstrapper=MagicMock())
        second = PlaywrightClient(config, registry=registry, bootstrapper=MagicMock())
        fake_page.script(URL, response=response_factory(url=URL, body=b"shared"))

        # When: Both execute
        r1 = await first.execute(RequestData.get(URL))
        r2 = await second.execute(RequestData.get(URL))

        # Then: One session served both
        assert len(built) == 1
        assert r1.body == r2.body == b"shared"

        # When: The first closes
        await first.close()

        # Then: The session stays open
        fake_page.close.assert_not_awaited()
        assert built[0].closed is False

        # When: The last closes
        await second.close()

        # Then: The session is torn down
        fake_page.close.assert_awaited_once()
        assert built[0].closed is True

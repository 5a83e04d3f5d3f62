"""
Browsing session lifecycle for renderfetch.

A session is the (engine, browser, context, page) tuple that backs one or
more PlaywrightClient workers. Each session has exactly one page, guarded by
the session lock so only one request runs on it at a time.

Sessions are either private to a worker or the shared session of a
SessionRegistry. The shared session is reference counted and torn down when
its last holder releases it.
"""

import asyncio
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from renderfetch.crawler.auth import AuthBootstrapper
from renderfetch.crawler.errors import CrawlerSystemError
from renderfetch.crawler.shutdown import ShutdownCoordinator
from renderfetch.utils.config import PlaywrightClientConfig
from renderfetch.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, BrowserType, Page, Playwright

logger = get_logger(__name__)


class BrowserEngine(str, Enum):
    """Rendering engines supported by Playwright."""

    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"

    @classmethod
    def from_name(cls, name: str | None) -> "BrowserEngine":
        """Resolve a configured engine name (case-sensitive).

        Raises:
            CrawlerSystemError: For an unknown name.
        """
        for member in cls:
            if member.value == name:
                return member
        raise CrawlerSystemError(
            f"Unknown browser name: {name}",
            details={"browser_name": name},
        )

    def browser_type(self, playwright: "Playwright") -> "BrowserType":
        if self is BrowserEngine.FIREFOX:
            return playwright.firefox
        if self is BrowserEngine.WEBKIT:
            return playwright.webkit
        return playwright.chromium


class EngineHandle:
    """Owns one Playwright driver process."""

    def __init__(self, playwright: "Playwright"):
        self.playwright = playwright

    @classmethod
    async def start(cls) -> "EngineHandle":
        """Start the Playwright driver."""
        from playwright.async_api import async_playwright

        playwright = await async_playwright().start()
        logger.debug("Playwright initialized")
        return cls(playwright)

    async def launch(
        self,
        engine: BrowserEngine,
        launch_options: dict[str, Any],
        env: dict[str, str] | None = None,
    ) -> "Browser":
        """Launch a browser of the given engine.

        Args:
            engine: Engine to launch.
            launch_options: Keyword arguments for BrowserType.launch().
            env: Extra environment variables for the browser process.

        Returns:
            Launched browser.
        """
        options = dict(launch_options)
        if env:
            options["env"] = {**os.environ, **env}
        logger.debug("Launching browser", engine=engine.value)
        return await engine.browser_type(self.playwright).launch(**options)

    async def stop(self) -> None:
        await self.playwright.stop()


@dataclass(eq=False)
class BrowsingSession:
    """Engine, browser, context and page used by one or more workers.

    Attributes:
        engine: Playwright driver handle.
        browser: Launched browser.
        context: Browser context holding cookies and credentials.
        page: The single page requests run on.
        shared: Whether this is a registry's shared session.
        lock: Serializes requests on the page.
        closed: Set once torn down.
    """

    engine: EngineHandle | None = None
    browser: "Browser | None" = None
    context: "BrowserContext | None" = None
    page: "Page | None" = None
    shared: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False


async def create_session(
    config: PlaywrightClientConfig,
    bootstrapper: AuthBootstrapper,
    *,
    env: dict[str, str] | None = None,
    shutdown: ShutdownCoordinator | None = None,
    target_url: str | None = None,
) -> BrowsingSession:
    """Build a new browsing session.

    If any step fails, everything built so far is torn down before a single
    CrawlerSystemError is raised.

    Args:
        config: Client configuration.
        bootstrapper: Builds the (possibly authenticated) context.
        env: Extra environment variables for the browser process.
        shutdown: Coordinator used for cleanup on failure.
        target_url: URL that triggered the build, used as the authentication
            handshake target for entries without their own URL.

    Returns:
        Ready session with a blank page.

    Raises:
        CrawlerSystemError: If any resource cannot be created.
    """
    shutdown = shutdown or ShutdownCoordinator(config.close_timeout)
    session = BrowsingSession()

    try:
        engine = BrowserEngine.from_name(config.browser_name)
        session.engine = await EngineHandle.start()
        session.browser = await session.engine.launch(
            engine, config.build_launch_options(), env
        )
        session.context = await bootstrapper.build_context(
            session.browser,
            config.build_context_options(),
            config.authentications,
            target_url,
        )
        session.page = await session.context.new_page()

        timeout_ms = config.navigation_timeout_seconds * 1000
        session.page.set_default_navigation_timeout(timeout_ms)
        session.page.set_default_timeout(timeout_ms)
    except CrawlerSystemError:
        await shutdown.close(session)
        raise
    except Exception as e:
        logger.debug("Failed to create browsing session", error=str(e))
        await shutdown.close(session)
        raise CrawlerSystemError(
            f"Failed to create Playwright worker: {e}",
            details={"browser_name": config.browser_name},
        ) from e

    logger.info(
        "Browsing session created",
        browser_name=config.browser_name,
        headless=config.headless,
    )
    return session


class SessionFactory(Protocol):
    async def __call__(
        self,
        config: PlaywrightClientConfig,
        bootstrapper: AuthBootstrapper,
        *,
        env: dict[str, str] | None = None,
        shutdown: ShutdownCoordinator | None = None,
        target_url: str | None = None,
    ) -> BrowsingSession:
        ...


class SessionRegistry:
    """Hands out private sessions and one reference-counted shared session.

    The shared session is built by the first acquirer (with that acquirer's
    configuration) and torn down when the last holder releases it.
    """

    def __init__(self, session_factory: SessionFactory = create_session):
        self._session_factory = session_factory
        self._lock = asyncio.Lock()
        self._shared: BrowsingSession | None = None
        self._ref_count = 0

    @property
    def shared_session(self) -> BrowsingSession | None:
        return self._shared

    @property
    def ref_count(self) -> int:
        return self._ref_count

    async def acquire(
        self,
        config: PlaywrightClientConfig,
        bootstrapper: AuthBootstrapper,
        *,
        env: dict[str, str] | None = None,
        shutdown: ShutdownCoordinator | None = None,
        target_url: str | None = None,
    ) -> BrowsingSession:
        """Get a session for a worker.

        Args:
            config: Client configuration (shared_client selects the mode).
            bootstrapper: Context builder.
            env: Extra environment for the browser process.
            shutdown: Coordinator for cleanup on construction failure.
            target_url: URL that triggered the acquire, if known.

        Returns:
            Private session, or the shared session with its count incremented.
        """
        if not config.shared_client:
            return await self._session_factory(
                config, bootstrapper, env=env, shutdown=shutdown, target_url=target_url
            )

        async with self._lock:
            if self._shared is None or self._shared.closed:
                session = await self._session_factory(
                    config, bootstrapper, env=env, shutdown=shutdown, target_url=target_url
                )
                session.shared = True
                self._shared = session
                self._ref_count = 0
                logger.info("Shared browsing session created")
            self._ref_count += 1
            return self._shared

    async def release(self, session: BrowsingSession, shutdown: ShutdownCoordinator) -> None:
        """Give a session back.

        Private sessions are closed immediately; the shared session only when
        its reference count drops to zero.
        """
        if not session.shared:
            await shutdown.close(session)
            return

        async with self._lock:
            if session is not self._shared:
                logger.debug("Shared session already released")
                return
            self._ref_count -= 1
            if self._ref_count > 0:
                logger.debug("Shared session still in use", ref_count=self._ref_count)
                return
            self._shared = None
            self._ref_count = 0

        await shutdown.close(session)


# ============================================================================
# Global Instance
# ============================================================================

_session_registry: SessionRegistry | None = None


def get_session_registry() -> SessionRegistry:
    """Get or create the process-wide SessionRegistry."""
    global _session_registry

    if _session_registry is None:
        _session_registry = SessionRegistry()

    return _session_registry


def reset_session_registry() -> None:
    """Reset the process-wide registry without closing. For testing only."""
    global _session_registry
    _session_registry = None

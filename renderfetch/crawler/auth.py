"""
Authenticated browser context bootstrap for renderfetch.

The browser cannot run Basic/Digest/Form login on its own without user
interaction, so a conventional HTTP client (httpx) performs the handshake
first. Its cookies are then transplanted into the new browser context
before any navigation:

- HTTP credentials of the first non-form entry are set on the context
- Each entry runs one request/response cycle against its own URL, or the
  URL of the first crawled page when the entry names none
- Cookie jar entries are converted to Playwright's cookie model
  (millisecond expiry -> seconds as float, no expiry -> session cookie)
"""

import re
from collections.abc import Callable
from datetime import datetime
from http.cookiejar import Cookie as JarCookie
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, urlparse

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from renderfetch.utils.config import AuthenticationConfig
from renderfetch.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext

logger = get_logger(__name__)

DEFAULT_AUTH_TIMEOUT = 30.0


# =============================================================================
# Cookie Model
# =============================================================================


class CookieData(BaseModel):
    """Cookie collected by the HTTP client, ready for transfer.

    expiry_millis uses the millisecond epoch of the HTTP client side; a
    datetime is accepted and converted.
    """

    model_config = ConfigDict(frozen=False)

    name: str = Field(..., description="Cookie name")
    value: str = Field(..., description="Cookie value")
    domain: str = Field(default="", description="Cookie domain")
    path: str = Field(default="/", description="Cookie path")
    secure: bool = Field(default=False, description="Secure flag")
    expiry_millis: int | None = Field(default=None, description="Expiry as epoch millis")
    host_only: bool = Field(default=False, description="Set without a Domain attribute")
    source_url: str | None = Field(default=None, description="URL the cookie was received from")

    @field_validator("expiry_millis", mode="before")
    @classmethod
    def _expiry_to_millis(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return int(value.timestamp() * 1000)
        return value

    @property
    def expires(self) -> float | None:
        """Expiry in epoch seconds, as Playwright expects."""
        if self.expiry_millis is None:
            return None
        return self.expiry_millis / 1000.0

    def to_playwright_cookie(self) -> dict[str, Any]:
        """Convert to a Playwright SetCookieParam dict.

        Host-only cookies take the host of their source URL without a leading
        dot, which Playwright treats as host-only. The stdlib jar may have
        rewritten that host (e.g. "localhost" -> "localhost.local").

        Returns:
            Cookie dict for BrowserContext.add_cookies().
        """
        cookie: dict[str, Any] = {"name": self.name, "value": self.value}

        domain = self.domain
        if (self.host_only or not domain) and self.source_url:
            domain = urlparse(self.source_url).hostname or ""

        if domain:
            cookie["domain"] = domain
            cookie["path"] = self.path or "/"
        elif self.source_url:
            parsed = urlparse(self.source_url)
            cookie["url"] = f"{parsed.scheme}://{parsed.netloc}{self.path or '/'}"

        cookie["secure"] = self.secure
        if self.expiry_millis is not None:
            cookie["expires"] = self.expires
        return cookie

    @classmethod
    def from_jar_cookie(cls, cookie: JarCookie, source_url: str | None = None) -> "CookieData":
        """Create from an http.cookiejar Cookie (httpx cookie jar entry).

        Args:
            cookie: Cookie jar entry (expires in epoch seconds).
            source_url: URL of the handshake that produced the cookie.

        Returns:
            CookieData instance.
        """
        return cls(
            name=cookie.name,
            value=cookie.value or "",
            domain=cookie.domain or "",
            path=cookie.path or "/",
            secure=bool(cookie.secure),
            expiry_millis=cookie.expires * 1000 if cookie.expires is not None else None,
            host_only=not cookie.domain_specified,
            source_url=source_url,
        )


def convert_cookies(cookies: list[CookieData]) -> list[dict[str, Any]]:
    """Convert collected cookies to Playwright cookie dicts."""
    return [c.to_playwright_cookie() for c in cookies]


# =============================================================================
# Conventional HTTP Authentication
# =============================================================================


def _substitute_credentials(value: str, entry: AuthenticationConfig) -> str:
    return value.replace("${username}", entry.username).replace("${password}", entry.password)


class FormLogin:
    """Form-based login driven by the form scheme parameters.

    Parameters (all optional except login_url):
        token_method, token_url, token_pattern, token_name: fetch a page and
            extract a CSRF token with the first regex group.
        login_method, login_url, login_parameters: submit the login form.
            login_parameters is a query string whose values may contain
            ${username} and ${password}.
        encoding: charset used to decode the token page.
    """

    def __init__(self, entry: AuthenticationConfig):
        self.entry = entry
        self.params = entry.parameters

    async def _fetch_token(self, client: httpx.AsyncClient) -> str | None:
        token_url = self.params.get("token_url")
        token_pattern = self.params.get("token_pattern")
        if not token_url or not token_pattern:
            return None

        response = await client.request(self.params.get("token_method", "GET").upper(), token_url)
        encoding = self.params.get("encoding")
        if encoding:
            response.encoding = encoding
        match = re.search(token_pattern, response.text)
        if match is None:
            logger.warning("Login token not found", token_url=token_url)
            return None
        return match.group(1) if match.groups() else match.group(0)

    def _build_parameters(self, token: str | None) -> list[tuple[str, str]]:
        raw = self.params.get("login_parameters", "")
        pairs = [
            (name, _substitute_credentials(value, self.entry))
            for name, value in parse_qsl(raw, keep_blank_values=True)
        ]
        token_name = self.params.get("token_name")
        if token is not None and token_name:
            pairs.append((token_name, token))
        return pairs

    async def login(self, client: httpx.AsyncClient) -> httpx.Response | None:
        """Run the login exchange.

        Returns:
            Login response, or None when no login_url is configured.
        """
        login_url = self.params.get("login_url")
        if not login_url:
            logger.warning("Form authentication without login_url", url=self.entry.url)
            return None

        token = await self._fetch_token(client)
        pairs = self._build_parameters(token)
        method = self.params.get("login_method", "POST").upper()

        if method == "GET":
            return await client.request(method, login_url, params=pairs)
        return await client.request(method, login_url, data=dict(pairs))


def build_http_auth(entry: AuthenticationConfig) -> httpx.Auth | None:
    """httpx auth flow for a non-form entry."""
    scheme = (entry.scheme or "basic").lower()
    if scheme == "digest":
        return httpx.DigestAuth(entry.username, entry.password)
    if scheme == "basic":
        return httpx.BasicAuth(entry.username, entry.password)
    logger.warning("Unsupported authentication scheme", scheme=entry.scheme)
    return None


class AuthBootstrapper:
    """Builds browser contexts pre-loaded with authentication state.

    Args:
        verify: TLS verification for the HTTP client.
        proxy: Proxy URL for the HTTP client.
        timeout: HTTP client timeout in seconds.
        client_factory: Factory returning a fresh httpx.AsyncClient. Defaults
            to one built from verify/proxy/timeout.
    """

    def __init__(
        self,
        *,
        verify: bool = True,
        proxy: str | None = None,
        timeout: float = DEFAULT_AUTH_TIMEOUT,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ):
        self._verify = verify
        self._proxy = proxy
        self._timeout = timeout
        self._client_factory = client_factory or self._default_client

    def _default_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            verify=self._verify,
            proxy=self._proxy,
            timeout=httpx.Timeout(self._timeout),
            follow_redirects=True,
        )

    @staticmethod
    def select_http_credentials(
        authentications: list[AuthenticationConfig],
    ) -> dict[str, str] | None:
        """Credentials of the first non-form entry (later ones are ignored)."""
        for entry in authentications:
            if not entry.is_form:
                return {"username": entry.username, "password": entry.password}
        return None

    async def collect_cookies(
        self,
        entry: AuthenticationConfig,
        target_url: str | None = None,
    ) -> list[CookieData]:
        """Run the HTTP handshake for one entry and return its cookies.

        Non-form entries authenticate against entry.url, or target_url when
        the entry names no URL. Failures are logged and yield whatever
        cookies were collected.
        """
        url = entry.url or target_url
        if not url and not entry.is_form:
            return []

        client = self._client_factory()
        try:
            if entry.is_form:
                await FormLogin(entry).login(client)
                if entry.url:
                    await client.get(entry.url)
            else:
                await client.get(url, auth=build_http_auth(entry))
        except (httpx.HTTPError, httpx.InvalidURL, re.error) as e:
            logger.warning(
                "Authentication handshake failed",
                url=url,
                scheme=entry.scheme,
                error=str(e),
            )
        finally:
            jar = list(client.cookies.jar)
            await client.aclose()

        source_url = (entry.url or entry.parameters.get("login_url")) if entry.is_form else url
        cookies = [CookieData.from_jar_cookie(c, source_url=source_url) for c in jar]
        logger.debug(
            "Collected authentication cookies",
            url=url,
            scheme=entry.scheme,
            cookie_count=len(cookies),
        )
        return cookies

    async def build_context(
        self,
        browser: "Browser",
        context_options: dict[str, Any],
        authentications: list[AuthenticationConfig],
        target_url: str | None = None,
    ) -> "BrowserContext":
        """Create a browser context, authenticated when entries are configured.

        Args:
            browser: Launched browser.
            context_options: Keyword arguments for new_context().
            authentications: Non-interactive authentication entries.
            target_url: First URL to be crawled, the handshake target for
                entries without their own URL.

        Returns:
            New browser context.
        """
        if not authentications:
            return await browser.new_context(**context_options)

        options = dict(context_options)
        credentials = self.select_http_credentials(authentications)
        if credentials is not None and "http_credentials" not in options:
            options["http_credentials"] = credentials

        context = await browser.new_context(**options)

        cookies: list[CookieData] = []
        for entry in authentications:
            cookies.extend(await self.collect_cookies(entry, target_url))

        if cookies:
            await context.add_cookies(convert_cookies(cookies))

        logger.info(
            "Authenticated browser context created",
            auth_entries=len(authentications),
            http_credentials=credentials is not None,
            cookie_count=len(cookies),
        )
        return context

"""
Pytest fixtures and configuration for renderfetch tests.

=============================================================================
Test Classification
=============================================================================

Markers:
- @pytest.mark.unit: Single class/function, Playwright and network mocked
  - DEFAULT: Tests without marker are auto-classified as unit
- @pytest.mark.integration: Several components together, Playwright mocked
- @pytest.mark.e2e: Real browser against a local HTTP server
  - DEFAULT EXCLUDED: Must use `pytest -m e2e` to run
  - Requires `playwright install chromium`
- @pytest.mark.slow: Tests taking >5 seconds

In CI environments (CI=true, GITHUB_ACTIONS=true, GITLAB_CI) E2E tests are
skipped even when selected.

=============================================================================
Mock Strategy
=============================================================================

- Playwright page/response/download objects: MagicMock with AsyncMock methods
- httpx: MockTransport, no network in unit tests
- File I/O: tmp_path fixture
"""

import os
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment before importing anything else
os.environ["RENDERFETCH_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")
os.environ["RENDERFETCH_GENERAL__LOG_LEVEL"] = "DEBUG"


# =============================================================================
# Environment Detection
# =============================================================================


def is_ci() -> bool:
    """Check if running in a CI environment."""
    return (
        os.environ.get("CI") == "true"
        or os.environ.get("GITHUB_ACTIONS") == "true"
        or bool(os.environ.get("GITLAB_CI"))
    )


# =============================================================================
# Pytest Hooks for Test Classification
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line(
        "markers", "unit: Unit tests with no external dependencies (fast, <1s/test)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests with mocked external dependencies (<5s/test)"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests requiring installed browsers (excluded by default)"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds (excluded by default)"
    )


def pytest_collection_modifyitems(config, items):
    """Default unmarked tests to unit; skip E2E in CI."""
    skip_e2e = pytest.mark.skip(reason="E2E tests skipped in CI. Run locally with: pytest -m e2e")

    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)

        if is_ci() and any(marker.name == "e2e" for marker in item.iter_markers()):
            item.add_marker(skip_e2e)


# =============================================================================
# Global State
# =============================================================================


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset the process-wide session registry and cached settings."""
    from renderfetch.crawler.session import reset_session_registry
    from renderfetch.utils.config import get_settings

    reset_session_registry()
    get_settings.cache_clear()
    yield
    reset_session_registry()
    get_settings.cache_clear()


# =============================================================================
# Playwright Fakes
# =============================================================================


def make_response(
    url: str = "https://example.com/",
    status: int = 200,
    headers: dict[str, str] | None = None,
    body: bytes = b"<html><body>raw</body></html>",
) -> MagicMock:
    """Create a mock Playwright Response."""
    response = MagicMock()
    response.url = url
    response.status = status
    response.all_headers = AsyncMock(
        return_value=headers if headers is not None else {"content-type": "text/html; charset=UTF-8"}
    )
    response.body = AsyncMock(return_value=body)
    return response


def make_download(content: bytes = b"%PDF-1.4 test", suggested_filename: str = "file.pdf") -> MagicMock:
    """Create a mock Playwright Download whose save_as writes content."""
    download = MagicMock()
    download.suggested_filename = suggested_filename

    async def _save_as(path: Any) -> None:
        Path(path).write_bytes(content)

    download.save_as = AsyncMock(side_effect=_save_as)
    download.delete = AsyncMock()
    return download


class FakePage:
    """Mock Playwright Page with event listener support.

    goto() consults the script registered per URL: either a response to
    return, or an exception to raise after emitting the given events.
    """

    def __init__(self):
        self.listeners: dict[str, list] = {}
        self.scripts: dict[str, dict[str, Any]] = {}
        self.visited: list[str] = []
        self.content = AsyncMock(return_value="<html><body>rendered</body></html>")
        self.wait_for_load_state = AsyncMock()
        self.set_default_navigation_timeout = MagicMock()
        self.set_default_timeout = MagicMock()
        self.close = AsyncMock()

    def on(self, event: str, handler) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler) -> None:
        self.listeners.get(event, []).remove(handler)

    def emit(self, event: str, payload: Any) -> None:
        for handler in list(self.listeners.get(event, [])):
            handler(payload)

    def script(
        self,
        url: str,
        *,
        response: Any = None,
        events: list[tuple[str, Any]] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.scripts[url] = {"response": response, "events": events or [], "error": error}

    async def goto(self, url: str, **kwargs: Any) -> Any:
        self.visited.append(url)
        if url == "about:blank":
            return None
        scripted = self.scripts.get(url, {})
        for event, payload in scripted.get("events", []):
            self.emit(event, payload)
        if scripted.get("error") is not None:
            raise scripted["error"]
        return scripted.get("response")


@pytest.fixture
def fake_page() -> FakePage:
    """Fresh fake page."""
    return FakePage()


@pytest.fixture
def fake_session(fake_page: FakePage):
    """BrowsingSession wrapping the fake page."""
    from renderfetch.crawler.session import BrowsingSession

    return BrowsingSession(
        engine=MagicMock(stop=AsyncMock()),
        browser=MagicMock(close=AsyncMock()),
        context=MagicMock(close=AsyncMock()),
        page=fake_page,
    )


@pytest.fixture
def response_factory():
    """Factory for mock Playwright responses."""
    return make_response


@pytest.fixture
def download_factory():
    """Factory for mock Playwright downloads."""
    return make_download

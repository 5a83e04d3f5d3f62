"""
Bounded teardown of a browsing session.

Resources are closed in dependency order (page, context, browser, engine).
Each step runs as its own task and gets close_timeout seconds; a step that
overruns is cancelled and left behind so the next step still runs. Teardown
never raises.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from renderfetch.utils.logging import get_logger

if TYPE_CHECKING:
    from renderfetch.crawler.session import BrowsingSession

logger = get_logger(__name__)


def _consume_result(task: asyncio.Task) -> None:
    """Retrieve the outcome of an abandoned step so it is not reported as unhandled."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned shutdown step finished with error", step=task.get_name(), error=str(exc))


class ShutdownCoordinator:
    """Closes page, context, browser and engine, each under its own deadline.

    Args:
        close_timeout: Seconds to wait for each step.
    """

    def __init__(self, close_timeout: float = 15):
        self.close_timeout = close_timeout

    async def _run_step(self, name: str, closer: Callable[[], Awaitable[Any]]) -> bool:
        """Run one teardown step.

        Returns:
            True if the step finished within the deadline without error.
        """
        logger.debug("Closing resource", step=name)

        async def _invoke() -> Any:
            return await closer()

        task = asyncio.create_task(_invoke(), name=f"renderfetch-close-{name}")

        done, _pending = await asyncio.wait({task}, timeout=self.close_timeout)
        if not done:
            task.add_done_callback(_consume_result)
            task.cancel()
            logger.warning(
                "Resource close timed out; abandoning",
                step=name,
                close_timeout=self.close_timeout,
            )
            return False

        if task.cancelled():
            logger.warning("Resource close was cancelled", step=name)
            return False

        exc = task.exception()
        if exc is not None:
            logger.warning("Resource close failed", step=name, error=str(exc))
            return False

        return True

    async def close(self, session: "BrowsingSession") -> dict[str, bool]:
        """Tear down every resource the session holds.

        Args:
            session: Session to close. Partially built sessions are fine.

        Returns:
            Dict mapping step name to whether it closed cleanly. Missing
            resources are not listed.
        """
        steps: list[tuple[str, Any, Callable[[], Awaitable[Any]]]] = [
            ("page", session.page, lambda: session.page.close()),
            ("context", session.context, lambda: session.context.close()),
            ("browser", session.browser, lambda: session.browser.close()),
            ("engine", session.engine, lambda: session.engine.stop()),
        ]

        results: dict[str, bool] = {}
        for name, resource, closer in steps:
            if resource is None:
                continue
            results[name] = await self._run_step(name, closer)

        session.page = None
        session.context = None
        session.browser = None
        session.engine = None
        session.closed = True

        logger.info(
            "Browsing session closed",
            steps=len(results),
            clean=sum(1 for ok in results.values() if ok),
        )
        return results

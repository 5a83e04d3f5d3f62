"""
renderfetch utilities module.
"""

from renderfetch.utils.config import (
    AuthenticationConfig,
    PlaywrightClientConfig,
    RenderedState,
    get_project_root,
    get_settings,
)
from renderfetch.utils.logging import (
    LogContext,
    configure_logging,
    get_logger,
)

__all__ = [
    # Config
    "AuthenticationConfig",
    "PlaywrightClientConfig",
    "RenderedState",
    "get_settings",
    "get_project_root",
    # Logging
    "get_logger",
    "configure_logging",
    "LogContext",
]

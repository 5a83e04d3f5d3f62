"""
Configuration management for renderfetch.
Loads and validates settings from YAML files and environment variables.
"""

import os
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any
from urllib.parse import quote

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


class RenderedState(str, Enum):
    """Load signal that gates when rendered content is considered final."""

    LOAD = "load"
    DOM_READY = "domcontentloaded"
    NETWORK_IDLE = "networkidle"

    @classmethod
    def from_name(cls, name: str) -> "RenderedState":
        """Resolve a configured name (LOAD, DOM_READY, NETWORK_IDLE, ...)."""
        key = name.strip().upper()
        if key == "DOMCONTENTLOADED":
            return cls.DOM_READY
        if key == "NETWORKIDLE":
            return cls.NETWORK_IDLE
        try:
            return cls[key]
        except KeyError:
            for member in cls:
                if member.value == name.strip().lower():
                    return member
            raise ValueError(f"Unknown rendered state: {name}") from None


class ProxyCredentials(BaseModel):
    """Forward-proxy credentials."""

    model_config = ConfigDict(extra="forbid")

    username: str
    password: str = ""


class AuthenticationConfig(BaseModel):
    """Non-interactive authentication entry.

    Notes:
    - scheme None is treated like any other non-form scheme.
    - url is the target the conventional HTTP client hits to run its
      handshake. Entries without url only contribute HTTP credentials.
    - parameters holds the form scheme settings (token_url, token_pattern,
      token_name, login_url, login_method, login_parameters, ...).
    """

    model_config = ConfigDict(extra="forbid")

    scheme: str | None = None
    url: str | None = None
    username: str = ""
    password: str = ""
    parameters: dict[str, str] = Field(default_factory=dict)

    @property
    def is_form(self) -> bool:
        return self.scheme is not None and self.scheme.lower() == "form"


class PlaywrightClientConfig(BaseModel):
    """Browser client configuration.

    Field aliases match the crawler's parameter-map keys so a map such as
    {"browserName": "firefox", "renderedState": "LOAD"} can be validated
    directly.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    browser_name: str = Field(default="chromium", alias="browserName")
    shared_client: bool = Field(default=False, alias="sharedClient")
    rendered_state: RenderedState = Field(
        default=RenderedState.NETWORK_IDLE, alias="renderedState"
    )
    download_timeout: int = Field(default=15, alias="downloadTimeout")  # seconds
    close_timeout: int = Field(default=15, alias="closeTimeout")  # seconds
    content_wait_millis: int = Field(default=0, alias="contentWaitDuration")
    navigation_timeout_seconds: float = Field(default=30.0, alias="navigationTimeout")
    headless: bool = True

    ignore_https_errors: bool = Field(default=False, alias="ignoreHttpsErrors")
    # Legacy flag name from the HTTP client configuration
    ignore_ssl_certificate: bool = Field(default=False, alias="ignoreSslCertificate")

    proxy_host: str | None = Field(default=None, alias="proxyHost")
    proxy_port: int | None = Field(default=None, alias="proxyPort")
    proxy_credentials: ProxyCredentials | None = Field(default=None, alias="proxyCredentials")
    proxy_bypass: str | None = Field(default=None, alias="proxyBypass")

    launch_options: dict[str, Any] = Field(default_factory=dict, alias="launchOptions")
    context_options: dict[str, Any] = Field(default_factory=dict, alias="newContextOptions")
    authentications: list[AuthenticationConfig] = Field(default_factory=list)

    @field_validator("rendered_state", mode="before")
    @classmethod
    def _parse_rendered_state(cls, value: Any) -> Any:
        if isinstance(value, str):
            return RenderedState.from_name(value)
        return value

    @field_validator("proxy_port", mode="before")
    @classmethod
    def _parse_proxy_port(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def should_ignore_https_errors(self) -> bool:
        """Either the current flag or its legacy alias."""
        return self.ignore_https_errors or self.ignore_ssl_certificate

    def build_proxy(self) -> dict[str, str] | None:
        """Build Playwright proxy settings.

        Returns:
            Proxy dict for new_context(), or None when no proxy is configured.
        """
        if not self.proxy_host:
            return None

        host = self.proxy_host.strip()
        if "://" in host:
            server = host
        elif self.proxy_port:
            server = f"http://{host}:{self.proxy_port}"
        else:
            server = f"http://{host}"

        proxy: dict[str, str] = {"server": server}
        if self.proxy_bypass:
            proxy["bypass"] = ",".join(
                p.strip() for p in self.proxy_bypass.split(",") if p.strip()
            )
        if self.proxy_credentials is not None:
            proxy["username"] = self.proxy_credentials.username
            proxy["password"] = self.proxy_credentials.password
        return proxy

    def build_http_proxy_url(self) -> str | None:
        """Proxy URL for the conventional HTTP client, credentials embedded.

        The bypass list only applies to the browser.
        """
        proxy = self.build_proxy()
        if proxy is None:
            return None
        server = proxy["server"]
        if "username" not in proxy:
            return server
        scheme, _, rest = server.partition("://")
        userinfo = f"{quote(proxy['username'], safe='')}:{quote(proxy['password'], safe='')}"
        return f"{scheme}://{userinfo}@{rest}"

    def build_context_options(self) -> dict[str, Any]:
        """Build keyword arguments for Browser.new_context()."""
        options: dict[str, Any] = {"accept_downloads": True}
        if self.should_ignore_https_errors:
            options["ignore_https_errors"] = True
        proxy = self.build_proxy()
        if proxy is not None:
            options["proxy"] = proxy
        options.update(self.context_options)
        return options

    def build_launch_options(self) -> dict[str, Any]:
        """Build keyword arguments for BrowserType.launch()."""
        options: dict[str, Any] = {"headless": self.headless}
        options.update(self.launch_options)
        return options

    @classmethod
    def from_param_map(cls, params: dict[str, Any]) -> "PlaywrightClientConfig":
        """Create from a crawler init parameter map."""
        return cls.model_validate(params)


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "renderfetch"
    version: str = "0.1.0"
    log_level: str = "INFO"
    logs_dir: str = "logs"


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    client: PlaywrightClientConfig = Field(default_factory=PlaywrightClientConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml and apply the settings section of local.yaml.

    Args:
        config_dir: Configuration directory path.

    Returns:
        Merged configuration dictionary.
    """
    config: dict[str, Any] = {}

    base_path = config_dir / "settings.yaml"
    if base_path.exists():
        with open(base_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

    local_path = config_dir / "local.yaml"
    if local_path.exists():
        with open(local_path, encoding="utf-8") as f:
            local_overrides = yaml.safe_load(f) or {}
        section = local_overrides.get("settings")
        if isinstance(section, dict):
            config = _deep_merge(config, section)

    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with RENDERFETCH_ and use
    double underscores for nested keys.

    Example:
        RENDERFETCH_CLIENT__BROWSER_NAME=firefox

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    prefix = "RENDERFETCH_"

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key == "RENDERFETCH_CONFIG_DIR":
            continue

        # Remove prefix and split by double underscore
        key_path = key[len(prefix) :].lower().split("__")

        # Navigate to the correct nested location
        current = config
        for part in key_path[:-1]:
            if part not in current or not isinstance(current[part], dict):
                current[part] = {}
            current = current[part]

        # Set the value (attempt to parse as appropriate type)
        final_key = key_path[-1]
        try:
            if value.lower() in ("true", "false"):
                current[final_key] = value.lower() == "true"
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. YAML configuration files
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config_dir = Path(os.environ.get("RENDERFETCH_CONFIG_DIR", "config"))

    config = _load_yaml_config(config_dir)
    config = _apply_env_overrides(config)

    return Settings(**config)


def get_project_root() -> Path:
    """Get the project root directory.

    Returns:
        Project root path.
    """
    # Assuming this file is at renderfetch/utils/config.py
    return Path(__file__).parent.parent.parent

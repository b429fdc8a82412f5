"""
Configuration models and environment resolution for the default transport.
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# Constants
DEFAULT_TIMEOUT_CONNECT = 5.0
DEFAULT_TIMEOUT_READ = 30.0
DEFAULT_TIMEOUT_WRITE = 10.0

ENV_KEEP_ALIVE = "FETCH_KEEP_ALIVE"
ENV_PROXY_KEYS = ["PROXY_URL", "HTTPS_PROXY", "HTTP_PROXY"]


class TimeoutConfig(BaseModel):
    """Socket-level timeouts (seconds) handed to httpx."""
    connect: float = DEFAULT_TIMEOUT_CONNECT
    read: float = DEFAULT_TIMEOUT_READ
    write: float = DEFAULT_TIMEOUT_WRITE
    pool: Optional[float] = None


class TransportConfig(BaseModel):
    """Settings for the httpx-backed transport.

    Unset fields (None) are filled from the environment by
    resolve_transport_config.
    """
    keep_alive: Optional[bool] = Field(default=None, description="Reuse one pooled client across calls")
    follow_redirects: bool = True
    verify_ssl: Optional[bool] = Field(default=None, description="Verify TLS certificates")
    proxy_url: Optional[Union[str, bool]] = Field(default=None, description="Proxy URL, or False to disable")
    timeout: Optional[Union[float, TimeoutConfig]] = None
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("proxy_url")
    @classmethod
    def validate_proxy_url(cls, v: Optional[Union[str, bool]]) -> Optional[Union[str, bool]]:
        if v is True:
            raise ValueError("proxy_url must be a URL string or False")
        if isinstance(v, str) and v and not v.startswith(("http://", "https://", "socks5://")):
            raise ValueError("proxy_url must start with http://, https:// or socks5://")
        return v


class ResolvedTransportConfig(BaseModel):
    """Fully resolved transport configuration."""
    keep_alive: bool
    follow_redirects: bool
    verify_ssl: bool
    proxy_url: Optional[str]
    timeout: TimeoutConfig
    headers: Dict[str, str]


def normalize_timeout(timeout: Optional[Union[float, TimeoutConfig]]) -> TimeoutConfig:
    """Normalize timeout to TimeoutConfig object."""
    if timeout is None:
        return TimeoutConfig()
    if isinstance(timeout, (int, float)):
        return TimeoutConfig(connect=float(timeout), read=float(timeout), write=float(timeout))
    return timeout


def _env_first(keys: List[str]) -> Optional[str]:
    for key in keys:
        val = os.getenv(key)
        if val:
            return val
    return None


def resolve_keep_alive(arg: Optional[bool] = None) -> bool:
    """Argument first, then FETCH_KEEP_ALIVE parsed as a JSON boolean."""
    if arg is not None:
        return arg
    raw = os.getenv(ENV_KEEP_ALIVE, "false")
    try:
        val: Any = json.loads(raw.lower())
    except ValueError:
        val = raw.lower() in ("true", "1", "yes", "on")
    return bool(val)


def resolve_proxy_url(proxy_url_override: Optional[Union[str, bool]] = None) -> Optional[str]:
    """Resolve the proxy URL.

    Precedence:
    1. proxy_url_override (if False, explicitly disable proxy)
    2. proxy_url_override (if string, return it)
    3. PROXY_URL env var
    4. HTTPS_PROXY env var
    5. HTTP_PROXY env var
    """
    if proxy_url_override is False:
        logger.debug("Proxy explicitly disabled via override=False")
        return None

    if isinstance(proxy_url_override, str) and proxy_url_override:
        logger.debug("Using explicit proxy URL override")
        return proxy_url_override

    env_proxy = _env_first(ENV_PROXY_KEYS)
    if env_proxy:
        logger.debug("Using proxy URL from environment")
        return env_proxy

    logger.debug("No proxy URL found")
    return None


def is_ssl_verify_disabled_by_env() -> bool:
    """Check if SSL verification is disabled by environment variables."""
    if os.getenv("NODE_TLS_REJECT_UNAUTHORIZED") == "0":
        return True
    if os.getenv("SSL_CERT_VERIFY") == "0":
        return True
    return False


def resolve_transport_config(config: Optional[TransportConfig] = None) -> ResolvedTransportConfig:
    """Apply environment values and defaults."""
    config = config or TransportConfig()

    if config.verify_ssl is not None:
        verify_ssl = config.verify_ssl
    else:
        verify_ssl = not is_ssl_verify_disabled_by_env()

    resolved = ResolvedTransportConfig(
        keep_alive=resolve_keep_alive(config.keep_alive),
        follow_redirects=config.follow_redirects,
        verify_ssl=verify_ssl,
        proxy_url=resolve_proxy_url(config.proxy_url),
        timeout=normalize_timeout(config.timeout),
        headers=dict(config.headers),
    )
    logger.debug(
        f"Resolved transport config: keep_alive={resolved.keep_alive} "
        f"verify_ssl={resolved.verify_ssl} proxy={bool(resolved.proxy_url)}"
    )
    return resolved

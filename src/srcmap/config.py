"""Configuration loading and validation for the upload command."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from urllib.parse import urlparse

import httpx
import keyring
from keyring.errors import KeyringError

from srcmap.constants import API_KEY_ENV_VAR
from srcmap.models import ProxyConfiguration, UploadConfig

logger = logging.getLogger(__name__)

SERVICE_NAME = "srcmap"
KEY_NAME = "api_key"


class ConfigurationError(Exception):
    """Invalid or missing configuration. Aborts the run before any upload."""


def get_api_key() -> str:
    """Get the intake API key: system keyring first, then env var fallback.

    Returns:
        API key string.

    Raises:
        ConfigurationError: If no key is found anywhere, with actionable
            instructions.
    """
    try:
        api_key = keyring.get_password(SERVICE_NAME, KEY_NAME)
    except KeyringError:
        logger.debug("No usable keyring backend, falling back to environment")
        api_key = None
    if api_key:
        return api_key

    api_key = os.environ.get(API_KEY_ENV_VAR)
    if api_key:
        return api_key

    raise ConfigurationError(
        f"Missing {API_KEY_ENV_VAR} in your environment.\n"
        "Set it with: srcmap config set-api-key YOUR_KEY\n"
        f"Or: export {API_KEY_ENV_VAR}=your-key"
    )


def set_api_key(api_key: str) -> None:
    """Store the API key in the system keyring."""
    keyring.set_password(SERVICE_NAME, KEY_NAME, api_key)


def is_minified_path_prefix_valid(prefix: str) -> bool:
    """A prefix is either an absolute URL with a host or an absolute path."""
    try:
        host = urlparse(prefix).netloc
    except ValueError:
        host = ""
    return bool(host) or prefix.startswith("/")


def get_proxy_url(proxy: ProxyConfiguration | None) -> str:
    """Normalize a proxy configuration into a URL string.

    Returns an empty string when no usable proxy is configured, which lets
    the HTTP client fall back to the proxy environment variables.
    """
    if proxy is None or not proxy.host or not proxy.port:
        return ""

    auth = ""
    if proxy.username is not None:
        auth = f"{proxy.username}:{proxy.password or ''}@"
    return f"{proxy.protocol}://{auth}{proxy.host}:{proxy.port}"


def load_upload_config(config_path: Path | None = None) -> UploadConfig:
    """Load upload configuration from JSON, falling back to defaults.

    Reads from ``config/upload_config.json`` when *config_path* is ``None``.
    If the file does not exist, returns an ``UploadConfig`` with defaults.
    Unknown keys are ignored. The API key is never read from this file.

    Args:
        config_path: Optional explicit path to upload_config.json.

    Returns:
        UploadConfig populated from the file.

    Raises:
        ConfigurationError: If the file exists but is not valid JSON.
    """
    if config_path is None:
        config_path = Path("config/upload_config.json")

    data: dict = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(
                f"Invalid JSON in {config_path}: {exc}"
            ) from exc
        logger.debug("Loaded upload config from %s", config_path)

    field_names = set(UploadConfig.__dataclass_fields__) - {"api_key", "app_key"}
    kwargs = {k: v for k, v in data.items() if k in field_names}

    if "proxy" in kwargs and kwargs["proxy"] is not None:
        kwargs["proxy"] = ProxyConfiguration(**kwargs["proxy"])
    if "terminal_status_codes" in kwargs:
        kwargs["terminal_status_codes"] = frozenset(kwargs["terminal_status_codes"])

    return UploadConfig(**kwargs)


def validate_upload_config(config: UploadConfig) -> None:
    """Pre-flight checks run before any job is dispatched.

    Raises:
        ConfigurationError: On the first invalid setting found.
    """
    if not config.release_version:
        raise ConfigurationError("Missing release version")
    if not config.service:
        raise ConfigurationError("Missing service")
    if config.max_concurrency < 1:
        raise ConfigurationError(
            f"--max-concurrency must be a positive integer, got {config.max_concurrency}"
        )
    if config.max_attempts < 1:
        raise ConfigurationError(
            f"max_attempts must be at least 1, got {config.max_attempts}"
        )
    if not config.dry_run and not config.api_key:
        raise ConfigurationError(f"Missing {API_KEY_ENV_VAR} in your environment.")
    proxy_url = get_proxy_url(config.proxy)
    if proxy_url:
        try:
            httpx.Proxy(proxy_url)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid proxy configuration: {exc}") from exc

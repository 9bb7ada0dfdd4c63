"""TLS trust configuration for outbound HCM connections."""

import logging
import ssl
from pathlib import Path
from typing import Optional

import certifi

from hcm_gateway.infra.error_handler import ConfigError

logger = logging.getLogger(__name__)

PEM_CERT_MARKER = "-----BEGIN CERTIFICATE-----"


def _read_bundle(ca_bundle: str) -> str:
    path = Path(ca_bundle)
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"CA bundle {ca_bundle} is not readable: {type(e).__name__}") from e

    if not content.strip():
        raise ConfigError(f"CA bundle {ca_bundle} is empty")
    if PEM_CERT_MARKER not in content:
        raise ConfigError(f"CA bundle {ca_bundle} contains no PEM certificates")
    return content


def build_ssl_context(ca_bundle: Optional[str] = None, mode: str = "append") -> ssl.SSLContext:
    """
    Build the SSL context used by the HCM connection pool.

    Args:
        ca_bundle: Optional path to a PEM certificate-authority bundle
        mode: "append" trusts the default roots plus the bundle,
            "replace" trusts only the bundle

    Returns:
        Configured SSL context (verification always enabled)

    Raises:
        ConfigError: If the bundle is configured but unreadable, empty or invalid
    """
    if not ca_bundle:
        if mode == "replace":
            raise ConfigError("HCM_CA_BUNDLE_MODE=replace requires HCM_CA_BUNDLE")
        return ssl.create_default_context(cafile=certifi.where())

    pem = _read_bundle(ca_bundle)

    if mode not in ("append", "replace"):
        raise ConfigError(f"Unknown CA bundle mode: {mode}")

    try:
        if mode == "replace":
            context = ssl.create_default_context(cadata=pem)
        else:
            context = ssl.create_default_context(cafile=certifi.where())
            context.load_verify_locations(cadata=pem)
    except ssl.SSLError as e:
        raise ConfigError(f"CA bundle {ca_bundle} could not be loaded: {e.reason}") from e

    logger.info("Custom CA bundle loaded", extra={"ca_bundle": ca_bundle, "ca_bundle_mode": mode})
    return context

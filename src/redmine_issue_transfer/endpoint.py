"""Resolve a free-form host setting into a usable (host, port, scheme) endpoint."""

from __future__ import annotations

import logging
import re
from typing import NamedTuple
from urllib.parse import urlparse

logger: logging.Logger = logging.getLogger(__name__)

_STRAY_CHARS = re.compile(r"[\[\]\"'`]")
_WHITESPACE = re.compile(r"\s+")
_URL_WITH_SCHEME = re.compile(r"^https?://", re.IGNORECASE)
_PORT_DIGITS = re.compile(r"[0-9]+")

MIN_PORT = 1
MAX_PORT = 65535


class Endpoint(NamedTuple):
    """Resolved network endpoint."""

    host: str
    port: int
    scheme: str


def default_port(scheme: str) -> int:
    """Conventional port for a scheme: 443 for https, 80 for anything else."""
    return 443 if scheme == "https" else 80


def _clean(raw: object) -> str:
    return _WHITESPACE.sub("", _STRAY_CHARS.sub("", str(raw or "").strip()))


def _parse_port(port_text: str | None, scheme: str) -> int:
    if not port_text or not _PORT_DIGITS.fullmatch(port_text):
        return default_port(scheme)
    port = int(port_text)
    if port < MIN_PORT or port > MAX_PORT:
        return default_port(scheme)
    return port


def resolve_endpoint(raw: object, *, secure: bool = True) -> Endpoint:
    """Turn a host setting into an Endpoint. Never raises.

    Accepts a bare host, ``host:port`` or a full URL, possibly wrapped in
    brackets or quotes. A missing or out-of-range port becomes the scheme's
    default port and an empty host becomes ``localhost``.

    Args:
        raw: The configured host string (any object; ``None`` is treated as empty)
        secure: Whether the configured protocol is https; used unless the
            string itself carries a scheme

    Returns:
        Endpoint with host, port and the effective scheme
    """
    scheme = "https" if secure else "http"
    try:
        cleaned = _clean(raw)
        logger.debug(f"Resolving endpoint from {raw!r} (cleaned: {cleaned!r})")

        if _URL_WITH_SCHEME.match(cleaned):
            parsed = urlparse(cleaned)
            scheme = parsed.scheme.lower()
            host = parsed.hostname or ""
            # Port text is taken verbatim from netloc: urlparse.port raises on out-of-range values
            _, _, port_text = parsed.netloc.rpartition("@")[2].partition(":")
            port = _parse_port(port_text, scheme)
        else:
            host, _, port_text = cleaned.partition(":")
            port = _parse_port(port_text, scheme)

        host = host.strip()
        if not host:
            return Endpoint("localhost", default_port(scheme), scheme)
        return Endpoint(host, port, scheme)
    except Exception as e:  # noqa: BLE001 - resolution must always yield an endpoint
        logger.error(f"Could not parse host setting {raw!r}: {e}; falling back to manual split")
        manual_host = _clean(raw).split(":", 1)[0] or "localhost"
        return Endpoint(manual_host, default_port(scheme), scheme)

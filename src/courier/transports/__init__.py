"""Transport implementations and the one-time transport selection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from courier._http import GATEWAY_PATH_SUFFIX
from courier.transports.base import RawEventStream, Transport
from courier.transports.gateway import GatewayTransport, gateway_endpoint
from courier.transports.sdk import SDKTransport

if TYPE_CHECKING:
    from courier.config import Config

log = logging.getLogger(__name__)

__all__ = [
    "GatewayTransport",
    "RawEventStream",
    "SDKTransport",
    "Transport",
    "gateway_endpoint",
    "is_gateway_url",
    "select_transport",
]


def is_gateway_url(base_url: str | None) -> bool:
    """Whether *base_url* points at an on-premise gateway.

    Case-insensitive suffix match after removing trailing slashes.
    """
    if not base_url:
        return False
    return base_url.rstrip("/").lower().endswith(GATEWAY_PATH_SUFFIX)


def select_transport(config: Config) -> Transport:
    """Choose the transport for a client's lifetime.

    For a gateway URL the SDK client is never constructed.
    """
    base_url = config.base_url or ""
    if is_gateway_url(base_url):
        log.info("Using gateway transport for %s", gateway_endpoint(base_url))
        return GatewayTransport(base_url, extra_headers=config.extra_headers)
    return SDKTransport(config)

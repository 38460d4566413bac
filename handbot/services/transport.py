import logging
from typing import Optional, Protocol

import httpx

from ..config import IP_CHECK_URL, REQUEST_TIMEOUT
from ..models.schemas import ProxyConfig

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Egress strategy for remote calls.

    ``client`` returns a fresh AsyncClient the caller owns (use it as an
    async context manager). ``proxy_address`` is None for direct egress.
    """

    proxy_address: Optional[str]

    def client(self, timeout: float = REQUEST_TIMEOUT) -> httpx.AsyncClient:
        ...


class DirectTransport:
    proxy_address = None

    def client(self, timeout: float = REQUEST_TIMEOUT) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout)


class Socks5Transport:
    def __init__(self, address: str):
        if not address or ":" not in address:
            raise ValueError(f"SOCKS5 address must be host:port, got {address!r}")
        self.proxy_address = address
        try:
            httpx.Proxy(self.proxy_url)
        except httpx.InvalidURL as e:
            raise ValueError(f"SOCKS5 address {address!r} is not a valid proxy URL: {e}") from e

    @property
    def proxy_url(self) -> str:
        return f"socks5://{self.proxy_address}"

    def client(self, timeout: float = REQUEST_TIMEOUT) -> httpx.AsyncClient:
        # needs the socksio extra: pip install "httpx[socks]"
        return httpx.AsyncClient(timeout=timeout, proxy=self.proxy_url)


def transport_for(proxy: Optional[ProxyConfig]) -> Transport:
    if proxy is not None and proxy.enabled:
        return Socks5Transport(proxy.address)
    return DirectTransport()


async def check_ip(transport: Transport, url: str = IP_CHECK_URL, timeout: float = REQUEST_TIMEOUT) -> str:
    """Return the public IP seen through ``transport``.

    Raises httpx.HTTPError on network failure or a non-2xx answer.
    """
    async with transport.client(timeout=timeout) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.text.strip()

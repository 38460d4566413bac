"""Yandex Cloud IAM tokens, exchanged from an OAuth token and kept fresh."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from ..config import IAM_URL, REQUEST_TIMEOUT
from .errors import TokenRefreshError
from .transport import DirectTransport, Transport

logger = logging.getLogger(__name__)

IAM_REFRESH_SECONDS = 12 * 3600


async def fetch_iam_token(oauth_token: str, *, transport: Optional[Transport] = None, url: str = IAM_URL) -> str:
    """Exchange a Yandex Passport OAuth token for an IAM token.

    Raises httpx.HTTPError on network/status failures and ValueError on a
    body without ``iamToken``.
    """
    transport = transport or DirectTransport()
    async with transport.client(timeout=REQUEST_TIMEOUT) as client:
        resp = await client.post(url, json={"yandexPassportOauthToken": oauth_token})
        resp.raise_for_status()
        data = resp.json()
    token = data.get("iamToken") if isinstance(data, dict) else None
    if not token:
        raise ValueError(f"no iamToken in response: {resp.text[:200]}")
    return token


class IamTokenProvider:
    """Holds the current IAM token.

    With an OAuth token the provider refreshes on a schedule; without one it
    serves the static token it was given.
    """

    def __init__(
        self,
        oauth_token: str = "",
        static_token: str = "",
        *,
        refresh_seconds: float = IAM_REFRESH_SECONDS,
        max_attempts: int = 5,
        base_delay: float = 2.0,
        fetch: Callable[[str], Awaitable[str]] = fetch_iam_token,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.oauth_token = oauth_token
        self._token = static_token
        self.refresh_seconds = refresh_seconds
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._fetch = fetch
        self._sleep = sleep

    @property
    def token(self) -> str:
        return self._token

    @property
    def refreshable(self) -> bool:
        return bool(self.oauth_token)

    async def refresh(self) -> str:
        if not self.refreshable:
            raise TokenRefreshError("YANDEX_OAUTH is not set; cannot refresh IAM token")
        last: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                self._token = await self._fetch(self.oauth_token)
                logger.info("[iam] token refreshed (attempt %d)", attempt)
                return self._token
            except (httpx.HTTPError, ValueError) as e:
                last = e
                logger.warning("[iam] refresh attempt %d/%d failed: %r", attempt, self.max_attempts, e)
                if attempt < self.max_attempts:
                    await self._sleep(self.base_delay * 2 ** (attempt - 1))
        raise TokenRefreshError(f"IAM token refresh failed after {self.max_attempts} attempts: {last!r}")

    async def run(self) -> None:
        """Refresh now and then every ``refresh_seconds`` until cancelled.

        A TokenRefreshError ends the loop and propagates to whoever awaits it.
        """
        while True:
            await self.refresh()
            await self._sleep(self.refresh_seconds)

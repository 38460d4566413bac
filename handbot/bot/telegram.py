import logging
from typing import Any, Optional

import httpx

from ..config import REQUEST_TIMEOUT
from ..services.transport import DirectTransport, Transport

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class TelegramError(RuntimeError):
    def __init__(self, method: str, msg: str = ""):
        super().__init__(f"telegram {method} failed: {msg}")
        self.method = method


class TelegramClient:
    """Thin Bot API wrapper: the four calls the bot needs, nothing more."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = TELEGRAM_API,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[Transport] = None,
    ):
        if not token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required for the Telegram client")
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport or DirectTransport()

    async def _call(self, method: str, **kwargs) -> Any:
        url = f"{self.base_url}/bot{self.token}/{method}"
        try:
            async with self.transport.client(timeout=self.timeout) as client:
                resp = await client.post(url, **kwargs)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TelegramError(method, repr(e)) from e
        if not isinstance(data, dict) or not data.get("ok"):
            desc = data.get("description") if isinstance(data, dict) else resp.text[:200]
            raise TelegramError(method, f"status {resp.status_code}: {desc}")
        return data.get("result")

    async def send_message(self, chat_id: int, text: str, reply_markup: Optional[dict] = None) -> Any:
        payload: dict = {"chat_id": chat_id, "text": text}
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        return await self._call("sendMessage", json=payload)

    async def send_document(self, chat_id: int, filename: str, data: bytes, content_type: str) -> Any:
        files = {"document": (filename, data, content_type)}
        return await self._call("sendDocument", data={"chat_id": str(chat_id)}, files=files)

    async def get_file_path(self, file_id: str) -> str:
        result = await self._call("getFile", json={"file_id": file_id})
        path = (result or {}).get("file_path")
        if not path:
            raise TelegramError("getFile", "no file_path in result")
        return path

    async def download_file(self, file_path: str) -> bytes:
        url = f"{self.base_url}/file/bot{self.token}/{file_path}"
        try:
            async with self.transport.client(timeout=self.timeout) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPError as e:
            raise TelegramError("download", repr(e)) from e

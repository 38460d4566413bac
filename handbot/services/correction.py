import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

import httpx
from pydantic import ValidationError

from .. import config
from ..config import CORRECTION_DUMP_PATH, CORRECTION_MAX_ATTEMPTS, MISTRAL_URL, REQUEST_TIMEOUT
from ..models.schemas import ChatResponse, CorrectionRequest, CorrectionResult, ProxyConfig
from .errors import (
    AuthOrConfigError,
    EmptyResultError,
    ParseError,
    PipelineError,
    RemoteServiceError,
    TransportError,
)
from .metrics import ProxyCheckLog, write_dump
from .transport import Transport, check_ip, transport_for

logger = logging.getLogger(__name__)

# Appended by the model when it gives up; the bot swaps it for a friendly hint.
ILLEGIBLE_MARKER = "слишком неразборчиво 9905148"

CORRECTION_INSTRUCTION = (
    "Исправьте ошибки OCR в тексте, сохраняя оригинальный язык и переносы строк. "
    "Исправляйте ТОЛЬКО явные орфографические ошибки или неполные слова на основе написания и контекста. "
    "Не добавляйте и не удаляйте слова, не изменяйте структуру, порядок слов, пунктуацию, смысл "
    "и самое главное - переносы строк, даже если текст нелогичен. "
    "Сводите исправления к минимуму. Возвращайте только исправленный текст без дополнительных комментариев. "
    f"Если текст довольно неразборчивый, в самом конце добавьте текст \"{ILLEGIBLE_MARKER}\"."
)

Sleep = Callable[[float], Awaitable[None]]


class MistralCorrectionClient:
    """Spelling correction through Mistral chat completions.

    Transport, format and empty-choice failures are retried with a linear
    backoff (``attempt`` seconds after failed attempt ``attempt``). An error
    object inside a 200 response stops immediately.
    """

    def __init__(
        self,
        *,
        url: str = MISTRAL_URL,
        timeout: float = REQUEST_TIMEOUT,
        max_attempts: int = CORRECTION_MAX_ATTEMPTS,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        transport_factory: Callable[[Optional[ProxyConfig]], Transport] = transport_for,
        sleep: Sleep = asyncio.sleep,
        dump_path: Optional[Union[str, Path]] = CORRECTION_DUMP_PATH,
        proxy_log: Optional[ProxyCheckLog] = None,
        check_ip: bool = True,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.url = url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.transport_factory = transport_factory
        self._sleep = sleep
        self.dump_path = dump_path
        self.proxy_log = proxy_log
        self.check_ip = check_ip

    async def correct(self, source_text: str, api_key: str, model: Optional[str] = None) -> CorrectionResult:
        start = time.perf_counter()
        if not (source_text or "").strip():
            raise EmptyResultError("nothing to correct")
        if not api_key:
            raise AuthOrConfigError("Mistral API key is required")

        routing = config.proxy_config()
        request = CorrectionRequest(
            source_text=source_text,
            model=config.mistral_model(model),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            routing=routing if routing.enabled else None,
        )
        try:
            transport = self.transport_factory(request.routing)
        except ValueError as e:
            raise AuthOrConfigError(f"setup SOCKS5 proxy: {e}", elapsed=time.perf_counter() - start) from e

        if self.check_ip:
            await self._log_ip(transport, routing)

        payload = request.to_payload(CORRECTION_INSTRUCTION)
        headers = {"Authorization": f"Bearer {api_key}"}
        logger.debug("[correction] model=%s chars=%d", request.model, len(source_text))

        last_error: Optional[PipelineError] = None
        async with transport.client(timeout=self.timeout) as client:
            for attempt in range(1, self.max_attempts + 1):
                logger.info("[correction] attempt %d/%d", attempt, self.max_attempts)
                try:
                    text = await self._attempt(client, payload, headers)
                except PipelineError as e:
                    e.elapsed = time.perf_counter() - start
                    e.attempts = attempt
                    if not e.retryable:
                        logger.error("[correction] terminal failure: %s", e.message)
                        raise
                    last_error = e
                    logger.warning("[correction] attempt %d/%d failed: %s", attempt, self.max_attempts, e.message)
                    if attempt < self.max_attempts:
                        await self._sleep(attempt)
                    continue

                elapsed = time.perf_counter() - start
                logger.info("[correction] done in %.2fs after %d attempt(s)", elapsed, attempt)
                return CorrectionResult(corrected_text=text, elapsed=elapsed, attempts=attempt)

        last_error.message = f"{last_error.message} (after {self.max_attempts} attempts)"
        last_error.args = (last_error.message,)
        raise last_error

    async def _attempt(self, client: httpx.AsyncClient, payload: dict, headers: dict) -> str:
        try:
            resp = await client.post(self.url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"send request: {e!r}") from e

        write_dump(self.dump_path, resp.content)

        if resp.status_code != 200:
            raise RemoteServiceError(
                f"Mistral failed: status {resp.status_code}, body: {resp.text[:500]}",
                status_code=resp.status_code,
                body=resp.text,
                retryable=True,
            )

        try:
            parsed = ChatResponse.model_validate(json.loads(resp.content))
        except (ValueError, ValidationError) as e:
            raise ParseError(f"unmarshal response: {e}") from e

        if parsed.error is not None and parsed.error.message:
            raise RemoteServiceError(
                f"Mistral error: {parsed.error.message} (type: {parsed.error.type})",
                status_code=resp.status_code,
                body=resp.text,
            )

        if not parsed.choices or not parsed.choices[0].message.content.strip():
            raise EmptyResultError(f"no Mistral response, body: {resp.text[:500]}")

        return parsed.choices[0].message.content.strip()

    async def _log_ip(self, transport: Transport, routing: ProxyConfig) -> None:
        ip, error = None, None
        try:
            ip = await check_ip(transport, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            error = e
            logger.warning("[correction] IP check failed: %r", e)
        if self.proxy_log is not None:
            self.proxy_log.record(use_proxy=routing.enabled, proxy_addr=routing.address, ip=ip, error=error)

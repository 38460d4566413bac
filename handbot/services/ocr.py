import io
import json
import logging
import time
from pathlib import Path
from typing import Optional, Union

import httpx
from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError

from ..config import OCR_DUMP_PATH, OCR_URL, REQUEST_TIMEOUT
from ..models.schemas import OCRResponse, RecognitionRequest, RecognitionResult
from .errors import (
    AuthOrConfigError,
    EmptyResultError,
    FileAccessError,
    ParseError,
    PipelineError,
    RemoteServiceError,
    TransportError,
)
from .metrics import write_dump
from .transport import DirectTransport, Transport

logger = logging.getLogger(__name__)

DEFAULT_MIME = "image/jpeg"


def _read_image(image_path: Union[str, Path]) -> bytes:
    path = Path(image_path)
    try:
        size = path.stat().st_size
        data = path.read_bytes() if size else b""
    except OSError as e:
        raise FileAccessError(f"cannot read image {path}: {e}") from e
    if not data:
        raise FileAccessError(f"image file is empty: {path}")
    return data


def _sniff_mime(image_bytes: bytes) -> str:
    try:
        with Image.open(io.BytesIO(image_bytes)) as im:
            return Image.MIME.get(im.format or "", DEFAULT_MIME)
    except (UnidentifiedImageError, OSError):
        return DEFAULT_MIME


def _normalize_yandex(resp: OCRResponse) -> str:
    """fullText when present, otherwise blocks -> lines -> words."""
    annotation = resp.result.textAnnotation
    full_text = (annotation.fullText or "").strip()
    if full_text:
        return full_text
    lines = []
    for block in annotation.blocks:
        for line in block.lines:
            lines.append(" ".join(w.text or "" for w in line.words))
    return "\n".join(lines).strip()


class YandexOCRClient:
    """Single-shot client for Yandex Vision ``recognizeText``.

    No retries here: a failed OCR call goes straight back to the pipeline.
    """

    def __init__(
        self,
        *,
        url: str = OCR_URL,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[Transport] = None,
        dump_path: Optional[Union[str, Path]] = OCR_DUMP_PATH,
        language_codes=("ru",),
        model: str = "handwritten",
    ):
        self.url = url
        self.timeout = timeout
        self.transport = transport or DirectTransport()
        self.dump_path = dump_path
        self.language_codes = set(language_codes)
        self.model = model

    async def recognize(self, image_path: Union[str, Path], folder_id: str, iam_token: str) -> RecognitionResult:
        start = time.perf_counter()
        try:
            text = await self._recognize(image_path, folder_id, iam_token)
        except PipelineError as e:
            e.elapsed = time.perf_counter() - start
            logger.warning("[ocr] %s: %s", e.kind, e.message)
            raise
        elapsed = time.perf_counter() - start
        logger.info("[ocr] recognized %d chars in %.2fs", len(text), elapsed)
        return RecognitionResult(text=text, elapsed=elapsed)

    async def _recognize(self, image_path, folder_id: str, iam_token: str) -> str:
        image_bytes = _read_image(image_path)
        if not folder_id or not iam_token:
            raise AuthOrConfigError("folder id and IAM token are required for OCR")

        req = RecognitionRequest(
            image_bytes=image_bytes,
            mime_type=_sniff_mime(image_bytes),
            language_codes=self.language_codes,
            model=self.model,
        )
        headers = {
            "Authorization": f"Bearer {iam_token}",
            "x-folder-id": folder_id,
            "x-data-logging-enabled": "true",
        }
        logger.debug("[ocr] POST %s mime=%s bytes=%d", self.url, req.mime_type, len(image_bytes))

        try:
            async with self.transport.client(timeout=self.timeout) as client:
                resp = await client.post(self.url, headers=headers, json=req.to_payload())
        except httpx.HTTPError as e:
            raise TransportError(f"OCR request failed: {e!r}") from e

        if resp.status_code != 200:
            raise RemoteServiceError(
                f"OCR failed: status {resp.status_code}, body: {resp.text[:500]}",
                status_code=resp.status_code,
                body=resp.text,
            )

        write_dump(self.dump_path, resp.content)

        try:
            parsed = OCRResponse.model_validate(json.loads(resp.content))
        except (ValueError, ValidationError) as e:
            raise ParseError(f"unmarshal OCR response: {e}") from e

        if parsed.error is not None and parsed.error.message:
            raise RemoteServiceError(
                f"OCR error: {parsed.error.message}",
                status_code=resp.status_code,
                body=resp.text,
            )

        text = _normalize_yandex(parsed)
        if not text:
            raise EmptyResultError("no text detected")
        return text

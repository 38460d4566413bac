from __future__ import annotations

import base64
from datetime import datetime
from typing import Any, List, Literal, Optional, Set

from pydantic import BaseModel, Field


Stage = Literal["recognition", "correction"]
ErrorKind = Literal[
    "file_access",
    "transport",
    "auth_or_config",
    "remote_service",
    "parse",
    "empty_result",
]
OCRModel = Literal["handwritten", "page"]


# ---------------------------------------
# Recognition (Yandex Vision OCR)
# ---------------------------------------

class RecognitionRequest(BaseModel):
    image_bytes: bytes
    mime_type: str = "image/jpeg"
    language_codes: Set[str] = Field(default_factory=lambda: {"ru"})
    model: OCRModel = "handwritten"

    def to_payload(self) -> dict:
        return {
            "mimeType": self.mime_type,
            "languageCodes": sorted(self.language_codes),
            "model": self.model,
            "content": base64.b64encode(self.image_bytes).decode("ascii"),
        }


class OCRWord(BaseModel):
    text: Optional[str] = ""


class OCRLine(BaseModel):
    words: List[OCRWord] = Field(default_factory=list)


class OCRBlock(BaseModel):
    lines: List[OCRLine] = Field(default_factory=list)


class OCRTextAnnotation(BaseModel):
    fullText: Optional[str] = ""
    blocks: List[OCRBlock] = Field(default_factory=list)


class OCRResult(BaseModel):
    textAnnotation: OCRTextAnnotation = Field(default_factory=OCRTextAnnotation)


class APIError(BaseModel):
    code: Optional[Any] = None  # int from gRPC gateways, str elsewhere
    message: str = ""
    type: str = ""


class OCRResponse(BaseModel):
    result: OCRResult = Field(default_factory=OCRResult)
    error: Optional[APIError] = None


class RecognitionResult(BaseModel):
    text: str
    elapsed: float


# ---------------------------------------
# Correction (Mistral chat completions)
# ---------------------------------------

class ProxyConfig(BaseModel):
    enabled: bool = False
    address: str = "127.0.0.1:10808"


class ChatMessage(BaseModel):
    role: str = "user"
    content: str = ""


class CorrectionRequest(BaseModel):
    source_text: str
    model: str
    temperature: float = 0.3
    max_tokens: int = 2000
    routing: Optional[ProxyConfig] = None

    def to_payload(self, instruction: str) -> dict:
        return {
            "model": self.model,
            "messages": [
                {"role": "user", "content": f"{instruction}\n\n{self.source_text}"},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }


class ChatChoice(BaseModel):
    message: ChatMessage = Field(default_factory=ChatMessage)


class ChatResponse(BaseModel):
    choices: List[ChatChoice] = Field(default_factory=list)
    error: Optional[APIError] = None


class CorrectionResult(BaseModel):
    corrected_text: str
    elapsed: float
    attempts: int = 1


# ---------------------------------------
# Pipeline outcome + metrics
# ---------------------------------------

class StageTiming(BaseModel):
    ocr_seconds: float = 0.0
    correction_seconds: float = 0.0
    total_seconds: float = 0.0


class StageError(BaseModel):
    stage: Stage
    kind: ErrorKind
    message: str


class PipelineOutcome(BaseModel):
    recognized_text: str = ""
    corrected_text: str = ""
    timing: StageTiming = Field(default_factory=StageTiming)
    error: Optional[StageError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Credentials(BaseModel):
    folder_id: str = ""
    iam_token: str = ""
    api_key: str = ""

    def missing(self) -> List[str]:
        return [name for name, value in self.model_dump().items() if not value]


class TimingLogEntry(BaseModel):
    timestamp: datetime
    ocr_seconds: float
    correction_seconds: float
    total_seconds: float

    def to_line(self) -> str:
        return (
            f"[{self.timestamp.isoformat(timespec='seconds')}] "
            f"OCR: {self.ocr_seconds:.2f} sec, "
            f"Correction: {self.correction_seconds:.2f} sec, "
            f"Total: {self.total_seconds:.2f} sec\n"
        )

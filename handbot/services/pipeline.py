import logging
import time
from pathlib import Path
from typing import Optional, Protocol, Union

from ..models.schemas import (
    CorrectionResult,
    PipelineOutcome,
    RecognitionResult,
    StageError,
    StageTiming,
)
from .errors import PipelineError
from .metrics import TimingLog

logger = logging.getLogger(__name__)


class Recognizer(Protocol):
    async def recognize(self, image_path: Union[str, Path], folder_id: str, iam_token: str) -> RecognitionResult:
        ...


class Corrector(Protocol):
    async def correct(self, source_text: str, api_key: str, model: Optional[str] = None) -> CorrectionResult:
        ...


def _stage_error(stage: str, e: PipelineError) -> StageError:
    return StageError(stage=stage, kind=e.kind, message=e.message)


class Pipeline:
    """Recognition -> correction, with the two-shape failure contract.

    A recognition failure leaves both texts empty; a correction failure keeps
    the recognized text so the caller can still show it. Only fully successful
    runs reach the timing log.
    """

    def __init__(self, recognizer: Recognizer, corrector: Corrector, timing_log: Optional[TimingLog] = None):
        self.recognizer = recognizer
        self.corrector = corrector
        self.timing_log = timing_log

    async def process(
        self,
        image_path: Union[str, Path],
        folder_id: str,
        iam_token: str,
        api_key: str,
        model: Optional[str] = None,
    ) -> PipelineOutcome:
        start = time.perf_counter()
        timing = StageTiming()

        try:
            recognized = await self.recognizer.recognize(image_path, folder_id, iam_token)
        except PipelineError as e:
            timing.ocr_seconds = e.elapsed
            timing.total_seconds = time.perf_counter() - start
            logger.warning("[pipeline] recognition failed (%s): %s", e.kind, e.message)
            return PipelineOutcome(timing=timing, error=_stage_error("recognition", e))
        timing.ocr_seconds = recognized.elapsed

        try:
            corrected = await self.corrector.correct(recognized.text, api_key, model=model)
        except PipelineError as e:
            timing.correction_seconds = e.elapsed
            timing.total_seconds = time.perf_counter() - start
            logger.warning("[pipeline] correction failed (%s): %s", e.kind, e.message)
            return PipelineOutcome(
                recognized_text=recognized.text,
                timing=timing,
                error=_stage_error("correction", e),
            )
        timing.correction_seconds = corrected.elapsed
        timing.total_seconds = time.perf_counter() - start

        if self.timing_log is not None:
            self.timing_log.record(timing)
        logger.info(
            "[pipeline] ok | ocr=%.2fs correction=%.2fs total=%.2fs",
            timing.ocr_seconds, timing.correction_seconds, timing.total_seconds,
        )
        return PipelineOutcome(
            recognized_text=recognized.text,
            corrected_text=corrected.corrected_text,
            timing=timing,
        )

"""Append-only run logs and diagnostic dumps.

Everything here is best-effort: a failed write is logged and swallowed so a
full disk never turns a successful recognition into a failed one.
"""
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from ..models.schemas import StageTiming, TimingLogEntry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _now() -> datetime:
    return datetime.now(timezone.utc).astimezone()


class AppendOnlyLog:
    """One line per ``append``; open-write-close in append mode under a lock."""

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, line: str) -> bool:
        if not line.endswith("\n"):
            line += "\n"
        with self._lock:
            try:
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line)
            except OSError as e:
                logger.error("could not append to %s: %s", self.path, e)
                return False
        return True


class TimingLog(AppendOnlyLog):
    def record(self, timing: StageTiming, at: Optional[datetime] = None) -> TimingLogEntry:
        entry = TimingLogEntry(
            timestamp=at or _now(),
            ocr_seconds=timing.ocr_seconds,
            correction_seconds=timing.correction_seconds,
            total_seconds=timing.total_seconds,
        )
        self.append(entry.to_line())
        return entry


class ProxyCheckLog(AppendOnlyLog):
    def record(
        self,
        *,
        use_proxy: bool,
        proxy_addr: str,
        ip: Optional[str],
        error: Optional[BaseException],
        at: Optional[datetime] = None,
    ) -> str:
        line = (
            f"[{(at or _now()).isoformat(timespec='seconds')}] "
            f"Proxy: {use_proxy}, ProxyAddr: {proxy_addr}, "
            f"IP: {ip or 'none'}, Error: {error if error is not None else 'none'}"
        )
        logger.info(line)
        self.append(line)
        return line


def write_dump(path: Optional[PathLike], body: bytes) -> bool:
    """Overwrite ``path`` with the raw response body; never raises."""
    if path is None:
        return False
    try:
        Path(path).write_bytes(body)
    except OSError as e:
        logger.warning("could not write diagnostic dump %s: %s", path, e)
        return False
    return True

from __future__ import annotations

import threading
from typing import Dict, Literal

from pydantic import BaseModel

Language = Literal["ru", "en"]
OutputFormat = Literal["text", "txt", "pdf"]
ModelChoice = Literal["basic", "improved"]
PendingStage = Literal["", "language", "format", "model"]


class UserSettings(BaseModel):
    language: Language = "ru"
    output_format: OutputFormat = "text"
    model: ModelChoice = "improved"
    stage: PendingStage = ""  # which menu is waiting for an answer


class SettingsStore:
    """Per-chat settings keyed by chat id.

    The handler gets the store injected; ``update`` swaps in a new model
    under the lock so concurrent chats never see half-written settings.
    """

    def __init__(self):
        self._items: Dict[int, UserSettings] = {}
        self._lock = threading.Lock()

    def get(self, chat_id: int) -> UserSettings:
        with self._lock:
            if chat_id not in self._items:
                self._items[chat_id] = UserSettings()
            return self._items[chat_id].model_copy()

    def update(self, chat_id: int, **changes) -> UserSettings:
        with self._lock:
            current = self._items.get(chat_id) or UserSettings()
            updated = UserSettings.model_validate({**current.model_dump(), **changes})
            self._items[chat_id] = updated
            return updated.model_copy()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from .. import config
from ..models.schemas import Credentials, PipelineOutcome
from ..services.correction import ILLEGIBLE_MARKER
from ..services.report import render_pdf, render_txt
from .i18n import (
    LANGUAGE_NAMES,
    format_keyboard,
    language_keyboard,
    main_keyboard,
    match_label,
    model_keyboard,
    settings_keyboard,
    tr,
)
from .settings_store import SettingsStore, UserSettings
from .telegram import TelegramError

logger = logging.getLogger(__name__)

MESSAGE_LIMIT = 4096  # Telegram's cap on a single text message

FORMAT_KEYS = {"fmt_text": "text", "fmt_txt": "txt", "fmt_pdf": "pdf"}
MODEL_KEYS = {"model_basic": "basic", "model_improved": "improved"}
MENU_KEYS = ["btn_help", "btn_settings", "btn_about", "change_lang", "change_format", "change_model"]


class Messenger(Protocol):
    async def send_message(self, chat_id: int, text: str, reply_markup: Optional[dict] = None): ...
    async def send_document(self, chat_id: int, filename: str, data: bytes, content_type: str): ...
    async def get_file_path(self, file_id: str) -> str: ...
    async def download_file(self, file_path: str) -> bytes: ...


class Processor(Protocol):
    async def process(self, image_path, folder_id: str, iam_token: str, api_key: str,
                      model: Optional[str] = None) -> PipelineOutcome: ...


def present(text: str, lang: str) -> str:
    """Swap the model's illegibility marker for a readable hint."""
    return text.replace(ILLEGIBLE_MARKER, tr(lang, "too_illegible")).strip()


def split_message(text: str, limit: int = MESSAGE_LIMIT) -> List[str]:
    chunks: List[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return chunks or [""]


def model_for(choice: str) -> Optional[str]:
    # None lets the correction client fall back to MISTRAL_MODEL / the large default
    return config.mistral_fast_model() if choice == "basic" else None


def _largest_photo_id(msg: dict) -> Optional[str]:
    photos = msg.get("photo") or []
    if photos:
        return photos[-1].get("file_id")
    doc = msg.get("document") or {}
    if str(doc.get("mime_type", "")).startswith("image/"):
        return doc.get("file_id")
    return None


class BotHandler:
    """Routes Telegram updates: commands, settings menus and photos."""

    def __init__(
        self,
        telegram: Messenger,
        pipeline: Processor,
        store: SettingsStore,
        credentials: Callable[[], Credentials],
        *,
        pdf_font_path: Optional[str] = None,
    ):
        self.telegram = telegram
        self.pipeline = pipeline
        self.store = store
        self.credentials = credentials
        self.pdf_font_path = pdf_font_path

    async def handle_update(self, update: dict) -> None:
        msg = update.get("message") or update.get("edited_message")
        if not msg or "chat" not in msg:
            return
        chat_id = msg["chat"]["id"]
        try:
            await self._dispatch(chat_id, msg)
        except TelegramError:
            logger.exception("[bot] reply to chat %s failed", chat_id)

    async def _dispatch(self, chat_id: int, msg: dict) -> None:
        settings = self.store.get(chat_id)
        text = (msg.get("text") or "").strip()
        file_id = _largest_photo_id(msg)

        if file_id:
            await self.handle_image(chat_id, file_id, settings)
        elif text.startswith("/"):
            await self.handle_command(chat_id, text, settings)
        elif text and settings.stage:
            await self.handle_stage_input(chat_id, text, settings)
        elif text:
            await self.handle_menu_choice(chat_id, text, settings)
        else:
            await self.telegram.send_message(chat_id, tr(settings.language, "send_image"))

    async def handle_command(self, chat_id: int, text: str, settings: UserSettings) -> None:
        command = text.split()[0][1:].split("@")[0].lower()
        lang = settings.language
        if command == "start":
            await self.telegram.send_message(chat_id, tr(lang, "start"), reply_markup=main_keyboard(lang))
        elif command in ("help", "about"):
            await self.telegram.send_message(chat_id, tr(lang, command))
        elif command == "settings":
            await self.show_settings(chat_id, settings)
        else:
            await self.telegram.send_message(chat_id, tr(lang, "unknown_command"))

    async def show_settings(self, chat_id: int, settings: UserSettings) -> None:
        lang = settings.language
        text = (
            f"{tr(lang, 'settings_menu')}\n"
            f"1. {tr(lang, 'language')}: {LANGUAGE_NAMES[settings.language]}\n"
            f"2. {tr(lang, 'format')}: {tr(lang, 'fmt_' + settings.output_format)}\n"
            f"3. {tr(lang, 'model')}: {tr(lang, 'model_' + settings.model)}\n\n"
            f"{tr(lang, 'settings_instruction')}"
        )
        await self.telegram.send_message(chat_id, text, reply_markup=settings_keyboard(lang))

    async def handle_menu_choice(self, chat_id: int, text: str, settings: UserSettings) -> None:
        lang = settings.language
        key = match_label(text, MENU_KEYS)
        if key == "btn_help":
            await self.telegram.send_message(chat_id, tr(lang, "help"))
        elif key == "btn_about":
            await self.telegram.send_message(chat_id, tr(lang, "about"))
        elif key == "btn_settings":
            await self.show_settings(chat_id, settings)
        elif key == "change_lang":
            self.store.update(chat_id, stage="language")
            await self.telegram.send_message(chat_id, tr(lang, "language") + ":", reply_markup=language_keyboard())
        elif key == "change_format":
            self.store.update(chat_id, stage="format")
            await self.telegram.send_message(chat_id, tr(lang, "format") + ":", reply_markup=format_keyboard(lang))
        elif key == "change_model":
            self.store.update(chat_id, stage="model")
            await self.telegram.send_message(chat_id, tr(lang, "model") + ":", reply_markup=model_keyboard(lang))
        else:
            await self.telegram.send_message(chat_id, tr(lang, "send_image"))

    async def handle_stage_input(self, chat_id: int, text: str, settings: UserSettings) -> None:
        lang = settings.language
        if settings.stage == "language":
            chosen = {"Русский": "ru", "Russian": "ru", "English": "en", "Английский": "en"}.get(text)
            if chosen is None:
                await self.telegram.send_message(chat_id, tr(lang, "invalid_choice"), reply_markup=language_keyboard())
                return
            settings = self.store.update(chat_id, language=chosen, stage="")
            confirmation = f"{tr(chosen, 'language_set')}: {LANGUAGE_NAMES[chosen]}"
        elif settings.stage == "format":
            key = match_label(text, list(FORMAT_KEYS))
            if key is None:
                await self.telegram.send_message(chat_id, tr(lang, "invalid_choice"), reply_markup=format_keyboard(lang))
                return
            settings = self.store.update(chat_id, output_format=FORMAT_KEYS[key], stage="")
            confirmation = f"{tr(lang, 'format_set')}: {tr(lang, key)}"
        else:
            key = match_label(text, list(MODEL_KEYS))
            if key is None:
                await self.telegram.send_message(chat_id, tr(lang, "invalid_choice"), reply_markup=model_keyboard(lang))
                return
            settings = self.store.update(chat_id, model=MODEL_KEYS[key], stage="")
            confirmation = f"{tr(lang, 'model_set')}: {tr(lang, key)}"

        await self.telegram.send_message(chat_id, confirmation)
        await self.show_settings(chat_id, settings)

    async def handle_image(self, chat_id: int, file_id: str, settings: UserSettings) -> None:
        lang = settings.language
        creds = self.credentials()
        missing = creds.missing()
        if missing:
            logger.error("[bot] credentials missing: %s", ", ".join(missing))
            await self.telegram.send_message(chat_id, tr(lang, "error_config"))
            return

        try:
            remote_path = await self.telegram.get_file_path(file_id)
        except TelegramError as e:
            logger.warning("[bot] getFile failed: %s", e)
            await self.telegram.send_message(chat_id, tr(lang, "error_image"))
            return
        try:
            blob = await self.telegram.download_file(remote_path)
        except TelegramError as e:
            logger.warning("[bot] download failed: %s", e)
            await self.telegram.send_message(chat_id, tr(lang, "error_download"))
            return

        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f"photo_{chat_id}_", suffix=Path(remote_path).suffix or ".jpg")
            with os.fdopen(fd, "wb") as fh:
                fh.write(blob)
        except OSError as e:
            logger.error("[bot] could not save image: %s", e)
            await self.telegram.send_message(chat_id, tr(lang, "error_save"))
            return

        try:
            outcome = await self.pipeline.process(
                tmp_name, creds.folder_id, creds.iam_token, creds.api_key, model=model_for(settings.model)
            )
        finally:
            Path(tmp_name).unlink(missing_ok=True)

        await self.reply_outcome(chat_id, outcome, settings)

    async def reply_outcome(self, chat_id: int, outcome: PipelineOutcome, settings: UserSettings) -> None:
        lang = settings.language
        if outcome.corrected_text:
            body = present(outcome.corrected_text, lang)
            if settings.output_format == "txt":
                await self.telegram.send_document(chat_id, "result.txt", render_txt(body), "text/plain")
            elif settings.output_format == "pdf":
                pdf = render_pdf(body, font_path=self.pdf_font_path)
                await self.telegram.send_document(chat_id, "result.pdf", pdf, "application/pdf")
            else:
                for chunk in split_message(body):
                    await self.telegram.send_message(chat_id, chunk)
            return

        # Partial result: show what OCR found when only correction failed.
        parts = []
        if outcome.recognized_text:
            parts.append(f"{tr(lang, 'ocr_result')}:\n{outcome.recognized_text}")
        if outcome.error is not None:
            label = "error_ocr" if outcome.error.stage == "recognition" else "error_correction"
            parts.append(f"{tr(lang, label)}: {outcome.error.message}")
        for chunk in split_message("\n\n".join(parts)):
            await self.telegram.send_message(chat_id, chunk)

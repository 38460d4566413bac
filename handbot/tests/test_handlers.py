import asyncio
from pathlib import Path

import pytest

from handbot.bot import handlers
from handbot.bot.i18n import STRINGS, tr
from handbot.bot.settings_store import SettingsStore
from handbot.bot.telegram import TelegramError
from handbot.models.schemas import Credentials, PipelineOutcome, StageError
from handbot.services.correction import ILLEGIBLE_MARKER

CHAT = 42


class FakeTelegram:
    def __init__(self, fail_get_file=False):
        self.messages = []
        self.documents = []
        self.fail_get_file = fail_get_file

    async def send_message(self, chat_id, text, reply_markup=None):
        self.messages.append((chat_id, text, reply_markup))

    async def send_document(self, chat_id, filename, data, content_type):
        self.documents.append((chat_id, filename, data, content_type))

    async def get_file_path(self, file_id):
        if self.fail_get_file:
            raise TelegramError("getFile", "file is too big")
        return f"photos/{file_id}.jpg"

    async def download_file(self, file_path):
        return b"\xff\xd8fake-jpeg"


class FakePipeline:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    async def process(self, image_path, folder_id, iam_token, api_key, model=None):
        self.calls.append({"path": image_path, "exists": Path(image_path).exists(),
                           "folder": folder_id, "model": model})
        return self.outcome


def _creds():
    return Credentials(folder_id="f", iam_token="i", api_key="k")


def _handler(outcome=None, creds=_creds, **tg):
    telegram = FakeTelegram(**tg)
    pipeline = FakePipeline(outcome or PipelineOutcome(recognized_text="raw", corrected_text="Готовый текст"))
    store = SettingsStore()
    return handlers.BotHandler(telegram, pipeline, store, creds), telegram, pipeline, store


def _text(text):
    return {"update_id": 1, "message": {"chat": {"id": CHAT}, "text": text}}


def _photo():
    return {"update_id": 2, "message": {"chat": {"id": CHAT}, "photo": [
        {"file_id": "small", "width": 90}, {"file_id": "large", "width": 1280},
    ]}}


def _send(handler, update):
    asyncio.run(handler.handle_update(update))


def test_start_shows_main_keyboard():
    handler, tg, _, _ = _handler()

    _send(handler, _text("/start"))

    chat_id, text, markup = tg.messages[0]
    assert chat_id == CHAT
    assert text == STRINGS["ru"]["start"]
    labels = [b["text"] for b in markup["keyboard"][0]]
    assert labels == ["Помощь", "Настройки", "О боте"]


def test_unknown_command():
    handler, tg, _, _ = _handler()
    _send(handler, _text("/nope"))
    assert tg.messages[0][1] == STRINGS["ru"]["unknown_command"]


def test_change_format_flow():
    handler, tg, _, store = _handler()

    _send(handler, _text("Настройки"))
    _send(handler, _text("Формат ответа"))
    assert store.get(CHAT).stage == "format"
    _send(handler, _text("TXT-файл"))

    settings = store.get(CHAT)
    assert settings.output_format == "txt"
    assert settings.stage == ""
    assert any("TXT-файл" in m[1] and tr("ru", "format_set") in m[1] for m in tg.messages)


def test_invalid_choice_keeps_stage():
    handler, tg, _, store = _handler()
    store.update(CHAT, stage="model")

    _send(handler, _text("the best one"))

    assert store.get(CHAT).stage == "model"
    assert tg.messages[-1][1] == STRINGS["ru"]["invalid_choice"]


def test_switch_language_to_english():
    handler, tg, _, store = _handler()
    store.update(CHAT, stage="language")

    _send(handler, _text("English"))

    assert store.get(CHAT).language == "en"
    assert tg.messages[0][1] == "Language set to: English"


def test_photo_is_processed_as_message():
    outcome = PipelineOutcome(recognized_text="raw", corrected_text=f"Начало. {ILLEGIBLE_MARKER}")
    handler, tg, pipeline, _ = _handler(outcome)

    _send(handler, _photo())

    call = pipeline.calls[0]
    assert call["exists"] and call["folder"] == "f"
    assert call["model"] is None  # "improved" -> configured large model
    assert not Path(call["path"]).exists()  # temp file cleaned up
    text = tg.messages[0][1]
    assert ILLEGIBLE_MARKER not in text
    assert STRINGS["ru"]["too_illegible"] in text


def test_basic_model_uses_fast_model(monkeypatch):
    monkeypatch.setenv("MISTRAL_FAST_MODEL", "open-mistral-nemo")
    handler, _, pipeline, store = _handler()
    store.update(CHAT, model="basic")

    _send(handler, _photo())

    assert pipeline.calls[0]["model"] == "open-mistral-nemo"


@pytest.mark.parametrize("fmt,filename,ctype,prefix", [
    ("txt", "result.txt", "text/plain", b"Final text"),
    ("pdf", "result.pdf", "application/pdf", b"%PDF"),
])
def test_photo_as_document(fmt, filename, ctype, prefix):
    handler, tg, _, store = _handler(PipelineOutcome(recognized_text="raw", corrected_text="Final text"))
    store.update(CHAT, output_format=fmt)

    _send(handler, _photo())

    _, name, data, content_type = tg.documents[0]
    assert (name, content_type) == (filename, ctype)
    assert data.startswith(prefix)
    assert tg.messages == []


def test_missing_credentials_skip_pipeline():
    handler, tg, pipeline, _ = _handler(creds=lambda: Credentials(folder_id="f"))

    _send(handler, _photo())

    assert pipeline.calls == []
    assert tg.messages[0][1] == STRINGS["ru"]["error_config"]


def test_correction_failure_shows_recognized_text():
    outcome = PipelineOutcome(
        recognized_text="сырой текст",
        error=StageError(stage="correction", kind="transport", message="send request (after 3 attempts)"),
    )
    handler, tg, _, _ = _handler(outcome)

    _send(handler, _photo())

    text = tg.messages[0][1]
    assert "сырой текст" in text
    assert STRINGS["ru"]["error_correction"] in text
    assert "after 3 attempts" in text


def test_recognition_failure_reports_ocr_error():
    outcome = PipelineOutcome(error=StageError(stage="recognition", kind="empty_result", message="no text detected"))
    handler, tg, _, _ = _handler(outcome)

    _send(handler, _photo())

    assert tg.messages[0][1] == f"{STRINGS['ru']['error_ocr']}: no text detected"


def test_get_file_failure():
    handler, tg, pipeline, _ = _handler(fail_get_file=True)

    _send(handler, _photo())

    assert pipeline.calls == []
    assert tg.messages[0][1] == STRINGS["ru"]["error_image"]


def test_split_message_respects_limit():
    text = "\n".join(["x" * 30] * 10) + "\n" + "y" * 95
    chunks = handlers.split_message(text, limit=40)

    assert all(len(c) <= 40 for c in chunks)
    assert "".join(chunks) == text


def test_settings_store_returns_copies():
    store = SettingsStore()
    settings = store.get(7)
    settings.language = "en"

    assert store.get(7).language == "ru"
    assert store.update(7, language="en").language == "en"
    assert len(store) == 1


def test_free_text_asks_for_image():
    handler, tg, pipeline, _ = _handler()
    _send(handler, _text("hello there"))
    assert tg.messages[0][1] == STRINGS["ru"]["send_image"]
    assert pipeline.calls == []

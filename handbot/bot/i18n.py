"""User-facing strings and reply keyboards (Russian and English)."""
from typing import Dict, List, Optional

from .settings_store import Language

STRINGS: Dict[str, Dict[str, str]] = {
    "ru": {
        "start": "Привет! Я помогу тебе распознать рукописный текст. Отправь фото!",
        "help": "Команды: /start, /help, /settings, /about",
        "about": "🤖 Я использую нейросеть для распознавания рукописного текста.",
        "unknown_command": "Неизвестная команда. Напиши /help.",
        "send_image": "Пожалуйста, отправь изображение с рукописным текстом.",
        "settings_menu": "⚙️ Настройки:",
        "settings_instruction": "Выбери, что хочешь изменить:",
        "language": "Язык интерфейса",
        "format": "Формат ответа",
        "model": "Модель",
        "language_set": "Язык интерфейса изменён на",
        "format_set": "Формат ответа установлен",
        "model_set": "Выбрана модель",
        "invalid_choice": "Выбери вариант на клавиатуре.",
        "error_image": "Не удалось получить изображение.",
        "error_download": "Ошибка загрузки изображения.",
        "error_save": "Ошибка сохранения изображения.",
        "error_ocr": "Ошибка при распознавании текста",
        "error_correction": "Ошибка при исправлении текста",
        "error_config": "Ошибка конфигурации: IAM_TOKEN, FOLDER_ID или MISTRAL_API_KEY не установлены.",
        "ocr_result": "Распознанный текст",
        "too_illegible": "Текст слишком неразборчивый, попробуйте сфотографировать получше и повторите попытку.",
        # buttons
        "btn_help": "Помощь",
        "btn_settings": "Настройки",
        "btn_about": "О боте",
        "change_lang": "Язык интерфейса",
        "change_format": "Формат ответа",
        "change_model": "Выбор модели",
        "fmt_text": "Простой текст",
        "fmt_txt": "TXT-файл",
        "fmt_pdf": "PDF-файл",
        "model_basic": "Базовая (быстрая)",
        "model_improved": "Улучшенная (точная)",
    },
    "en": {
        "start": "Hello! I will help you recognize handwritten text. Just send a photo!",
        "help": "Commands: /start, /help, /settings, /about",
        "about": "🤖 I use a neural net to recognize handwritten text.",
        "unknown_command": "Unknown command. Type /help.",
        "send_image": "Please send an image with handwritten text.",
        "settings_menu": "⚙️ Settings:",
        "settings_instruction": "Choose what you'd like to change:",
        "language": "Interface language",
        "format": "Response format",
        "model": "Model",
        "language_set": "Language set to",
        "format_set": "Response format set to",
        "model_set": "Model set to",
        "invalid_choice": "Please pick an option from the keyboard.",
        "error_image": "Failed to retrieve image.",
        "error_download": "Error downloading image.",
        "error_save": "Error saving image.",
        "error_ocr": "Error recognizing text",
        "error_correction": "Error correcting text",
        "error_config": "Configuration error: IAM_TOKEN, FOLDER_ID or MISTRAL_API_KEY not set.",
        "ocr_result": "Recognized text",
        "too_illegible": "The text is too illegible, please take a clearer photo and try again.",
        "btn_help": "Help",
        "btn_settings": "Settings",
        "btn_about": "About",
        "change_lang": "Change Language",
        "change_format": "Change Format",
        "change_model": "Change Model",
        "fmt_text": "Plain Text",
        "fmt_txt": "TXT file",
        "fmt_pdf": "PDF file",
        "model_basic": "Basic (fast)",
        "model_improved": "Improved (accurate)",
    },
}

LANGUAGE_NAMES = {"ru": "Русский", "en": "English"}


def tr(lang: Language, key: str) -> str:
    table = STRINGS.get(lang) or STRINGS["ru"]
    return table.get(key) or STRINGS["ru"][key]


def match_label(text: str, keys: List[str]) -> Optional[str]:
    """Map a pressed button back to its key, whatever the interface language."""
    for key in keys:
        for table in STRINGS.values():
            if table.get(key) == text:
                return key
    return None


def _keyboard(rows: List[List[str]]) -> dict:
    return {
        "keyboard": [[{"text": label} for label in row] for row in rows],
        "resize_keyboard": True,
    }


def main_keyboard(lang: Language) -> dict:
    return _keyboard([[tr(lang, "btn_help"), tr(lang, "btn_settings"), tr(lang, "btn_about")]])


def settings_keyboard(lang: Language) -> dict:
    return _keyboard([
        [tr(lang, "change_lang"), tr(lang, "change_format")],
        [tr(lang, "change_model")],
    ])


def language_keyboard() -> dict:
    return _keyboard([[LANGUAGE_NAMES["ru"], LANGUAGE_NAMES["en"]]])


def format_keyboard(lang: Language) -> dict:
    return _keyboard([[tr(lang, "fmt_text"), tr(lang, "fmt_txt"), tr(lang, "fmt_pdf")]])


def model_keyboard(lang: Language) -> dict:
    return _keyboard([[tr(lang, "model_basic"), tr(lang, "model_improved")]])

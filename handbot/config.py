# handbot/config.py
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv; load_dotenv()

from .models.schemas import ProxyConfig

# Product defaults (in code)
DEFAULT_MISTRAL_MODEL      = "mistral-large-latest"
DEFAULT_MISTRAL_FAST_MODEL = "mistral-small-latest"
DEFAULT_PROXY_ADDR         = "127.0.0.1:10808"
REQUEST_TIMEOUT            = 30.0   # seconds, both remote calls
CORRECTION_MAX_ATTEMPTS    = 3

OCR_URL     = "https://ocr.api.cloud.yandex.net/ocr/v1/recognizeText"
MISTRAL_URL = "https://api.mistral.ai/v1/chat/completions"
IAM_URL     = "https://iam.api.cloud.yandex.net/iam/v1/tokens"
IP_CHECK_URL = "https://api.ipify.org?format=text"

# Files (env or .env)
LOG_DIR       = Path(os.getenv("HANDBOT_LOG_DIR", "."))
PDF_FONT_PATH = os.getenv("PDF_FONT_PATH") or None
LOG_LEVEL     = os.getenv("LOG_LEVEL", "INFO")

OCR_DUMP_PATH        = LOG_DIR / "api_response.json"
CORRECTION_DUMP_PATH = LOG_DIR / "mistral_response.json"
TIMING_LOG_PATH      = LOG_DIR / "timing.log"
PROXY_LOG_PATH       = LOG_DIR / "proxy_check.log"

# Telegram + token refresh
TELEGRAM_BOT_TOKEN      = os.getenv("TELEGRAM_BOT_TOKEN")
TELEGRAM_WEBHOOK_SECRET = os.getenv("TELEGRAM_WEBHOOK_SECRET") or None
IAM_REFRESH_HOURS       = float(os.getenv("IAM_REFRESH_HOURS", "12"))


# Read per call: the process environment may change between runs.

def mistral_model(override: Optional[str] = None) -> str:
    return override or os.getenv("MISTRAL_MODEL") or DEFAULT_MISTRAL_MODEL


def mistral_fast_model() -> str:
    return os.getenv("MISTRAL_FAST_MODEL") or DEFAULT_MISTRAL_FAST_MODEL


def proxy_config() -> ProxyConfig:
    return ProxyConfig(
        enabled=os.getenv("USE_PROXY") == "true",
        address=os.getenv("PROXY_ADDR") or DEFAULT_PROXY_ADDR,
    )


def folder_id() -> str:
    return (os.getenv("FOLDER_ID") or "").strip()


def static_iam_token() -> str:
    return (os.getenv("IAM_TOKEN") or "").strip()


def oauth_token() -> str:
    return (os.getenv("YANDEX_OAUTH") or "").strip()


def mistral_api_key() -> str:
    return (os.getenv("MISTRAL_API_KEY") or "").strip()


def summary(safe: bool = True) -> dict:
    proxy = proxy_config()
    out = {
        "mistral_model": mistral_model(),
        "mistral_fast_model": mistral_fast_model(),
        "use_proxy": proxy.enabled,
        "proxy_addr": proxy.address,
        "log_dir": str(LOG_DIR),
        "pdf_font": bool(PDF_FONT_PATH),
        "iam_refresh_hours": IAM_REFRESH_HOURS,
    }
    if not safe:
        out["folder_id_present"] = bool(folder_id())
        out["iam_token_present"] = bool(static_iam_token())
        out["oauth_token_present"] = bool(oauth_token())
        out["mistral_key_present"] = bool(mistral_api_key())
        out["telegram_token_present"] = bool(TELEGRAM_BOT_TOKEN)
    return out

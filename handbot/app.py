import asyncio
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

if __name__ == "__main__":
    raise SystemExit("Run with: python -m uvicorn handbot.app:app --port 8000")

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from starlette.responses import JSONResponse

_here = Path(__file__).resolve().parent
load_dotenv(_here / ".env")                          # handbot/.env
load_dotenv(_here.parent / ".env", override=False)   # project root .env (optional)

from . import config
from .bot.handlers import BotHandler
from .bot.settings_store import SettingsStore
from .bot.telegram import TelegramClient
from .models.schemas import Credentials
from .services.correction import MistralCorrectionClient
from .services.iam import IamTokenProvider
from .services.metrics import ProxyCheckLog, TimingLog
from .services.ocr import YandexOCRClient
from .services.pipeline import Pipeline

# ---------------------------------------
# App logger
# ---------------------------------------
logger = logging.getLogger("handbot")
if not logger.handlers:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
# httpx logs every request URL at INFO, and Telegram URLs carry the bot token
logging.getLogger("httpx").setLevel(logging.WARNING)

# ---------------------------------------
# Wiring (module-level; tests monkeypatch these)
# ---------------------------------------
token_provider = IamTokenProvider(
    oauth_token=config.oauth_token(),
    static_token=config.static_iam_token(),
    refresh_seconds=config.IAM_REFRESH_HOURS * 3600,
)

pipeline = Pipeline(
    recognizer=YandexOCRClient(dump_path=config.OCR_DUMP_PATH),
    corrector=MistralCorrectionClient(
        dump_path=config.CORRECTION_DUMP_PATH,
        proxy_log=ProxyCheckLog(config.PROXY_LOG_PATH),
    ),
    timing_log=TimingLog(config.TIMING_LOG_PATH),
)

store = SettingsStore()


def current_credentials() -> Credentials:
    return Credentials(
        folder_id=config.folder_id(),
        iam_token=token_provider.token or config.static_iam_token(),
        api_key=config.mistral_api_key(),
    )


bot: Optional[BotHandler] = None
if config.TELEGRAM_BOT_TOKEN:
    bot = BotHandler(
        TelegramClient(config.TELEGRAM_BOT_TOKEN),
        pipeline,
        store,
        current_credentials,
        pdf_font_path=config.PDF_FONT_PATH,
    )
logger.info("[boot] telegram bot: %s", "ready" if bot else "NONE (TELEGRAM_BOT_TOKEN unset)")
logger.info("[boot] config: %s", config.summary())


def _on_refresh_done(task: "asyncio.Task") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.critical("[iam] token refresh loop stopped: %s", exc)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    task = None
    if token_provider.refreshable:
        task = asyncio.create_task(token_provider.run())
        task.add_done_callback(_on_refresh_done)
    else:
        logger.warning("[boot] YANDEX_OAUTH unset; using static IAM_TOKEN without refresh")
    try:
        yield
    finally:
        if task is not None:
            task.cancel()


app = FastAPI(lifespan=lifespan)


@app.get("/health")
@app.get("/api/health")
def health():
    return {"ok": True, "service": "handbot"}


@app.get("/api/debug/config")
def debug_config():
    return config.summary(safe=False)


_CLIENT_SIDE_KINDS = {"file_access", "empty_result"}


@app.post("/api/process")
async def process_image(request: Request, model: Optional[str] = None):
    """Run the pipeline on a raw image body (``Content-Type: image/*``)."""
    creds = current_credentials()
    missing = creds.missing()
    if missing:
        raise HTTPException(status_code=503, detail={"detail": "config_error", "missing": missing})

    blob = await request.body()
    fd, tmp_name = tempfile.mkstemp(prefix="upload_", suffix=".img")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(blob)
        outcome = await pipeline.process(tmp_name, creds.folder_id, creds.iam_token, creds.api_key, model=model)
    finally:
        Path(tmp_name).unlink(missing_ok=True)

    if outcome.ok:
        status = 200
    elif outcome.error.kind in _CLIENT_SIDE_KINDS:
        status = 422
    else:
        status = 502
    return JSONResponse(status_code=status, content=outcome.model_dump())


@app.post("/telegram/webhook")
async def telegram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
):
    secret = config.TELEGRAM_WEBHOOK_SECRET
    if secret and x_telegram_bot_api_secret_token != secret:
        raise HTTPException(status_code=403, detail="bad webhook secret")
    if bot is None:
        raise HTTPException(status_code=503, detail="telegram bot not configured")
    try:
        update = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="update must be JSON")
    # answer Telegram right away; OCR + correction can take most of a minute
    background_tasks.add_task(bot.handle_update, update)
    return {"ok": True}

# handbot/tests/conftest.py
import os
import tempfile

# --- Set env before anything imports the app code ---
os.environ["HANDBOT_LOG_DIR"] = tempfile.mkdtemp(prefix="handbot-test-")
os.environ["USE_PROXY"] = "false"
for _key in ("MISTRAL_MODEL", "MISTRAL_FAST_MODEL", "PROXY_ADDR", "YANDEX_OAUTH",
             "TELEGRAM_BOT_TOKEN", "TELEGRAM_WEBHOOK_SECRET", "PDF_FONT_PATH"):
    os.environ.pop(_key, None)

import httpx
import pytest


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    # keep these so any later code still sees the defaults
    monkeypatch.setenv("USE_PROXY", "false")
    monkeypatch.delenv("MISTRAL_MODEL", raising=False)
    monkeypatch.delenv("PROXY_ADDR", raising=False)


class MockTransport:
    """Transport strategy backed by httpx.MockTransport; records every request."""

    proxy_address = None

    def __init__(self, handler):
        self.handler = handler
        self.requests = []

    def _record(self, request):
        self.requests.append(request)
        return self.handler(request)

    def client(self, timeout=30.0):
        return httpx.AsyncClient(transport=httpx.MockTransport(self._record), timeout=timeout)


@pytest.fixture()
def mock_transport():
    return MockTransport


@pytest.fixture()
def jpeg_file(tmp_path):
    from PIL import Image

    path = tmp_path / "photo.jpg"
    Image.new("RGB", (4, 2), (255, 255, 255)).save(path, format="JPEG")
    return path

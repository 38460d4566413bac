import asyncio
import json

import httpx
import pytest

from handbot.models.schemas import ProxyConfig
from handbot.services import iam
from handbot.services.errors import AuthOrConfigError, TokenRefreshError
from handbot.services.transport import DirectTransport, Socks5Transport, check_ip, transport_for


def test_transport_for_direct_when_disabled():
    assert isinstance(transport_for(None), DirectTransport)
    assert isinstance(transport_for(ProxyConfig(enabled=False, address="1.2.3.4:1080")), DirectTransport)


def test_transport_for_socks_when_enabled():
    transport = transport_for(ProxyConfig(enabled=True, address="127.0.0.1:10808"))
    assert isinstance(transport, Socks5Transport)
    assert transport.proxy_url == "socks5://127.0.0.1:10808"
    assert transport.proxy_address == "127.0.0.1:10808"


def test_socks_address_must_have_port():
    with pytest.raises(ValueError):
        Socks5Transport("localhost")


def test_check_ip(mock_transport):
    transport = mock_transport(lambda req: httpx.Response(200, text="198.51.100.1\n"))
    assert asyncio.run(check_ip(transport)) == "198.51.100.1"


def test_check_ip_raises_on_status(mock_transport):
    transport = mock_transport(lambda req: httpx.Response(500))
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(check_ip(transport))


def test_fetch_iam_token(mock_transport):
    transport = mock_transport(lambda req: httpx.Response(200, json={"iamToken": "t-1", "expiresAt": "x"}))

    token = asyncio.run(iam.fetch_iam_token("oauth-1", transport=transport))

    assert token == "t-1"
    req = transport.requests[0]
    assert str(req.url) == iam.IAM_URL
    assert json.loads(req.content) == {"yandexPassportOauthToken": "oauth-1"}


def test_fetch_iam_token_without_token_field(mock_transport):
    transport = mock_transport(lambda req: httpx.Response(200, json={}))
    with pytest.raises(ValueError):
        asyncio.run(iam.fetch_iam_token("oauth-1", transport=transport))


def _provider(results, **kw):
    sleeps = []
    calls = []

    async def fetch(oauth):
        calls.append(oauth)
        outcome = results.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    provider = iam.IamTokenProvider("oauth-1", fetch=fetch, sleep=fake_sleep, **kw)
    return provider, calls, sleeps


def test_refresh_retries_then_succeeds():
    provider, calls, sleeps = _provider([httpx.ConnectError("down"), ValueError("bad body"), "fresh"])

    assert asyncio.run(provider.refresh()) == "fresh"
    assert provider.token == "fresh"
    assert len(calls) == 3
    assert sleeps == [2.0, 4.0]


def test_refresh_is_bounded():
    provider, calls, sleeps = _provider([httpx.ConnectError("down")] * 3, max_attempts=3)

    with pytest.raises(TokenRefreshError) as exc:
        asyncio.run(provider.refresh())

    assert isinstance(exc.value, AuthOrConfigError)
    assert len(calls) == 3
    assert len(sleeps) == 2


def test_static_token_without_oauth():
    provider = iam.IamTokenProvider(static_token="static-1")
    assert provider.token == "static-1"
    assert not provider.refreshable
    with pytest.raises(TokenRefreshError):
        asyncio.run(provider.refresh())


def test_run_stops_on_refresh_failure():
    provider, calls, _ = _provider(["t1", httpx.ConnectError("x"), httpx.ConnectError("x")], max_attempts=2)

    with pytest.raises(TokenRefreshError):
        asyncio.run(provider.run())
    assert provider.token == "t1"
    assert len(calls) == 3


def test_socks_port_must_be_numeric():
    with pytest.raises(ValueError):
        Socks5Transport("127.0.0.1:notaport")


def test_telegram_client_requires_token():
    from handbot.bot.telegram import TelegramClient

    with pytest.raises(ValueError):
        TelegramClient("")

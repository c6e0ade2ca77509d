"""
Test cases for session verification against the identity provider.
"""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils
from starlette.requests import Request

from newsdesk.auth import SessionVerifier, extract_token
from newsdesk.errors import ConfigurationError, UpstreamError

ANON_KEY = "anon-key"


async def _user_endpoint(request):
    if request.headers.get("apikey") != ANON_KEY:
        return web.json_response({"msg": "No API key found in request"}, status=401)
    token = request.headers.get("Authorization", "").removeprefix("Bearer ")
    if token == "valid-token":
        return web.json_response({"id": "user-123", "email": "reader@example.com"})
    if token == "broken-token":
        return web.json_response({"msg": "oops"}, status=500)
    return web.json_response({"msg": "invalid JWT"}, status=401)


@pytest_asyncio.fixture
async def auth_server():
    app = web.Application()
    app.router.add_get("/auth/v1/user", _user_endpoint)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server
    await server.close()


def _verifier(server, anon_key=ANON_KEY):
    return SessionVerifier(base_url=str(server.make_url("")), anon_key=anon_key, timeout=5)


def _request(headers=None):
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw_headers})


@pytest.mark.asyncio
async def test_valid_token_resolves_user(auth_server):
    user = await _verifier(auth_server).verify("valid-token")
    assert user.id == "user-123"
    assert user.email == "reader@example.com"


@pytest.mark.asyncio
async def test_rejected_token(auth_server):
    assert await _verifier(auth_server).verify("expired-token") is None


@pytest.mark.asyncio
async def test_provider_error_is_an_upstream_failure(auth_server):
    with pytest.raises(UpstreamError) as excinfo:
        await _verifier(auth_server).verify("broken-token")
    assert excinfo.value.status_code == 500
    assert excinfo.value.public_message == "Authentication service unavailable"


@pytest.mark.asyncio
async def test_unreachable_provider_is_an_upstream_failure():
    app = web.Application()
    server = test_utils.TestServer(app)
    await server.start_server()
    verifier = _verifier(server)
    await server.close()

    with pytest.raises(UpstreamError):
        await verifier.verify("valid-token")


@pytest.mark.asyncio
async def test_wrong_anon_key(auth_server):
    assert await _verifier(auth_server, anon_key="wrong").verify("valid-token") is None


@pytest.mark.asyncio
async def test_unconfigured_verifier():
    verifier = SessionVerifier(base_url="", anon_key="")
    verifier.base_url = ""
    verifier.anon_key = ""
    with pytest.raises(ConfigurationError):
        await verifier.verify("valid-token")


def test_extract_token_from_header():
    assert extract_token(_request({"Authorization": "Bearer abc"})) == "abc"
    assert extract_token(_request({"Authorization": "bearer  abc "})) == "abc"


def test_extract_token_from_cookie():
    assert extract_token(_request({"Cookie": "sb-access-token=from-cookie"})) == "from-cookie"


def test_extract_token_missing():
    assert extract_token(_request()) is None
    assert extract_token(_request({"Authorization": "Basic abc"})) is None
    assert extract_token(_request({"Authorization": "Bearer "})) is None

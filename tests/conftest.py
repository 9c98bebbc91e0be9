"""Pytest configuration and shared fixtures."""
import httpx
import pytest
from fastapi.responses import RedirectResponse
from fastapi.testclient import TestClient

from tidequote.config import Settings
from tidequote.errors import IdentityProviderError
from tidequote.identity import Identity, IdentityProvider
from tidequote.quotes import QuoteFetcher
from tidequote.server import create_app

QUOTE_URL = "https://quotes.test/api/random"


class FakeIdentityProvider(IdentityProvider):
    """Skips Google: the callback's ``as`` query param names the user."""
    name = "fake"

    async def authorize_redirect(self, request, redirect_uri):
        return RedirectResponse(f"{redirect_uri}?code=fake&as=alice",
                                status_code=302)

    async def complete(self, request):
        if "error" in request.query_params:
            raise IdentityProviderError(request.query_params["error"])
        who = request.query_params.get("as", "alice")
        return Identity(
            id=f"google-{who}",
            display_name=who.title(),
            email=f"{who}@example.com",
        )


def make_quotes(handler, url: str = QUOTE_URL,
                timeout: float = 3.0) -> QuoteFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return QuoteFetcher(client, url, timeout=timeout)


def ok_quote(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200, json=[{"q": "Stay curious.", "a": "Test Author", "h": "<p/>"}]
    )


def login(client: TestClient, who: str = "alice"):
    r = client.get("/auth/google/callback", params={"as": who})
    assert r.status_code == 200
    return r


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="test",
        database_url=f"sqlite:///{tmp_path / 'tidequote.db'}",
        base_url="http://testserver",
        log_level="WARNING",
    )


@pytest.fixture
def quotes():
    return make_quotes(ok_quote)


@pytest.fixture
def app(settings, quotes):
    return create_app(
        settings,
        identity_provider=FakeIdentityProvider(),
        quotes=quotes,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c

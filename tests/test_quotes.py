"""Tests for the quote fetcher."""
import asyncio
import time

import httpx
import pytest

from tidequote.errors import UpstreamUnavailable
from tidequote.quotes import FALLBACK_QUOTE, parse_quote
from tests.conftest import QUOTE_URL, make_quotes


def reply(*args, **kwargs):
    def handler(request):
        return httpx.Response(*args, **kwargs)
    return handler


def fail_with(exc_type):
    def handler(request):
        raise exc_type("upstream trouble", request=request)
    return handler


class TestParseQuote:

    def test_parses_first_entry(self):
        assert parse_quote([{"q": " Be kind. ", "a": "Anon "}]) == {
            "text": "Be kind.", "author": "Anon"
        }

    @pytest.mark.parametrize("payload", [
        [],
        {},
        None,
        ["just a string"],
        [{"q": "missing author"}],
        [{"a": "missing text"}],
        [{"q": "   ", "a": "Blank"}],
        [{"q": 42, "a": "Numbers"}],
    ])
    def test_rejects_malformed(self, payload):
        with pytest.raises(UpstreamUnavailable):
            parse_quote(payload)


class TestFetchQuote:

    async def test_success(self):
        quotes = make_quotes(reply(200, json=[{"q": "Go on.", "a": "Me"}]))
        assert await quotes.fetch_quote() == {"text": "Go on.", "author": "Me"}

    async def test_hits_configured_url_with_timeout(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["timeout"] = request.extensions.get("timeout")
            return httpx.Response(200, json=[{"q": "Hi.", "a": "Me"}])

        await make_quotes(handler).fetch_quote()
        assert seen["url"] == QUOTE_URL
        assert seen["timeout"]["read"] == 3.0

    @pytest.mark.parametrize("handler", [
        reply(500, text="oops"),
        reply(429, json={"error": "rate limited"}),
        reply(200, content=b"<html>not json</html>"),
        reply(200, json=[]),
        reply(200, json=[{"q": "no author"}]),
        fail_with(httpx.ConnectError),
        fail_with(httpx.ReadTimeout),
        fail_with(httpx.ConnectTimeout),
    ])
    async def test_falls_back_on_failure(self, handler):
        quote = await make_quotes(handler).fetch_quote()
        assert quote == FALLBACK_QUOTE

    async def test_fallback_is_a_copy(self):
        quote = await make_quotes(reply(503)).fetch_quote()
        quote["text"] = "changed"
        assert FALLBACK_QUOTE["text"] == "The ocean is a mighty harmonist."
        assert FALLBACK_QUOTE["author"] == "William Wordsworth"

    async def test_slow_stream_is_cut_off(self):
        # each chunk arrives well inside a per-read timeout, the whole
        # body would take two seconds
        async def drip():
            for _ in range(20):
                await asyncio.sleep(0.1)
                yield b" "

        def handler(request):
            return httpx.Response(200, content=drip())

        quotes = make_quotes(handler, timeout=0.3)
        t0 = time.perf_counter()
        quote = await quotes.fetch_quote()
        assert quote == FALLBACK_QUOTE
        assert time.perf_counter() - t0 < 1.0

    async def test_hung_upstream_is_cut_off(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json=[{"q": "Late.", "a": "Me"}])

        t0 = time.perf_counter()
        quote = await make_quotes(handler, timeout=0.2).fetch_quote()
        assert quote == FALLBACK_QUOTE
        assert time.perf_counter() - t0 < 1.0

    async def test_malformed_url_falls_back(self):
        quotes = make_quotes(reply(200, json=[{"q": "Hi.", "a": "Me"}]),
                             url="http://[::1/bad")
        assert await quotes.fetch_quote() == FALLBACK_QUOTE

    async def test_closed_client_falls_back(self):
        quotes = make_quotes(reply(200, json=[{"q": "Hi.", "a": "Me"}]))
        await quotes.client.aclose()
        assert await quotes.fetch_quote() == FALLBACK_QUOTE

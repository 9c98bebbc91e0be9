from __future__ import annotations
import asyncio
import logging
from typing import Optional, TypedDict

import httpx

from .errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class Quote(TypedDict):
    text: str
    author: str


FALLBACK_QUOTE: Quote = {
    "text": "The ocean is a mighty harmonist.",
    "author": "William Wordsworth",
}


def parse_quote(payload) -> Quote:
    """ZenQuotes answers with ``[{"q": text, "a": author, ...}]``."""
    if not isinstance(payload, list) or not payload:
        raise UpstreamUnavailable("expected a non-empty list")
    first = payload[0]
    if not isinstance(first, dict):
        raise UpstreamUnavailable("expected an object in the list")
    text = first.get("q")
    author = first.get("a")
    if not isinstance(text, str) or not isinstance(author, str):
        raise UpstreamUnavailable("quote text or author missing")
    text, author = text.strip(), author.strip()
    if not text or not author:
        raise UpstreamUnavailable("quote text or author blank")
    return {"text": text, "author": author}


class QuoteFetcher:
    def __init__(self, client: httpx.AsyncClient, url: str,
                 timeout: Optional[float] = 3.0) -> None:
        self.client = client
        self.url = url
        self.timeout = timeout

    async def _fetch(self) -> Quote:
        try:
            r = await self.client.get(self.url, timeout=self.timeout)
            r.raise_for_status()
            payload = r.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise UpstreamUnavailable(repr(e)) from e
        return parse_quote(payload)

    async def fetch_quote(self) -> Quote:
        # never raises: any upstream trouble yields the fallback quote.
        # httpx timeouts are per step, wait_for bounds the whole exchange
        try:
            return await asyncio.wait_for(self._fetch(), self.timeout)
        except asyncio.TimeoutError:
            logger.warning("quote api timed out after %ss, using fallback",
                           self.timeout)
        except UpstreamUnavailable as e:
            logger.warning("quote api unavailable, using fallback: %s", e)
        except Exception:
            logger.exception("quote fetch failed, using fallback")
        return dict(FALLBACK_QUOTE)

# gsc_client.py
import asyncio
import json
import random
from typing import Any, Callable, Dict, Optional

import google_auth_httplib2
import httplib2
from google.auth.exceptions import RefreshError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config import Settings
from gsc_auth import TokenError, TokenProvider
from logging_config import logger

# Transient errors to retry
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
RETRYABLE_EXCEPTIONS = (ConnectionError, TimeoutError, httplib2.HttpLib2Error)


class GSCApiError(Exception):
    """
    A failed Search Console API call.

    ``status`` is the upstream HTTP status (None for transport failures),
    ``message`` the API's ``error.message`` when it sent one, and ``text`` the
    raw response body.
    """

    def __init__(self, status: Optional[int], message: str, text: str = ""):
        super().__init__(message)
        self.status = status
        self.message = message
        self.text = text or message

    @classmethod
    def from_http_error(cls, e: HttpError) -> "GSCApiError":
        status = getattr(getattr(e, "resp", None), "status", None)
        content = e.content or b""
        text = content.decode("utf-8", "replace") if isinstance(content, bytes) else str(content)
        message = ""
        try:
            message = json.loads(text).get("error", {}).get("message", "")
        except (ValueError, AttributeError):
            pass
        return cls(int(status) if status is not None else None, message or text or str(e), text)


# Build a Search Console client using an authorized HTTP with timeout
def build_gsc_service(creds, timeout_seconds: int):
    http = httplib2.Http(timeout=timeout_seconds)
    authed_http = google_auth_httplib2.AuthorizedHttp(creds, http=http)
    return build("searchconsole", "v1", http=authed_http, cache_discovery=False)


class GSCClient:
    """
    Async facade over the Search Console v1 API.

    One client serves one tool invocation: httplib2 connections are not
    thread-safe, so the underlying service is never shared between calls.
    Blocking ``execute()`` calls run in a worker thread.
    """

    def __init__(self, settings: Settings, tokens: TokenProvider):
        self.settings = settings
        self.tokens = tokens
        self._service = None

    def _get_service(self):
        if self._service is None:
            creds = self.tokens.get_credentials()
            self._service = build_gsc_service(creds, self.settings.http_timeout_seconds)
        return self._service

    def _run(self, make_request: Callable[[Any], Any]) -> Dict[str, Any]:
        try:
            response = make_request(self._get_service()).execute()
        except RefreshError as e:
            raise TokenError(f"Failed to refresh token: {e}") from e
        self.tokens.sync()
        return response or {}

    async def _execute(self, name: str, make_request: Callable[[Any], Any]) -> Dict[str, Any]:
        retries = max(0, self.settings.request_retries)
        for attempt in range(retries + 1):
            try:
                # Run blocking execute() off the event loop
                return await asyncio.to_thread(self._run, make_request)
            except HttpError as e:
                error = GSCApiError.from_http_error(e)
                if error.status not in RETRYABLE_STATUS_CODES or attempt >= retries:
                    raise error from e
                reason = f"HTTP {error.status}"
            except RETRYABLE_EXCEPTIONS as e:
                if attempt >= retries:
                    raise GSCApiError(None, str(e) or e.__class__.__name__) from e
                reason = str(e) or e.__class__.__name__
            # Backoff with jitter
            delay = self.settings.retry_backoff_seconds ** (attempt + 1)
            delay += random.uniform(0, max(0, self.settings.retry_jitter_ms) / 1000.0)
            logger.warning("Retry %d/%d of %s in %.1fs: %s", attempt + 1, retries, name, delay, reason)
            await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    async def list_sites(self) -> Dict[str, Any]:
        return await self._execute("sites.list", lambda s: s.sites().list())

    async def get_site(self, site_url: str) -> Dict[str, Any]:
        return await self._execute("sites.get", lambda s: s.sites().get(siteUrl=site_url))

    async def query_search_analytics(self, site_url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._execute(
            "searchanalytics.query",
            lambda s: s.searchanalytics().query(siteUrl=site_url, body=body),
        )

    async def inspect_url(self, site_url: str, inspection_url: str, language_code: str = "en-US") -> Dict[str, Any]:
        body = {"inspectionUrl": inspection_url, "siteUrl": site_url, "languageCode": language_code}
        return await self._execute("urlInspection.index.inspect", lambda s: s.urlInspection().index().inspect(body=body))

    async def list_sitemaps(self, site_url: str, sitemap_index: Optional[str] = None) -> Dict[str, Any]:
        if sitemap_index:
            return await self._execute(
                "sitemaps.list",
                lambda s: s.sitemaps().list(siteUrl=site_url, sitemapIndex=sitemap_index),
            )
        return await self._execute("sitemaps.list", lambda s: s.sitemaps().list(siteUrl=site_url))

    async def get_sitemap(self, site_url: str, feedpath: str) -> Dict[str, Any]:
        return await self._execute("sitemaps.get", lambda s: s.sitemaps().get(siteUrl=site_url, feedpath=feedpath))


def client_factory(settings: Settings, tokens: TokenProvider) -> Callable[[], GSCClient]:
    """Return a zero-argument callable producing a fresh client per tool call."""
    return lambda: GSCClient(settings, tokens)

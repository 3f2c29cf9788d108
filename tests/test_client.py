from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from config import Settings
from gsc_client import GSCApiError, GSCClient

pytestmark = pytest.mark.anyio


def _http_error(status, content=b""):
    return HttpError(httplib2.Response({"status": status}), content)


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def tokens():
    return MagicMock()


@pytest.fixture
def client(service, tokens):
    client = GSCClient(Settings(request_retries=2, retry_backoff_seconds=0.0, retry_jitter_ms=0), tokens)
    client._service = service
    return client


def test_api_error_from_http_error_reads_google_message():
    body = b'{"error": {"code": 403, "message": "User does not have sufficient permission"}}'
    error = GSCApiError.from_http_error(_http_error(403, body))
    assert error.status == 403
    assert error.message == "User does not have sufficient permission"
    assert error.text == body.decode()


def test_api_error_from_http_error_without_json_body():
    error = GSCApiError.from_http_error(_http_error(502, b"Bad Gateway"))
    assert error.status == 502
    assert error.message == "Bad Gateway"
    assert error.text == "Bad Gateway"


async def test_retries_transient_status(client, service, tokens):
    execute = service.sites.return_value.list.return_value.execute
    execute.side_effect = [_http_error(503), {"siteEntry": []}]

    assert await client.list_sites() == {"siteEntry": []}
    assert execute.call_count == 2
    tokens.sync.assert_called_once()


async def test_gives_up_after_retries(client, service):
    execute = service.sites.return_value.list.return_value.execute
    execute.side_effect = _http_error(429)

    with pytest.raises(GSCApiError) as excinfo:
        await client.list_sites()
    assert excinfo.value.status == 429
    assert execute.call_count == 3


async def test_does_not_retry_client_errors(client, service):
    execute = service.sites.return_value.get.return_value.execute
    execute.side_effect = _http_error(404, b'{"error": {"message": "not found"}}')

    with pytest.raises(GSCApiError) as excinfo:
        await client.get_site("https://example.com/")
    assert excinfo.value.status == 404
    assert execute.call_count == 1


async def test_connection_errors_become_api_errors(client, service):
    service.sitemaps.return_value.list.return_value.execute.side_effect = ConnectionError("reset by peer")

    with pytest.raises(GSCApiError) as excinfo:
        await client.list_sitemaps("https://example.com/")
    assert excinfo.value.status is None
    assert excinfo.value.message == "reset by peer"


async def test_inspect_url_sends_inspection_body(client, service):
    inspect = service.urlInspection.return_value.index.return_value.inspect
    inspect.return_value.execute.return_value = {"inspectionResult": {}}

    await client.inspect_url("sc-domain:example.com", "https://example.com/a", "de-DE")

    inspect.assert_called_once_with(
        body={"inspectionUrl": "https://example.com/a", "siteUrl": "sc-domain:example.com", "languageCode": "de-DE"}
    )

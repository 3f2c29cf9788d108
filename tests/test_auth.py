import json
from unittest.mock import patch

import pytest
from google.auth.exceptions import RefreshError

from config import Settings
from gsc_auth import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TokenError, TokenProvider, TokenStore


def test_token_store_persists_to_disk(tmp_path):
    path = tmp_path / "tokens" / "store.json"
    store = TokenStore(str(path))
    store.put(REFRESH_TOKEN_KEY, "refresh-1")

    assert json.loads(path.read_text()) == {REFRESH_TOKEN_KEY: "refresh-1"}
    assert TokenStore(str(path)).get(REFRESH_TOKEN_KEY) == "refresh-1"


def test_token_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json")
    assert TokenStore(str(path)).get(ACCESS_TOKEN_KEY) is None


def test_in_memory_store():
    store = TokenStore()
    store.put(ACCESS_TOKEN_KEY, "abc")
    assert store.get(ACCESS_TOKEN_KEY) == "abc"


def test_missing_refresh_token_raises():
    provider = TokenProvider(Settings(client_id="id", client_secret="secret"), TokenStore())
    with pytest.raises(TokenError, match="Refresh token not found"):
        provider.get_credentials()


def test_refresh_token_falls_back_to_store():
    store = TokenStore()
    store.put(REFRESH_TOKEN_KEY, "from-store")
    provider = TokenProvider(Settings(client_id="id", client_secret="secret"), store)

    def fake_refresh(creds, request):
        creds.token = "new-access"

    with patch("google.oauth2.credentials.Credentials.refresh", autospec=True, side_effect=fake_refresh):
        creds = provider.get_credentials()

    assert creds.refresh_token == "from-store"
    assert creds.token == "new-access"
    assert store.get(ACCESS_TOKEN_KEY) == "new-access"


def test_rejected_refresh_becomes_token_error():
    provider = TokenProvider(Settings(refresh_token="bad", client_id="id", client_secret="secret"), TokenStore())
    with patch("google.oauth2.credentials.Credentials.refresh", side_effect=RefreshError("invalid_grant")):
        with pytest.raises(TokenError, match="Failed to refresh token: invalid_grant"):
            provider.get_credentials()


def test_environment_access_token_is_used_without_refresh():
    provider = TokenProvider(
        Settings(access_token="env-access", refresh_token="r", client_id="id", client_secret="secret"),
        TokenStore(),
    )
    with patch("google.oauth2.credentials.Credentials.refresh") as refresh:
        creds = provider.get_credentials()
    assert creds.token == "env-access"
    refresh.assert_not_called()


def test_sync_persists_token_refreshed_by_transport():
    store = TokenStore()
    provider = TokenProvider(
        Settings(access_token="env-access", refresh_token="r", client_id="id", client_secret="secret"),
        store,
    )
    creds = provider.get_credentials()
    provider.sync()
    assert store.get(ACCESS_TOKEN_KEY) is None

    # AuthorizedHttp refreshes the shared credentials in place after a 401
    creds.token = "rotated"
    provider.sync()
    assert store.get(ACCESS_TOKEN_KEY) == "rotated"

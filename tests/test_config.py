from config import Settings


def test_defaults(monkeypatch):
    for name in ("API_KEY", "MCP_KEEPALIVE_SECONDS", "GSC_REQUEST_RETRIES", "PORT", "GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_ID_TEAM"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.api_key is None
    assert settings.keepalive_seconds == 30.0
    assert settings.request_retries == 3
    assert settings.port == 8000
    assert settings.client_id is None
    assert settings.protocol_version == "2024-11-05"


def test_team_credentials_and_bad_numbers(monkeypatch):
    monkeypatch.delenv("GOOGLE_CLIENT_ID", raising=False)
    monkeypatch.setenv("GOOGLE_CLIENT_ID_TEAM", "team-id")
    monkeypatch.setenv("API_KEY", "secret")
    monkeypatch.setenv("PORT", "not-a-port")
    monkeypatch.setenv("MCP_KEEPALIVE_SECONDS", "5.5")

    settings = Settings.from_env()

    assert settings.client_id == "team-id"
    assert settings.api_key == "secret"
    assert settings.port == 8000
    assert settings.keepalive_seconds == 5.5

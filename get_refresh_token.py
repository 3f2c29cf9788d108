# get_refresh_token.py
"""
One-shot helper that obtains a Google refresh token for the server.

Runs the installed-app OAuth flow in a local browser, prints the tokens and,
when GSC_TOKEN_STORE_PATH is set, writes them to the token store the server
reads at startup.
"""

import os
import sys
from typing import Optional

from google_auth_oauthlib.flow import InstalledAppFlow

from config import Settings
from gsc_auth import ACCESS_TOKEN_KEY, GOOGLE_TOKEN_URI, REFRESH_TOKEN_KEY, SCOPES, TokenStore
from logging_config import configure_logging, logger

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"


def build_flow(settings: Settings, client_secrets_file: Optional[str] = None) -> InstalledAppFlow:
    # Prefer explicit client id/secret from env, fall back to a secrets file
    if settings.client_id and settings.client_secret:
        client_config = {
            "installed": {
                "client_id": settings.client_id,
                "client_secret": settings.client_secret,
                "auth_uri": GOOGLE_AUTH_URI,
                "token_uri": GOOGLE_TOKEN_URI,
                "redirect_uris": ["http://localhost"],
            }
        }
        return InstalledAppFlow.from_client_config(client_config, SCOPES)
    if client_secrets_file and os.path.exists(client_secrets_file):
        return InstalledAppFlow.from_client_secrets_file(client_secrets_file, SCOPES)
    raise SystemExit(
        "No OAuth client configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET "
        "or point GSC_OAUTH_CLIENT_SECRETS_FILE at a client secrets file."
    )


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    flow = build_flow(settings, os.getenv("GSC_OAUTH_CLIENT_SECRETS_FILE"))
    # offline + consent so Google always returns a refresh token
    creds = flow.run_local_server(port=0, access_type="offline", prompt="consent")
    if not creds.refresh_token:
        logger.error("Google did not return a refresh token")
        sys.exit(1)

    if settings.token_store_path:
        store = TokenStore(settings.token_store_path)
        store.put(REFRESH_TOKEN_KEY, creds.refresh_token)
        if creds.token:
            store.put(ACCESS_TOKEN_KEY, creds.token)
        logger.info("Stored tokens in %s", settings.token_store_path)

    print(f"{REFRESH_TOKEN_KEY}={creds.refresh_token}")
    if creds.token:
        print(f"{ACCESS_TOKEN_KEY}={creds.token}")


if __name__ == "__main__":
    main()

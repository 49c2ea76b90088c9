"""Google account session for Gmail and Sheets.

The desktop sign-in flow writes an authorized-user token file; this module
loads it, refreshes it when expired, and builds API clients from it. Nothing
else in the token lifecycle is handled here.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from triageq.config import GMAIL_TOKEN_PATH
from triageq.errors import AuthorizationRequiredError
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter, log_event

logger = get_logger(__name__)

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",  # read, label, trash
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",  # find sheets we created
]


class GoogleAuthSession:
    def __init__(self, token_path: Path | None = None, scopes: list[str] | None = None) -> None:
        self.token_path = Path(token_path or GMAIL_TOKEN_PATH)
        self.scopes = scopes or GOOGLE_SCOPES
        self._credentials: Credentials | None = None

    def sign_in_desktop(self, client_secrets_file: str | None = None) -> Credentials:
        """
        Run the local-server OAuth flow and store the resulting token.

        Side Effects:
            - Opens a browser window
            - Writes the token file (mode 0600)
        """
        secrets = client_secrets_file or os.getenv(
            "GOOGLE_OAUTH_CLIENT_SECRETS", "credentials/credentials.json"
        )
        flow = InstalledAppFlow.from_client_secrets_file(secrets, scopes=self.scopes)
        credentials = flow.run_local_server(port=0)
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.write_text(credentials.to_json(), encoding="utf-8")
        self.token_path.chmod(0o600)
        self._credentials = credentials
        log_event("google.signed_in")
        return credentials

    def credentials(self) -> Credentials:
        """
        Valid credentials, refreshed if needed.

        Raises:
            AuthorizationRequiredError: If there is no usable token
        """
        creds = self._credentials
        if creds is None:
            if not self.token_path.exists():
                raise AuthorizationRequiredError("Google")
            creds = Credentials.from_authorized_user_file(str(self.token_path), self.scopes)

        if not creds.valid:
            if not (creds.expired and creds.refresh_token):
                raise AuthorizationRequiredError("Google")
            try:
                creds.refresh(Request())
            except RefreshError as e:
                counter("google.token_refresh_failed")
                logger.warning("Google token refresh failed: %s", e)
                raise AuthorizationRequiredError("Google") from e
            self.token_path.write_text(creds.to_json(), encoding="utf-8")
            counter("google.token_refreshed")

        self._credentials = creds
        return creds

    def is_signed_in(self) -> bool:
        try:
            self.credentials()
        except AuthorizationRequiredError:
            return False
        return True

    def build_service(self, api: str, version: str) -> Any:
        return build(api, version, credentials=self.credentials(), cache_discovery=False)

    def sign_out(self) -> None:
        """
        Side Effects:
            - Deletes the token file
        """
        self._credentials = None
        self.token_path.unlink(missing_ok=True)

# blockersync/auth.py

import json
import logging
from typing import Callable, Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from .config import GoogleConfig
from .errors import AuthRequired, ConfigInvalid
from .store import Store

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]


class GoogleAuthenticator:
    """
    Hands out Google credentials per account, persisting them in the
    ``tokens`` table of the same database that holds the ledger.
    """

    def __init__(self, store: Store, google: Optional[GoogleConfig], interactive: bool = True,
                 flow_runner: Optional[Callable] = None):
        self.store = store
        self.google = google
        self.interactive = interactive
        self._flow_runner = flow_runner or self._run_flow

    def _require_google(self) -> GoogleConfig:
        if self.google is None:
            raise ConfigInvalid("A Google calendar is tracked but the config has no 'google' section")
        return self.google

    def _run_flow(self, google: GoogleConfig):
        flow = InstalledAppFlow.from_client_config(google.client_config(), SCOPES)
        return flow.run_local_server(port=0, open_browser=True)

    def _load(self, account_name: str) -> Optional[Credentials]:
        raw = self.store.get_token(account_name)
        if not raw:
            return None
        info = json.loads(raw)
        google = self._require_google()
        # Tokens written by the older tool are bare oauth2 tokens.
        if "access_token" in info and "token" not in info:
            info = {"token": info["access_token"], "refresh_token": info.get("refresh_token")}
        info.setdefault("client_id", google.client_id)
        info.setdefault("client_secret", google.client_secret)
        return Credentials.from_authorized_user_info(info, SCOPES)

    def _save(self, account_name: str, creds: Credentials):
        self.store.save_token(account_name, creds.to_json())

    def credentials(self, account_name: str) -> Credentials:
        creds = self._load(account_name)
        if creds is None:
            logger.info("No token found for account %s, obtaining a new one", account_name)
            return self.reauthenticate(account_name)
        if creds.valid:
            return creds
        return self._refresh(account_name, creds)

    def renew(self, account_name: str) -> Credentials:
        """Called after the API rejected a token: refresh it, else authorize again."""
        return self._refresh(account_name, self._load(account_name))

    def _refresh(self, account_name: str, creds: Optional[Credentials]) -> Credentials:
        if creds is not None and creds.refresh_token:
            try:
                creds.refresh(Request())
            except RefreshError as e:
                logger.warning("Refreshing the token for account %s failed: %s", account_name, e)
            else:
                self._save(account_name, creds)
                return creds
        return self.reauthenticate(account_name)

    def reauthenticate(self, account_name: str) -> Credentials:
        if not self.interactive:
            raise AuthRequired(f"Account {account_name} needs to be authorized; run blockersync from a terminal")
        creds = self._flow_runner(self._require_google())
        self._save(account_name, creds)
        logger.info("Stored new Google token for account %s", account_name)
        return creds

"""Identity providers: who the sync engine syncs for."""

import logging
from typing import Optional

from spendsync.config import SyncSettings

logger = logging.getLogger(__name__)


class StaticIdentity:
    """Identity held in memory. ``sign_in``/``sign_out`` change it."""

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id or None

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def sign_in(self, user_id: str) -> None:
        self._user_id = user_id

    def sign_out(self) -> None:
        self._user_id = None


class CredentialsIdentity:
    """Identity from settings (SPENDSYNC_USER_ID or credentials.json).

    A user only counts as signed in when an auth token is configured too.
    """

    def __init__(self, settings: SyncSettings):
        self.settings = settings

    def current_user_id(self) -> Optional[str]:
        if not self.settings.user_id:
            return None
        if not self.settings.auth_token:
            logger.debug("user_id configured without auth_token; treating as signed out")
            return None
        return self.settings.user_id

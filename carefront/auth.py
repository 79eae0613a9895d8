# carefront/auth.py
from __future__ import annotations

import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from carefront.config import get_settings


@dataclass(frozen=True)
class Principal:
    actor_id: str
    is_admin: bool = False


class Authenticator(ABC):
    """
    Identity collaborator. Returns a Principal, or None to deny.
    """

    @abstractmethod
    def authenticate(self, credentials: str | None) -> Optional[Principal]:
        ...


class TokenAuthenticator(Authenticator):
    """
    Admin access via a shared bearer token from ADMIN_API_TOKEN.
    Denies everything when no token is configured.
    """

    def __init__(self, token: str | None = None):
        self._token = token if token is not None else get_settings().admin_api_token

    def authenticate(self, credentials: str | None) -> Optional[Principal]:
        if not self._token or not credentials:
            return None
        if not hmac.compare_digest(credentials.encode("utf-8"), self._token.encode("utf-8")):
            return None
        return Principal(actor_id="admin", is_admin=True)

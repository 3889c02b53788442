"""OAuth 2.0 client-credentials token cache.

Shared by the Graph, Key Vault and Halaxy clients.  Tokens are cached until
shortly before they expire so a token never runs out mid-request.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import httpx

from app.core.constants import TOKEN_EXPIRY_BUFFER_SECONDS

logger = logging.getLogger(__name__)


class ClientCredentialsTokenProvider:
    """Fetch and cache an access token with the client-credentials grant.

    Entra ID takes the client secret in the form body together with a
    ``scope``; Halaxy expects HTTP Basic authentication instead
    (``basic_auth=True``).
    """

    def __init__(
        self,
        http: httpx.Client,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: str | None = None,
        basic_auth: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._http = http
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._scope = scope
        self._basic_auth = basic_auth
        self._clock = clock
        self._lock = threading.Lock()
        self._token: str | None = None
        self._expires_at: float = 0.0

    def get_token(self) -> str:
        """Return a valid access token, fetching a new one if needed."""
        with self._lock:
            if self._token and self._clock() < self._expires_at:
                return self._token

            data = {"grant_type": "client_credentials"}
            if self._scope:
                data["scope"] = self._scope
            auth: tuple[str, str] | None = None
            if self._basic_auth:
                auth = (self._client_id, self._client_secret)
            else:
                data["client_id"] = self._client_id
                data["client_secret"] = self._client_secret

            response = self._http.post(
                self._token_url,
                data=data,
                auth=auth,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            body = response.json()

            self._token = body["access_token"]
            expires_in = int(body.get("expires_in", 3600))
            self._expires_at = (
                self._clock() + max(expires_in - TOKEN_EXPIRY_BUFFER_SECONDS, 0)
            )
            logger.debug(
                "oauth_token_fetched",
                extra={"token_url": self._token_url, "expires_in": expires_in},
            )
            return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0

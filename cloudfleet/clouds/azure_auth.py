"""Azure credential parsing and token caching."""

from __future__ import annotations

import logging
import threading
from typing import Any, NamedTuple

from azure.core.credentials import AccessToken

from .base import CredentialFormatError
from ..retry import Clock

log = logging.getLogger(__name__)


class AzureCredential(NamedTuple):
    subscription_id: str | None
    tenant_id: str
    client_id: str
    client_secret: str


def parse_azure_credential(credential: str) -> AzureCredential:
    """Split a service-principal credential string.

    Accepted forms are ``tenant:client:secret`` and
    ``subscription:tenant:client:secret``. With three segments the
    subscription is discovered later from the account.

    Raises:
        CredentialFormatError: If the string has the wrong shape
    """
    parts = [p.strip() for p in (credential or "").strip().split(":")]
    if len(parts) not in (3, 4) or not all(parts):
        raise CredentialFormatError(
            "Azure credential must be 'tenant_id:client_id:client_secret' or "
            "'subscription_id:tenant_id:client_id:client_secret'",
            provider="azure",
            status_code=400,
        )
    if len(parts) == 3:
        return AzureCredential(None, *parts)
    return AzureCredential(*parts)


class CachedTokenCredential:
    """Token credential that reuses tokens until shortly before expiry.

    Wraps any ``azure.core`` TokenCredential. Tokens are cached per scope
    set and refreshed once fewer than ``margin`` seconds remain.
    """

    def __init__(self, inner: Any, clock: Clock | None = None, margin: float = 300) -> None:
        self._inner = inner
        self._clock = clock or Clock()
        self._margin = margin
        self._tokens: dict[tuple[str, ...], AccessToken] = {}
        self._lock = threading.Lock()

    def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        key = tuple(sorted(scopes))
        with self._lock:
            token = self._tokens.get(key)
            if token is not None and token.expires_on - self._margin > self._clock.time():
                return token

            log.debug(f"Requesting Azure token for {', '.join(scopes)}")
            token = self._inner.get_token(*scopes, **kwargs)
            self._tokens[key] = token
            return token

    def close(self) -> None:
        close = getattr(self._inner, "close", None)
        if close is not None:
            close()

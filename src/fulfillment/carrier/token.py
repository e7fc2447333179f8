"""Carrier auth token and the cache that holds it.

The cache is an ordinary object handed to the carrier adapter, so each
application context (or test) owns its own token.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

EXPIRY_SKEW = timedelta(seconds=60)


@dataclass(frozen=True)
class CarrierToken:
    value: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at - EXPIRY_SKEW


class TokenCache:
    def __init__(self) -> None:
        self._token: CarrierToken | None = None

    def get(self, now: datetime) -> CarrierToken | None:
        """Return the cached token while it is still valid."""
        if self._token is not None and self._token.is_valid(now):
            return self._token
        return None

    def store(self, token: CarrierToken) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None

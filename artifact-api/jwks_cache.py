import logging
import time
from types import MappingProxyType
from typing import Mapping

import jwt
import requests

from errors import KeySetUnavailable, TokenInvalid

logger = logging.getLogger(__name__)

GITHUB_JWKS_URL = "https://token.actions.githubusercontent.com/.well-known/jwks"


class JwksCache:
    """
    Process-wide cache of the public keys published at a JWKS endpoint.

    The key map is an immutable snapshot that is swapped in whole on every
    refresh, so concurrent readers never see a half-built set and concurrent
    refreshes simply race to the last assignment.
    """

    def __init__(self, jwks_url: str = GITHUB_JWKS_URL, max_age: float = 3600.0, timeout: float = 5.0):
        self.jwks_url = jwks_url
        self.max_age = max_age
        self.timeout = timeout
        self._keys: Mapping[str, jwt.PyJWK] | None = None
        self._fetched_at = 0.0

    @property
    def is_stale(self) -> bool:
        if self._keys is None:
            return True
        return time.monotonic() - self._fetched_at > self.max_age

    def refresh(self) -> Mapping[str, jwt.PyJWK]:
        try:
            response = requests.get(self.jwks_url, timeout=self.timeout)
            response.raise_for_status()
            jwk_set = jwt.PyJWKSet.from_dict(response.json())
        except requests.exceptions.RequestException as exc:
            logger.error(f"Could not fetch JWKS from {self.jwks_url}: {exc}")
            raise KeySetUnavailable(f"Could not fetch JWKS: {exc}") from exc
        except (ValueError, jwt.PyJWTError) as exc:
            logger.error(f"Unusable JWKS from {self.jwks_url}: {exc}")
            raise KeySetUnavailable(f"Unusable JWKS: {exc}") from exc

        keys = MappingProxyType({key.key_id: key for key in jwk_set.keys if key.key_id})
        self._keys = keys
        self._fetched_at = time.monotonic()
        logger.info(f"Loaded {len(keys)} signing keys from {self.jwks_url}")
        return keys

    def invalidate(self) -> None:
        self._keys = None

    def get_signing_key(self, kid: str) -> jwt.PyJWK:
        keys = self._keys
        refreshed = False
        if keys is None or self.is_stale:
            keys = self.refresh()
            refreshed = True

        key = keys.get(kid)
        if key is None and not refreshed:
            # key rotation: the issuer may have published a key we have not seen yet
            logger.info(f"Signing key {kid} not in cached JWKS, refreshing")
            keys = self.refresh()
            key = keys.get(kid)

        if key is None:
            raise TokenInvalid(f"No signing key found for kid {kid!r}")
        return key

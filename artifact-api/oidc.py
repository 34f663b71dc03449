"""
Verification of GitHub Actions OIDC tokens.

The verifier owns the trust boundary only: signature, issuer and temporal
claims. Which repository may publish is decided by `authorization`.
"""
import logging
from dataclasses import dataclass
from typing import Any

import jwt

from errors import TokenInvalid
from jwks_cache import JwksCache

logger = logging.getLogger(__name__)

GITHUB_OIDC_ISSUER = "https://token.actions.githubusercontent.com"


@dataclass(frozen=True)
class IdentityClaims:
    issuer: str
    source_repository: str
    ref: str
    actor: str
    run_id: str
    run_number: str

    # payload claim name for each field
    CLAIM_NAMES = {
        "issuer": "iss",
        "source_repository": "repository",
        "ref": "ref",
        "actor": "actor",
        "run_id": "run_id",
        "run_number": "run_number",
    }
    NUMERIC_FIELDS = ("run_id", "run_number")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "IdentityClaims":
        """
        Build claims from a payload whose signature has already been checked.

        Every field is required. `run_id` and `run_number` are accepted as
        numbers too and stored as strings.
        """
        values = {}
        for field, claim in cls.CLAIM_NAMES.items():
            value = payload.get(claim)
            allowed = (str, int) if field in cls.NUMERIC_FIELDS else (str,)
            if isinstance(value, bool) or not isinstance(value, allowed):
                raise TokenInvalid(f"Token claim {claim!r} is missing or not a string")
            value = str(value)
            if not value:
                raise TokenInvalid(f"Token claim {claim!r} is empty")
            values[field] = value
        return cls(**values)


class TokenVerifier:

    def __init__(self,
                 jwks_cache: JwksCache,
                 issuer: str = GITHUB_OIDC_ISSUER,
                 audience: str | None = None,
                 algorithms: tuple[str, ...] = ("RS256",),
                 leeway: float = 0):
        self.jwks_cache = jwks_cache
        self.issuer = issuer
        self.audience = audience
        self.algorithms = list(algorithms)
        self.leeway = leeway

    def verify(self, token: str) -> IdentityClaims:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as exc:
            raise TokenInvalid(f"Malformed token: {exc}") from exc

        kid = header.get("kid")
        if not kid:
            raise TokenInvalid("Token header has no 'kid'")

        signing_key = self.jwks_cache.get_signing_key(kid)

        try:
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=self.algorithms,
                issuer=self.issuer,
                audience=self.audience,
                leeway=self.leeway,
                options={
                    "require": ["exp", "iss"],
                    "verify_aud": self.audience is not None,
                },
            )
        except jwt.PyJWTError as exc:
            raise TokenInvalid(f"{type(exc).__name__}: {exc}") from exc

        claims = IdentityClaims.from_payload(payload)
        logger.debug(f"Verified token for {claims.source_repository} ({claims.ref}) by {claims.actor}")
        return claims

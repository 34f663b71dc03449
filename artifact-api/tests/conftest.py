"""
Shared test fixtures.

Environment variables are set BEFORE `app` is imported, because the module
builds a default application at import time.
"""

import json
import os
import tempfile
import time
from unittest.mock import MagicMock, patch

os.environ["ALLOWED_REPOSITORY"] = "noraneko/artifacts"
os.environ["ARTIFACT_ROOT"] = tempfile.mkdtemp(prefix="artifact-api-tests-")

import jwt  # noqa: E402
import pytest  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402
from jwt.algorithms import RSAAlgorithm  # noqa: E402

from app import create_app  # noqa: E402
from oidc import GITHUB_OIDC_ISSUER  # noqa: E402

ALLOWED_REPOSITORY = "noraneko/artifacts"
KEY_ID = "test-key"


def _public_jwk(private_key, kid: str) -> dict:
    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
    return jwk


def make_jwks_response(*jwks: dict) -> MagicMock:
    response = MagicMock()
    response.json.return_value = {"keys": list(jwks)}
    return response


@pytest.fixture(scope="session")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_jwk(signing_key):
    return _public_jwk(signing_key, KEY_ID)


@pytest.fixture(scope="session")
def make_jwk():
    return _public_jwk


@pytest.fixture
def jwks_get(public_jwk):
    """Patches the JWKS download; tests can inspect or reprogram the mock."""
    with patch("jwks_cache.requests.get") as mock_get:
        mock_get.return_value = make_jwks_response(public_jwk)
        yield mock_get


@pytest.fixture
def make_token(signing_key):
    """
    Returns a factory for GitHub-shaped OIDC tokens. Keyword arguments
    override claims; passing None removes the claim.
    """

    def _make_token(key=None, kid=KEY_ID, **overrides):
        now = int(time.time())
        claims = {
            "iss": GITHUB_OIDC_ISSUER,
            "aud": "https://github.com/noraneko",
            "sub": f"repo:{ALLOWED_REPOSITORY}:ref:refs/heads/main",
            "repository": ALLOWED_REPOSITORY,
            "repository_owner": "noraneko",
            "ref": "refs/heads/main",
            "ref_type": "branch",
            "actor": "octocat",
            "run_id": "9876543210",
            "run_number": "42",
            "iat": now,
            "nbf": now - 5,
            "exp": now + 300,
        }
        for name, value in overrides.items():
            if value is None:
                claims.pop(name, None)
            else:
                claims[name] = value
        headers = {"kid": kid} if kid else {}
        return jwt.encode(claims, key or signing_key, algorithm="RS256", headers=headers)

    return _make_token


@pytest.fixture
def app(tmp_path, jwks_get):
    return create_app({
        "ALLOWED_REPOSITORY": ALLOWED_REPOSITORY,
        "ARTIFACT_ROOT": str(tmp_path / "store"),
        "TESTING": True,
    })


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(make_token):
    def _auth_headers(**overrides):
        return {"Authorization": f"Bearer {make_token(**overrides)}"}

    return _auth_headers

"""
tests/test_jwt_startup.py — Session Secret & Token Helpers
============================================================
``swguilds.api.deps`` validates ``JWT_SECRET`` when imported; the
validator is called directly here so the already-imported module (and
the dependency overrides other tests rely on) stays untouched.
"""

from __future__ import annotations

import os
from unittest.mock import patch

import jwt
import pytest

from swguilds.api import deps


class TestSecretValidation:
    def test_missing_secret(self):
        env = {k: v for k, v in os.environ.items() if k != "JWT_SECRET"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(RuntimeError, match="not set"):
                deps._load_jwt_secret()

    @pytest.mark.parametrize(
        ("value", "reason"),
        [
            ("", "not set"),
            ("swguilds-dev-secret-change-me", "weak default"),
            ("change-me", "weak default"),
            ("x" * 31, "too short"),
        ],
    )
    def test_refuses_bad_secrets(self, value, reason):
        with patch.dict(os.environ, {"JWT_SECRET": value}):
            with pytest.raises(RuntimeError, match=reason):
                deps._load_jwt_secret()

    def test_accepts_32_chars(self):
        with patch.dict(os.environ, {"JWT_SECRET": "k" * 32}):
            assert deps._load_jwt_secret() == "k" * 32


class TestTokens:
    def test_claims(self, member):
        token = deps.issue_token(member, 2)
        payload = jwt.decode(token, deps.JWT_SECRET, algorithms=[deps.JWT_ALGORITHM])
        assert payload["sub"] == member.id
        assert payload["identifier"] == "alice"
        assert payload["role"] == "user"

    def test_bearer_header_wins_over_cookie(self):
        assert deps._token_from_request("Bearer abc", "cookie-token") == "abc"
        assert deps._token_from_request("Basic abc", "cookie-token") == "cookie-token"
        assert deps._token_from_request("Bearer  ", None) is None
        assert deps._token_from_request(None, None) is None

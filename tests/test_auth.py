"""Access gate tests -- token derivation, constant-time checks, production startup rule."""

import hmac
import re
from unittest.mock import patch

import pytest

from ai_roundtable.api.middleware.auth import (
    check_production_auth,
    gate_enabled,
    generate_token,
    verify_password,
    verify_token,
)


class TestTokens:
    def test_token_is_hmac_hex(self, monkeypatch):
        monkeypatch.setenv("ROUNDTABLE_ACCESS_PASSWORD", "hunter2")
        token = generate_token()
        assert re.fullmatch(r"[0-9a-f]{64}", token)
        assert token == generate_token("hunter2")
        assert token != generate_token("hunter3")
        assert "hunter2" not in token

    def test_verify_token(self, monkeypatch):
        monkeypatch.setenv("ROUNDTABLE_ACCESS_PASSWORD", "hunter2")
        assert verify_token(generate_token())
        assert not verify_token(generate_token("other"))
        assert not verify_token("")
        assert not verify_token(None)

    def test_token_invalid_after_password_change(self, monkeypatch):
        monkeypatch.setenv("ROUNDTABLE_ACCESS_PASSWORD", "old")
        token = generate_token()
        monkeypatch.setenv("ROUNDTABLE_ACCESS_PASSWORD", "new")
        assert not verify_token(token)


class TestPasswords:
    def test_correct_and_wrong(self, monkeypatch):
        monkeypatch.setenv("ROUNDTABLE_ACCESS_PASSWORD", "hunter2")
        assert verify_password("hunter2")
        assert not verify_password("hunter3")
        assert not verify_password("")

    def test_unset_password_never_verifies(self):
        assert not verify_password("")
        assert not verify_password("anything")
        assert not verify_token(generate_token(""))

    def test_comparison_is_constant_time(self, monkeypatch):
        monkeypatch.setenv("ROUNDTABLE_ACCESS_PASSWORD", "hunter2")
        with patch("ai_roundtable.api.middleware.auth.hmac.compare_digest", wraps=hmac.compare_digest) as spy:
            verify_password("hunter2")
            verify_token(generate_token())
        assert spy.call_count == 2


class TestStartup:
    def test_production_requires_password(self, monkeypatch):
        monkeypatch.setenv("ENV", "production")
        with pytest.raises(RuntimeError, match="ROUNDTABLE_ACCESS_PASSWORD"):
            check_production_auth()

    def test_production_with_explicit_opt_out(self, monkeypatch):
        monkeypatch.setenv("ENV", "production")
        monkeypatch.setenv("AUTH_DISABLED", "true")
        check_production_auth()
        assert not gate_enabled()

    def test_production_with_password(self, monkeypatch):
        monkeypatch.setenv("ENV", "production")
        monkeypatch.setenv("ROUNDTABLE_ACCESS_PASSWORD", "hunter2")
        check_production_auth()
        assert gate_enabled()

    def test_development_without_password_stays_closed(self):
        check_production_auth()
        assert gate_enabled()

    def test_only_explicit_opt_out_opens_the_gate(self, monkeypatch):
        monkeypatch.setenv("AUTH_DISABLED", "false")
        assert gate_enabled()
        monkeypatch.setenv("AUTH_DISABLED", "true")
        assert not gate_enabled()

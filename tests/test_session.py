"""Tests for ewbridge.session and ewbridge._crypto."""

from __future__ import annotations

import base64
import hashlib
import hmac

from ewbridge._crypto import make_nonce, make_seq, sign, sign_header
from ewbridge.session import Session, SessionStore


class TestSession:
    def test_not_expired(self):
        session = Session("at", "eu", expires_at=1000.0)
        assert session.is_expired(now=500.0) is False

    def test_expired(self):
        session = Session("at", "eu", expires_at=1000.0)
        assert session.is_expired(now=1000.0) is True

    def test_margin(self):
        session = Session("at", "eu", expires_at=1000.0)
        assert session.is_expired(now=950.0, margin=60) is True
        assert session.is_expired(now=930.0, margin=60) is False


class TestSessionStore:
    def test_empty(self):
        store = SessionStore()
        assert store.current is None
        assert store.authenticated is False

    def test_replace_swaps_whole_record(self):
        first = Session("a", "eu", 1.0, refresh_token="r")
        second = Session("b", "us", 2.0)
        store = SessionStore(first)
        store.replace(second)
        assert store.current is second
        assert first.access_token == "a"

    def test_clear(self):
        store = SessionStore(Session("a", "eu", 1.0))
        store.clear()
        assert store.current is None


class TestSigning:
    def test_sign_matches_hmac_sha256(self):
        body = b'{"email":"a@b.com","password":"x"}'
        expected = base64.b64encode(hmac.new(b"secret", body, hashlib.sha256).digest()).decode()
        assert sign("secret", body) == expected

    def test_sign_accepts_str(self):
        assert sign("secret", "app_123") == sign("secret", b"app_123")

    def test_sign_header(self):
        assert sign_header("secret", b"{}") == "Sign " + sign("secret", b"{}")

    def test_nonce(self):
        nonce = make_nonce()
        assert len(nonce) == 8
        assert nonce.isalnum()

    def test_seq_is_milliseconds(self):
        assert len(make_seq()) == 13

"""Tests for the cookie-backed identity store."""
import pytest
from starlette.requests import Request
from starlette.responses import Response
from json_collector.identity import IdentityStore


def make_request(cookie: str | None = None) -> Request:
    headers = [(b"cookie", cookie.encode())] if cookie else []
    return Request({"type": "http", "method": "POST", "path": "/", "query_string": b"", "headers": headers})


class TestGeneration:
    """Identifier generation"""

    def test_default_length(self):
        identity = IdentityStore().generate()
        # 16 bytes base64url without padding
        assert len(identity) == 22
        assert "=" not in identity

    def test_custom_length(self):
        assert len(IdentityStore(byte_length=32).generate()) == 43

    def test_unique(self):
        store = IdentityStore()
        assert len({store.generate() for _ in range(100)}) == 100

    def test_invalid_length(self):
        with pytest.raises(ValueError):
            IdentityStore(byte_length=0)


class TestReadWrite:
    """Cookie persistence"""

    def test_read_missing(self):
        assert IdentityStore().read(make_request()) is None

    def test_read_existing(self):
        assert IdentityStore().read(make_request("acid=abc_DEF-123")) == "abc_DEF-123"

    def test_read_rejects_malformed(self):
        assert IdentityStore().read(make_request('acid="a b"')) is None

    def test_resolve_generates_when_absent(self):
        store = IdentityStore()
        identity = store.resolve(make_request())
        assert identity
        assert store.resolve(make_request(f"acid={identity}")) == identity

    def test_write_sets_sliding_cookie(self):
        store = IdentityStore(cookie_name="cid", max_age=60, secure=True)
        response = Response()

        store.write(response, "abc")

        cookies = response.headers.getlist("set-cookie")
        assert len(cookies) == 1
        cookie = cookies[0].lower()
        assert cookie.startswith("cid=abc;")
        assert "max-age=60" in cookie
        assert "expires=" in cookie
        assert "httponly" in cookie
        assert "secure" in cookie
        assert "path=/" in cookie


class TestSigning:
    """HMAC signed cookies"""

    def test_sign_requires_secret(self):
        with pytest.raises(ValueError):
            IdentityStore().sign("abc")

    def test_signature_cookie_written(self):
        store = IdentityStore(secret="key")
        response = Response()

        store.write(response, "abc")

        cookies = response.headers.getlist("set-cookie")
        assert len(cookies) == 2
        assert cookies[1].startswith(f"acid.sig={store.sign('abc')};")

    def test_valid_signature_accepted(self):
        store = IdentityStore(secret="key")
        cookie = f"acid=abc; acid.sig={store.sign('abc')}"
        assert store.read(make_request(cookie)) == "abc"

    def test_missing_or_wrong_signature_rejected(self):
        store = IdentityStore(secret="key")
        other = IdentityStore(secret="other")
        assert store.read(make_request("acid=abc")) is None
        assert store.read(make_request(f"acid=abc; acid.sig={other.sign('abc')}")) is None

    def test_signature_bound_to_cookie_name(self):
        assert IdentityStore(secret="key").sign("abc") != IdentityStore(secret="key", cookie_name="x").sign("abc")

"""Unit tests for auth/cookies.py -- Set-Cookie attributes for the token pair."""

from starlette.requests import Request
from starlette.responses import Response

from auth.cookies import CookiePolicy, clear_auth_cookies, read_access_token, read_refresh_token, set_auth_cookies

POLICY = CookiePolicy(
    secure=True,
    samesite="lax",
    domain="example.com",
    access_max_age=900,
    refresh_max_age=30 * 24 * 60 * 60,
)


def _set_cookie_headers(resp: Response) -> dict[str, str]:
    """Map cookie name -> lowercased Set-Cookie header."""
    headers = resp.headers.getlist("set-cookie")
    return {h.split("=", 1)[0]: h.lower() for h in headers}


def _request(headers: list[tuple[bytes, bytes]]) -> Request:
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


def test_set_auth_cookies_attributes():
    resp = Response()
    set_auth_cookies(resp, POLICY, "acc", "ref")
    cookies = _set_cookie_headers(resp)

    assert set(cookies) == {"access_token", "refresh_token"}
    assert cookies["access_token"].startswith("access_token=acc;")
    assert cookies["refresh_token"].startswith("refresh_token=ref;")
    assert "max-age=900" in cookies["access_token"]
    assert "max-age=2592000" in cookies["refresh_token"]
    for header in cookies.values():
        assert "path=/" in header
        assert "domain=example.com" in header
        assert "secure" in header
        assert "httponly" in header
        assert "samesite=lax" in header


def test_insecure_policy_omits_secure_and_domain():
    resp = Response()
    set_auth_cookies(resp, CookiePolicy(secure=False), "acc", "ref")
    for header in _set_cookie_headers(resp).values():
        assert "; secure" not in header
        assert "domain=" not in header
        assert "samesite=strict" in header


def test_clear_auth_cookies_matches_set_attributes():
    resp = Response()
    clear_auth_cookies(resp, POLICY)
    cookies = _set_cookie_headers(resp)

    assert set(cookies) == {"access_token", "refresh_token"}
    for header in cookies.values():
        assert "max-age=0" in header
        assert "path=/" in header
        assert "domain=example.com" in header
        assert "secure" in header
        assert "samesite=lax" in header


def test_read_access_token_prefers_cookie_over_bearer():
    req = _request([(b"cookie", b"access_token=from-cookie"), (b"authorization", b"Bearer from-header")])
    assert read_access_token(req) == "from-cookie"


def test_read_access_token_bearer_fallback():
    assert read_access_token(_request([(b"authorization", b"Bearer from-header")])) == "from-header"
    assert read_access_token(_request([(b"authorization", b"Basic abc")])) is None


def test_refresh_token_only_from_cookie():
    assert read_refresh_token(_request([(b"authorization", b"Bearer from-header")])) is None
    assert read_refresh_token(_request([(b"cookie", b"refresh_token=r1")])) == "r1"

"""Unit tests for request line and header parsing."""

import pytest

from request import HTTPRequest, HTTPRequestParseError


def test_parse_strips_query_from_path() -> None:
    head = (
        b"GET /arbitrary/deep/path?x=1&x=2 HTTP/1.1\r\n"
        b"Host: localhost\r\n"
        b"User-Agent: pytest"
    )

    request = HTTPRequest.parse(head)

    assert request.method == "GET"
    assert request.path == "/arbitrary/deep/path"
    assert request.http_version == "HTTP/1.1"
    assert request.headers == {"host": "localhost", "user-agent": "pytest"}
    assert request.body == b""
    assert request.keep_alive is True


def test_parse_keeps_framed_body() -> None:
    request = HTTPRequest.parse(
        b"POST / HTTP/1.1\r\nHost: localhost\r\nContent-Length: 9",
        b"name=test",
    )

    assert request.method == "POST"
    assert request.body == b"name=test"


def test_query_only_target_maps_to_root() -> None:
    request = HTTPRequest.parse(b"GET ?x=1 HTTP/1.1\r\nHost: x")

    assert request.path == "/"


def test_unregistered_method_token_is_accepted() -> None:
    request = HTTPRequest.parse(b"PURGE /cache HTTP/1.1\r\nHost: x")

    assert request.method == "PURGE"


def test_http10_keep_alive_requires_header() -> None:
    plain = HTTPRequest.parse(b"GET / HTTP/1.0")
    persistent = HTTPRequest.parse(b"GET / HTTP/1.0\r\nConnection: keep-alive")

    assert plain.keep_alive is False
    assert persistent.keep_alive is True


def test_connection_close_disables_keep_alive() -> None:
    request = HTTPRequest.parse(b"GET / HTTP/1.1\r\nHost: x\r\nConnection: close")

    assert request.keep_alive is False


@pytest.mark.parametrize(
    ("head", "status_code"),
    [
        (b"GET / HTTP/1.1", 400),
        (b"GET /\r\nHost: x", 400),
        (b"NOT A VALID REQUEST LINE", 400),
        (b"G(T / HTTP/1.1\r\nHost: x", 400),
        (b"GET / HTTP/2.0\r\nHost: x", 505),
        (b"GET / HTTP/1.1\r\nHost x", 400),
        (b"GET / HTTP/1.1\r\n: empty-name", 400),
    ],
)
def test_invalid_heads_raise_with_status(head: bytes, status_code: int) -> None:
    with pytest.raises(HTTPRequestParseError) as exc_info:
        HTTPRequest.parse(head)

    assert exc_info.value.status_code == status_code

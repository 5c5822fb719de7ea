"""Request line and header parsing for framed requests."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

ALLOWED_HTTP_VERSIONS = {"HTTP/1.1", "HTTP/1.0"}
METHOD_TOKEN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class HTTPRequestParseError(ValueError):
    """Request parse error carrying an HTTP status code."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class HTTPRequest:
    method: str
    path: str
    http_version: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    keep_alive: bool = False

    @classmethod
    def parse(cls, head: bytes, body: bytes = b"") -> "HTTPRequest":
        """Build a request from a framed header block and its decoded body.

        Body framing (Content-Length, chunked) is already settled by
        ``socket_handler``; only the request line and headers are checked.
        """
        request_line, *header_lines = head.decode("iso-8859-1").split("\r\n")
        try:
            method, target, http_version = request_line.split(" ")
        except ValueError as exc:
            raise HTTPRequestParseError("Invalid request line") from exc

        if not METHOD_TOKEN.match(method):
            raise HTTPRequestParseError("Invalid method token")
        if not target:
            raise HTTPRequestParseError("Empty request target")
        if http_version not in ALLOWED_HTTP_VERSIONS:
            raise HTTPRequestParseError("Unsupported HTTP version", status_code=505)

        headers = _parse_headers(header_lines)
        if http_version == "HTTP/1.1" and "host" not in headers:
            raise HTTPRequestParseError("Host header required for HTTP/1.1")

        return cls(
            method=method,
            path=target.split("?", 1)[0] or "/",
            http_version=http_version,
            headers=headers,
            body=body,
            keep_alive=_is_keep_alive(http_version, headers.get("connection", "")),
        )


def _parse_headers(lines: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in lines:
        if not line:
            continue
        name, sep, value = line.partition(":")
        name = name.strip().lower()
        if not sep or not name:
            raise HTTPRequestParseError("Malformed header line")
        headers[name] = value.strip()
    return headers


def _is_keep_alive(http_version: str, connection_header: str) -> bool:
    token = connection_header.lower()
    if http_version == "HTTP/1.1":
        return "close" not in token
    return "keep-alive" in token

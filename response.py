"""HTTP response model and serializer."""

from __future__ import annotations

from dataclasses import dataclass, field
from email.utils import formatdate

from config import SERVER_NAME

REASON_PHRASES: dict[int, str] = {
    200: "OK",
    400: "Bad Request",
    404: "Not Found",
    413: "Payload Too Large",
    431: "Request Header Fields Too Large",
    500: "Internal Server Error",
    505: "HTTP Version Not Supported",
}


@dataclass(slots=True)
class HTTPResponse:
    status_code: int
    reason_phrase: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | str = b""
    content_length_override: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")

    @property
    def reason(self) -> str:
        return self.reason_phrase or REASON_PHRASES.get(self.status_code, "Unknown")

    def to_bytes(self) -> bytes:
        """Serialize the response into HTTP/1.1 wire format bytes."""
        return prepare_response(self) + self.body

    def without_body(self) -> "HTTPResponse":
        """Copy for HEAD: same headers and length, empty body."""
        return HTTPResponse(
            status_code=self.status_code,
            reason_phrase=self.reason_phrase,
            headers=dict(self.headers),
            body=b"",
            content_length_override=(
                self.content_length_override
                if self.content_length_override is not None
                else int(self.headers.get("Content-Length", len(self.body)))
            ),
        )


def error_response(status_code: int, *, close: bool = True) -> HTTPResponse:
    """Plain-text error reply used by the stack for protocol failures."""
    reason = REASON_PHRASES.get(status_code, "Unknown")
    headers = {"Content-Type": "text/plain; charset=utf-8"}
    if close:
        headers["Connection"] = "close"
    return HTTPResponse(
        status_code=status_code,
        headers=headers,
        body=f"{status_code} {reason}",
    )


def prepare_response(response: HTTPResponse) -> bytes:
    """Build the status line and header block, injecting Date and Server."""
    headers = dict(response.headers)
    headers.setdefault("Date", formatdate(timeval=None, localtime=False, usegmt=True))
    headers.setdefault("Server", SERVER_NAME)
    headers.setdefault("Content-Type", "text/plain; charset=utf-8")

    if response.content_length_override is not None:
        headers["Content-Length"] = str(response.content_length_override)
    else:
        headers.setdefault("Content-Length", str(len(response.body)))

    header_lines = [f"HTTP/1.1 {response.status_code} {response.reason}"]
    header_lines.extend(f"{key}: {value}" for key, value in headers.items())
    return "\r\n".join(header_lines).encode("iso-8859-1") + b"\r\n\r\n"

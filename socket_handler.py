"""Request framing over a connection's receive buffer."""

from __future__ import annotations

from dataclasses import dataclass

from config import MAX_BODY_BYTES, MAX_HEADER_BYTES


class HTTPReadError(Exception):
    """Raised when a client request cannot be safely framed."""

    status_code = 400


class MalformedRequestError(HTTPReadError):
    """Raised when buffered bytes do not form a valid HTTP request."""


class HeaderTooLargeError(HTTPReadError):
    """Raised when the request line and headers exceed the header budget."""

    status_code = 431


class PayloadTooLargeError(HTTPReadError):
    """Raised when a request body exceeds MAX_BODY_BYTES."""

    status_code = 413


@dataclass(slots=True)
class RequestHeadInfo:
    header_end_index: int
    expected_body_length: int
    uses_chunked_transfer: bool
    expect_continue: bool

    @property
    def body_start(self) -> int:
        return self.header_end_index + 4


@dataclass(slots=True)
class FramedRequest:
    head: bytes
    body: bytes
    wire_length: int


def _scan_framing_headers(header_bytes: bytes) -> tuple[int | None, bool, bool]:
    content_length: int | None = None
    chunked = False
    expect_continue = False
    for line in header_bytes.decode("iso-8859-1").split("\r\n")[1:]:
        if not line:
            continue
        if ":" not in line:
            raise MalformedRequestError("Malformed header while reading request")
        name, value = line.split(":", 1)
        name = name.strip().lower()
        if name == "content-length":
            try:
                parsed_length = int(value.strip())
            except ValueError as exc:
                raise MalformedRequestError("Invalid Content-Length header") from exc
            if parsed_length < 0:
                raise MalformedRequestError("Negative Content-Length header")
            if content_length is not None and content_length != parsed_length:
                raise MalformedRequestError("Conflicting Content-Length headers")
            content_length = parsed_length
        elif name == "transfer-encoding":
            chunked = "chunked" in value.lower()
        elif name == "expect":
            expect_continue = value.strip().lower() == "100-continue"
    return content_length, chunked, expect_continue


def _decode_chunked(encoded_body: bytes) -> tuple[bytes, int] | None:
    """Return ``(decoded, consumed)`` once the terminating chunk has arrived."""
    position = 0
    decoded = bytearray()
    while True:
        line_end = encoded_body.find(b"\r\n", position)
        if line_end == -1:
            return None
        size_token = encoded_body[position:line_end].split(b";", 1)[0].strip()
        if not size_token:
            raise MalformedRequestError("Missing chunk size")
        try:
            chunk_size = int(size_token, 16)
        except ValueError as exc:
            raise MalformedRequestError("Malformed chunk size") from exc
        # Checked before waiting so a huge declared chunk cannot grow the buffer.
        if len(decoded) + chunk_size > MAX_BODY_BYTES:
            raise PayloadTooLargeError("Chunked body exceeded MAX_BODY_BYTES")
        position = line_end + 2

        if chunk_size == 0:
            while True:
                trailer_end = encoded_body.find(b"\r\n", position)
                if trailer_end == -1:
                    return None
                if trailer_end == position:
                    return bytes(decoded), trailer_end + 2
                if b":" not in encoded_body[position:trailer_end]:
                    raise MalformedRequestError("Malformed chunked trailer")
                position = trailer_end + 2

        chunk_end = position + chunk_size
        if len(encoded_body) < chunk_end + 2:
            return None
        if encoded_body[chunk_end : chunk_end + 2] != b"\r\n":
            raise MalformedRequestError("Chunk missing CRLF terminator")
        decoded.extend(encoded_body[position:chunk_end])
        position = chunk_end + 2


def inspect_http_request_head(
    buffer: bytes,
    max_header_bytes: int = MAX_HEADER_BYTES,
) -> RequestHeadInfo | None:
    """Inspect request headers from an in-memory buffer, if complete."""
    header_end_index = buffer.find(b"\r\n\r\n")
    if header_end_index == -1:
        if len(buffer) > max_header_bytes:
            raise HeaderTooLargeError("Headers exceeded max_header_bytes")
        return None

    if header_end_index + 4 > max_header_bytes:
        raise HeaderTooLargeError("Headers exceeded max_header_bytes")

    content_length, uses_chunked_transfer, expect_continue = _scan_framing_headers(
        buffer[:header_end_index]
    )
    if uses_chunked_transfer and content_length is not None:
        raise MalformedRequestError("Content-Length cannot be combined with chunked transfer")

    expected_body_length = 0
    if not uses_chunked_transfer and content_length is not None:
        if content_length > MAX_BODY_BYTES:
            raise PayloadTooLargeError("Body exceeded MAX_BODY_BYTES")
        expected_body_length = content_length

    return RequestHeadInfo(
        header_end_index=header_end_index,
        expected_body_length=expected_body_length,
        uses_chunked_transfer=uses_chunked_transfer,
        expect_continue=expect_continue,
    )


def strip_leading_blank_lines(buffer: bytes) -> bytes:
    # Stray CRLFs between pipelined requests are tolerated.
    return buffer.lstrip(b"\r\n")


def extract_http_request_message(
    buffer: bytes,
    max_header_bytes: int = MAX_HEADER_BYTES,
) -> tuple[FramedRequest, bytes] | None:
    """Extract one complete HTTP request from a bytes buffer.

    Returns the framed request (head, decoded body, bytes consumed) and the
    leftover bytes, so pipelined requests stay queued in the connection
    buffer. Returns ``None`` while more bytes are needed.
    """
    stripped = strip_leading_blank_lines(buffer)
    head_info = inspect_http_request_head(stripped, max_header_bytes)
    if head_info is None:
        return None

    body_start = head_info.body_start
    if head_info.uses_chunked_transfer:
        decoded = _decode_chunked(stripped[body_start:])
        if decoded is None:
            return None
        body, consumed = decoded
        request_length = body_start + consumed
    else:
        request_length = body_start + head_info.expected_body_length
        if len(stripped) < request_length:
            return None
        body = stripped[body_start:request_length]

    framed = FramedRequest(
        head=stripped[: head_info.header_end_index],
        body=body,
        wire_length=len(buffer) - len(stripped) + request_length,
    )
    return framed, stripped[request_length:]


def awaiting_continue(
    buffer: bytes,
    max_header_bytes: int = MAX_HEADER_BYTES,
) -> RequestHeadInfo | None:
    """Head info for an incomplete buffered request that asked for ``100 Continue``."""
    head_info = inspect_http_request_head(strip_leading_blank_lines(buffer), max_header_bytes)
    if head_info is None or not head_info.expect_continue:
        return None
    if not head_info.uses_chunked_transfer and head_info.expected_body_length == 0:
        return None
    return head_info

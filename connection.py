"""Per-connection request handling for the worker event loops."""

from __future__ import annotations

import json
import logging
import socket
import time
from collections import deque
from dataclasses import dataclass, field

from config import LOG_FORMAT, MAX_HEADER_BYTES, READ_CHUNK_SIZE
from request import HTTPRequest, HTTPRequestParseError
from response import HTTPResponse, error_response
from router import Router
from socket_handler import HTTPReadError, awaiting_continue, extract_http_request_message

logger = logging.getLogger(__name__)

ClientAddress = tuple[str, int]

CONTINUE_LINE = b"HTTP/1.1 100 Continue\r\n\r\n"


@dataclass(slots=True)
class ConnectionState:
    sock: socket.socket
    address: ClientAddress
    connection_id: int
    recv_buffer: bytearray = field(default_factory=bytearray)
    pending_writes: deque[memoryview] = field(default_factory=deque)
    requests_served: int = 0
    # Flush pending writes, then close.
    closing: bool = False
    # Socket error; close without flushing.
    broken: bool = False
    continue_sent: bool = False

    @property
    def should_close_now(self) -> bool:
        return self.broken or (self.closing and not self.pending_writes)


class ConnectionHandler:
    """Frames requests, dispatches them and queues serialized responses.

    Shared by every worker loop; it holds no per-connection state of its
    own, so it is safe to call from several loop threads at once.
    """

    def __init__(
        self,
        router: Router,
        *,
        max_header_bytes: int = MAX_HEADER_BYTES,
        log_format: str = LOG_FORMAT,
    ) -> None:
        self.router = router
        self.max_header_bytes = max_header_bytes
        self.log_format = log_format

    def on_readable(self, state: ConnectionState) -> None:
        try:
            chunk = state.sock.recv(READ_CHUNK_SIZE)
        except BlockingIOError:
            return
        except OSError as exc:
            logger.debug("read failed connection_id=%s error=%s", state.connection_id, exc)
            state.broken = True
            return

        if not chunk:
            state.closing = True
            return

        state.recv_buffer.extend(chunk)
        self._process_buffer(state)

    def on_writable(self, state: ConnectionState) -> None:
        while state.pending_writes:
            view = state.pending_writes[0]
            try:
                sent = state.sock.send(view)
            except BlockingIOError:
                return
            except OSError as exc:
                logger.debug("write failed connection_id=%s error=%s", state.connection_id, exc)
                state.broken = True
                return

            if sent < len(view):
                state.pending_writes[0] = view[sent:]
                return
            state.pending_writes.popleft()

    def dispatch(self, request: HTTPRequest) -> HTTPResponse:
        handler = self.router.resolve(request.path)
        if handler is None:
            return error_response(404, close=False)

        try:
            response = handler(request)
        except Exception:
            logger.exception("Unhandled error in route handler")
            return error_response(500)

        if request.method == "HEAD":
            return response.without_body()
        return response

    def _process_buffer(self, state: ConnectionState) -> None:
        while not state.closing:
            started_at = time.perf_counter()
            try:
                extracted = extract_http_request_message(
                    bytes(state.recv_buffer),
                    self.max_header_bytes,
                )
            except HTTPReadError as exc:
                self._queue_error(state, exc.status_code, exc, started_at)
                return

            if extracted is None:
                self._maybe_send_continue(state)
                return

            framed, leftover = extracted
            state.recv_buffer = bytearray(leftover)
            state.continue_sent = False

            try:
                request = HTTPRequest.parse(framed.head, framed.body)
            except HTTPRequestParseError as exc:
                self._queue_error(state, exc.status_code, exc, started_at)
                return

            state.requests_served += 1
            response = self.dispatch(request)
            if not request.keep_alive:
                response.headers.setdefault("Connection", "close")
            elif request.http_version == "HTTP/1.0":
                response.headers.setdefault("Connection", "keep-alive")
            if response.headers.get("Connection") == "close":
                state.closing = True

            payload = response.to_bytes()
            state.pending_writes.append(memoryview(payload))
            self._log_access(
                state,
                method=request.method,
                path=request.path,
                status=response.status_code,
                bytes_in=framed.wire_length,
                bytes_out=len(payload),
                started_at=started_at,
            )

    def _maybe_send_continue(self, state: ConnectionState) -> None:
        if state.continue_sent:
            return
        head_info = awaiting_continue(bytes(state.recv_buffer), self.max_header_bytes)
        if head_info is None:
            return
        state.pending_writes.append(memoryview(CONTINUE_LINE))
        state.continue_sent = True

    def _queue_error(
        self,
        state: ConnectionState,
        status_code: int,
        exc: Exception,
        started_at: float,
    ) -> None:
        logger.debug(
            "rejecting request connection_id=%s status=%s reason=%s",
            state.connection_id,
            status_code,
            exc,
        )
        payload = error_response(status_code).to_bytes()
        state.pending_writes.append(memoryview(payload))
        state.recv_buffer.clear()
        state.closing = True
        self._log_access(
            state,
            method="-",
            path="-",
            status=status_code,
            bytes_in=0,
            bytes_out=len(payload),
            started_at=started_at,
        )

    def _log_access(
        self,
        state: ConnectionState,
        *,
        method: str,
        path: str,
        status: int,
        bytes_in: int,
        bytes_out: int,
        started_at: float,
    ) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return

        duration_ms = (time.perf_counter() - started_at) * 1000
        event = {
            "client": state.address[0],
            "method": method,
            "path": path,
            "status": status,
            "connection_id": state.connection_id,
            "request_id": state.requests_served,
            "bytes_in": bytes_in,
            "bytes_out": bytes_out,
            "latency_ms": round(duration_ms, 3),
        }
        if self.log_format == "json":
            logger.debug(json.dumps(event, sort_keys=True))
            return

        logger.debug(
            (
                "client=%s method=%s path=%s status=%s connection_id=%s "
                "request_id=%s bytes_in=%s bytes_out=%s duration_ms=%.2f"
            ),
            event["client"],
            event["method"],
            event["path"],
            event["status"],
            event["connection_id"],
            event["request_id"],
            event["bytes_in"],
            event["bytes_out"],
            duration_ms,
        )

"""Async load generator for benchmarking the hello-bench server."""

from __future__ import annotations

import argparse
import asyncio
import json
import time
from collections import Counter
from dataclasses import dataclass, field

from config import DATA

RESPONSE_HEAD_END = b"\r\n\r\n"
TRANSPORT_ERRORS = (
    OSError,
    ValueError,
    asyncio.TimeoutError,
    asyncio.IncompleteReadError,
    asyncio.LimitOverrunError,
)


@dataclass(slots=True)
class LoadResult:
    total_requests: int
    errors: int
    status_counts: dict[str, int]
    body_mismatches: int = 0
    latencies_ms: list[float] = field(default_factory=list)
    duration_secs: float = 0.0

    def summary(self) -> dict[str, float | int | dict[str, int]]:
        rps = self.total_requests / self.duration_secs if self.duration_secs > 0 else 0.0
        error_rate = self.errors / self.total_requests if self.total_requests > 0 else 0.0
        return {
            "requests": self.total_requests,
            "errors": self.errors,
            "error_rate": round(error_rate, 6),
            "body_mismatches": self.body_mismatches,
            "rps": round(rps, 2),
            "p50_ms": round(percentile(self.latencies_ms, 50), 2),
            "p95_ms": round(percentile(self.latencies_ms, 95), 2),
            "status_counts": self.status_counts,
        }


@dataclass(frozen=True, slots=True)
class RequestTemplate:
    host: str
    port: int
    path: str = "/"
    method: str = "GET"
    body_size: int = 0

    @property
    def expects_body(self) -> bool:
        return self.method != "HEAD"

    def encode(self, *, keepalive: bool) -> bytes:
        lines = [
            f"{self.method} {self.path} HTTP/1.1",
            f"Host: {self.host}:{self.port}",
            f"Connection: {'keep-alive' if keepalive else 'close'}",
        ]
        if self.body_size:
            lines.append(f"Content-Length: {self.body_size}")
        head = "\r\n".join(lines).encode("ascii") + RESPONSE_HEAD_END
        return head + b"x" * self.body_size


@dataclass(slots=True)
class Tally:
    """Running counters shared by every session on one event loop."""

    expected_body: bytes = DATA
    check_body: bool = True
    requests: int = 0
    errors: int = 0
    body_mismatches: int = 0
    statuses: Counter[str] = field(default_factory=Counter)
    latencies_ms: list[float] = field(default_factory=list)

    def failure(self, started: float) -> None:
        self.requests += 1
        self.errors += 1
        self.latencies_ms.append(_elapsed_ms(started))

    def success(self, started: float, status: int, body: bytes) -> None:
        self.requests += 1
        self.latencies_ms.append(_elapsed_ms(started))
        self.statuses[str(status)] += 1
        if self.check_body and body != self.expected_body:
            self.body_mismatches += 1

    def result(self, duration_secs: float) -> LoadResult:
        return LoadResult(
            total_requests=self.requests,
            errors=self.errors,
            status_counts=dict(self.statuses),
            body_mismatches=self.body_mismatches,
            latencies_ms=self.latencies_ms,
            duration_secs=duration_secs,
        )


def parse_response_head(head: bytes) -> tuple[int, int]:
    """Return ``(status, content_length)`` for a raw response head."""
    status_line, *header_lines = head.decode("iso-8859-1").rstrip("\r\n").split("\r\n")
    version, _, rest = status_line.partition(" ")
    if not version.startswith("HTTP/"):
        raise ValueError(f"Invalid status line: {status_line!r}")
    status = int(rest.split(" ", 1)[0])

    content_length = 0
    for line in header_lines:
        name, sep, value = line.partition(":")
        if not sep:
            raise ValueError(f"Malformed header line: {line!r}")
        if name.strip().lower() == "content-length":
            content_length = int(value.strip())
    return status, content_length


async def read_response(
    reader: asyncio.StreamReader,
    timeout: float,
    *,
    expect_body: bool = True,
) -> tuple[int, bytes]:
    head = await asyncio.wait_for(reader.readuntil(RESPONSE_HEAD_END), timeout=timeout)
    status, content_length = parse_response_head(head)
    if not expect_body or content_length == 0:
        return status, b""
    body = await asyncio.wait_for(reader.readexactly(content_length), timeout=timeout)
    return status, body


async def _close(writer: asyncio.StreamWriter | None) -> None:
    if writer is None:
        return
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        return


async def session(
    template: RequestTemplate,
    tally: Tally,
    *,
    stop_at: float,
    timeout_secs: float,
    keepalive: bool,
) -> None:
    """Issue requests until ``stop_at``, reusing the socket when ``keepalive``."""
    payload = template.encode(keepalive=keepalive)
    reader: asyncio.StreamReader | None = None
    writer: asyncio.StreamWriter | None = None
    try:
        while time.perf_counter() < stop_at:
            started = time.perf_counter()
            try:
                if writer is None:
                    reader, writer = await asyncio.wait_for(
                        asyncio.open_connection(template.host, template.port),
                        timeout=timeout_secs,
                    )
                writer.write(payload)
                await writer.drain()
                status, body = await read_response(
                    reader,
                    timeout=timeout_secs,
                    expect_body=template.expects_body,
                )
            except TRANSPORT_ERRORS:
                tally.failure(started)
                await _close(writer)
                reader = writer = None
                continue

            tally.success(started, status, body)
            if not keepalive:
                await _close(writer)
                reader = writer = None
    finally:
        await _close(writer)


async def run_load(
    host: str,
    port: int,
    path: str = "/",
    *,
    concurrency: int,
    duration_secs: float,
    timeout_secs: float,
    keepalive: bool = False,
    method: str = "GET",
    body_size: int = 0,
    expected_body: bytes = DATA,
) -> LoadResult:
    template = RequestTemplate(host=host, port=port, path=path, method=method, body_size=body_size)
    tally = Tally(expected_body=expected_body, check_body=template.expects_body)
    started = time.perf_counter()
    stop_at = started + duration_secs

    await asyncio.gather(
        *(
            session(
                template,
                tally,
                stop_at=stop_at,
                timeout_secs=timeout_secs,
                keepalive=keepalive,
            )
            for _ in range(concurrency)
        )
    )
    return tally.result(time.perf_counter() - started)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def percentile(values: list[float], pct: int) -> float:
    if not values:
        return 0.0
    if pct <= 0:
        return min(values)
    if pct >= 100:
        return max(values)

    ordered = sorted(values)
    rank = (len(ordered) - 1) * (pct / 100)
    lower = int(rank)
    upper = min(lower + 1, len(ordered) - 1)
    weight = rank - lower
    return ordered[lower] * (1 - weight) + ordered[upper] * weight


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark a hello-bench server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=1080)
    parser.add_argument("--path", default="/")
    parser.add_argument("--method", default="GET", type=str.upper)
    parser.add_argument("--body-size", type=int, default=0)
    parser.add_argument("--concurrency", type=int, default=100)
    parser.add_argument("--duration", type=float, default=10.0)
    parser.add_argument("--timeout", type=float, default=2.0)
    parser.add_argument("--keepalive", action="store_true")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    result = asyncio.run(
        run_load(
            host=args.host,
            port=args.port,
            path=args.path,
            concurrency=args.concurrency,
            duration_secs=args.duration,
            timeout_secs=args.timeout,
            keepalive=args.keepalive,
            method=args.method,
            body_size=args.body_size,
        )
    )
    print(json.dumps(result.summary(), indent=2, sort_keys=True))


if __name__ == "__main__":
    main()

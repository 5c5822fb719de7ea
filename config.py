"""Configuration constants for the hello-bench HTTP server."""

from __future__ import annotations

from dataclasses import dataclass

DATA: bytes = b"hello,world!\n"
DATA_LEN: str = str(len(DATA))

LISTEN_ADDRESS: str = ":1080"
HOST: str = "0.0.0.0"
PORT: int = 1080
MAX_HEADER_BYTES: int = 1 << 20
PARALLELISM: int = 2

MAX_BODY_BYTES: int = 16 * 1024 * 1024
LISTEN_BACKLOG: int = 1024
ACCEPT_POLL_SECS: float = 0.2
SELECT_TIMEOUT_SECS: float = 0.5
READ_CHUNK_SIZE: int = 65_536
SERVER_NAME: str = "hello-bench"
LOG_FORMAT: str = "plain"


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` or ``:port`` listen address."""
    host, sep, raw_port = address.rpartition(":")
    if not sep:
        raise ValueError(f"listen address must contain ':': {address!r}")
    host = host.strip("[]")
    try:
        port = int(raw_port)
    except ValueError as exc:
        raise ValueError(f"invalid port in listen address: {address!r}") from exc
    if not 0 <= port <= 65_535:
        raise ValueError(f"port out of range: {port}")
    return host or HOST, port


@dataclass(frozen=True, slots=True)
class ServerConfig:
    listen_address: str = LISTEN_ADDRESS
    max_header_bytes: int = MAX_HEADER_BYTES
    parallelism: int = PARALLELISM

    def __post_init__(self) -> None:
        parse_listen_address(self.listen_address)
        if self.max_header_bytes <= 0:
            raise ValueError("max_header_bytes must be positive")
        if self.parallelism <= 0:
            raise ValueError("parallelism must be positive")

    @property
    def host(self) -> str:
        return parse_listen_address(self.listen_address)[0]

    @property
    def port(self) -> int:
        return parse_listen_address(self.listen_address)[1]

"""Server bootstrap, listening socket and accept loop."""

from __future__ import annotations

import argparse
import enum
import errno
import logging
import socket
import sys
import threading
import time

from config import (
    ACCEPT_POLL_SECS,
    LISTEN_ADDRESS,
    LISTEN_BACKLOG,
    LOG_FORMAT,
    PARALLELISM,
    ServerConfig,
    parse_listen_address,
)
from connection import ConnectionHandler
from handlers.echo import echo
from router import Router
from worker_pool import WorkerPool

logger = logging.getLogger(__name__)

# Accept errors that clear up on their own; the loop keeps serving.
TRANSIENT_ACCEPT_ERRNOS = {
    errno.ECONNABORTED,
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
}


class ListenFailure(RuntimeError):
    """Raised when the listening socket cannot be bound or opened."""

    def __init__(self, host: str, port: int, cause: OSError) -> None:
        super().__init__(f"listen tcp {host}:{port}: {cause.strerror or cause}")
        self.host = host
        self.port = port
        self.cause = cause


class ServerState(enum.Enum):
    STARTING = "starting"
    SERVING = "serving"
    TERMINATED = "terminated"


class HTTPServer:
    def __init__(
        self,
        config: ServerConfig | None = None,
        router: Router | None = None,
        *,
        log_format: str = LOG_FORMAT,
    ) -> None:
        self.config = config or ServerConfig()
        self.host = self.config.host
        self.port = self.config.port
        self.router = router or self._build_default_router()
        self.log_format = log_format
        self.state = ServerState.STARTING

        self._server_socket: socket.socket | None = None
        self._pool: WorkerPool | None = None
        self._state_lock = threading.Lock()
        self._serving = threading.Event()

    @property
    def worker_count(self) -> int:
        return self.config.parallelism

    def _build_default_router(self) -> Router:
        router = Router()
        router.handle("/", echo)
        return router

    def wait_until_serving(self, timeout: float | None = None) -> bool:
        return self._serving.wait(timeout=timeout)

    def start(self) -> None:
        """Bind, start the worker loops and block in the accept loop."""
        with self._state_lock:
            if self.state is not ServerState.STARTING:
                raise RuntimeError(f"server cannot start from state {self.state.value}")
            server_socket = self._listen()
            self._server_socket = server_socket
            self._pool = WorkerPool(
                self.config.parallelism,
                ConnectionHandler(
                    self.router,
                    max_header_bytes=self.config.max_header_bytes,
                    log_format=self.log_format,
                ),
            )
            self._pool.start()
            self.state = ServerState.SERVING

        logger.info(
            "serving on %s:%s with %s worker loops",
            self.host,
            self.port,
            self.config.parallelism,
        )
        self._serving.set()
        try:
            self._accept_loop(server_socket)
        finally:
            self.stop()

    def stop(self) -> None:
        with self._state_lock:
            if self.state is ServerState.TERMINATED:
                return
            self.state = ServerState.TERMINATED
            server_socket, self._server_socket = self._server_socket, None
            pool, self._pool = self._pool, None

        if server_socket is not None:
            server_socket.close()
        if pool is not None:
            pool.shutdown()
        logger.info("server on %s:%s terminated", self.host, self.port)

    def _listen(self) -> socket.socket:
        server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_socket.bind((self.host, self.port))
            server_socket.listen(LISTEN_BACKLOG)
        except OSError as exc:
            server_socket.close()
            self.state = ServerState.TERMINATED
            raise ListenFailure(self.host, self.port, exc) from exc

        server_socket.settimeout(ACCEPT_POLL_SECS)
        self.port = server_socket.getsockname()[1]
        return server_socket

    def _accept_loop(self, server_socket: socket.socket) -> None:
        while self.state is ServerState.SERVING:
            try:
                client_socket, address = server_socket.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self.state is not ServerState.SERVING:
                    return
                if exc.errno in TRANSIENT_ACCEPT_ERRNOS:
                    logger.warning("accept failed, retrying: %s", exc)
                    time.sleep(ACCEPT_POLL_SECS)
                    continue
                raise

            pool = self._pool
            if pool is None or not pool.submit(client_socket, address):
                client_socket.close()


def _listen_address(value: str) -> str:
    parse_listen_address(value)
    return value


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the hello-bench HTTP server")
    parser.add_argument("--listen", type=_listen_address, default=LISTEN_ADDRESS)
    parser.add_argument("--parallelism", type=int, default=PARALLELISM)
    parser.add_argument("--log-format", choices=["plain", "json"], default=LOG_FORMAT)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
    )
    args = parser.parse_args(argv)
    if args.parallelism <= 0:
        parser.error("--parallelism must be positive")
    return args


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    server = HTTPServer(
        ServerConfig(listen_address=args.listen, parallelism=args.parallelism),
        log_format=args.log_format,
    )
    try:
        server.start()
    except ListenFailure as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        server.stop()


if __name__ == "__main__":
    main()

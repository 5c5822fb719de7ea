"""Tests for the selector worker loops."""

import socket
import time

import pytest

from connection import ConnectionHandler
from handlers.echo import echo
from router import Router
from worker_pool import WorkerPool


def _handler() -> ConnectionHandler:
    router = Router()
    router.handle("/", echo)
    return ConnectionHandler(router)


def test_pool_starts_fixed_worker_count() -> None:
    pool = WorkerPool(worker_count=2, handler=_handler())
    pool.start()

    try:
        assert pool.worker_count == 2
        assert len(pool.threads) == 2
        assert all(thread.is_alive() for thread in pool.threads)
        assert [thread.name for thread in pool.threads] == ["http-loop-0", "http-loop-1"]
    finally:
        pool.shutdown()

    assert not any(thread.is_alive() for thread in pool.threads)


def test_pool_rejects_non_positive_worker_count() -> None:
    with pytest.raises(ValueError, match="worker_count"):
        WorkerPool(worker_count=0, handler=_handler())


def test_submit_refused_before_start_and_after_shutdown() -> None:
    pool = WorkerPool(worker_count=1, handler=_handler())
    left, right = socket.socketpair()
    try:
        assert pool.submit(left, ("local", 0)) is False
        pool.start()
        pool.shutdown()
        assert pool.submit(left, ("local", 0)) is False
    finally:
        left.close()
        right.close()


def test_connections_are_distributed_round_robin() -> None:
    pool = WorkerPool(worker_count=2, handler=_handler())
    pool.start()
    pairs = [socket.socketpair() for _ in range(4)]
    try:
        for server_side, _client_side in pairs:
            assert pool.submit(server_side, ("local", 0))

        deadline = time.time() + 2
        while time.time() < deadline:
            if [worker.connection_count for worker in pool.workers] == [2, 2]:
                break
            time.sleep(0.01)

        assert [worker.connection_count for worker in pool.workers] == [2, 2]
    finally:
        pool.shutdown()
        for _server_side, client_side in pairs:
            client_side.close()


def test_worker_loop_serves_submitted_socket() -> None:
    pool = WorkerPool(worker_count=1, handler=_handler())
    pool.start()
    server_side, client_side = socket.socketpair()
    try:
        assert pool.submit(server_side, ("local", 0))
        client_side.settimeout(2)
        client_side.sendall(b"GET / HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")
        received = bytearray()
        while True:
            chunk = client_side.recv(4096)
            if not chunk:
                break
            received.extend(chunk)
    finally:
        pool.shutdown()
        client_side.close()

    assert received.startswith(b"HTTP/1.1 200 OK")
    assert received.endswith(b"\r\n\r\nhello,world!\n")


class FailOnceHandler(ConnectionHandler):
    def __init__(self, router: Router) -> None:
        super().__init__(router)
        self.failed = False

    def on_readable(self, state) -> None:
        if not self.failed:
            self.failed = True
            raise RuntimeError("unexpected failure")
        super().on_readable(state)


def test_loop_survives_error_on_one_connection(caplog) -> None:
    router = Router()
    router.handle("/", echo)
    pool = WorkerPool(worker_count=1, handler=FailOnceHandler(router))
    pool.start()
    first_server, first_client = socket.socketpair()
    second_server, second_client = socket.socketpair()
    try:
        assert pool.submit(first_server, ("local", 0))
        first_client.settimeout(2)
        first_client.sendall(b"GET / HTTP/1.1\r\nHost: x\r\n\r\n")
        assert first_client.recv(4096) == b""

        assert pool.submit(second_server, ("local", 0))
        second_client.settimeout(2)
        second_client.sendall(b"GET / HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")
        received = bytearray()
        while True:
            chunk = second_client.recv(4096)
            if not chunk:
                break
            received.extend(chunk)
    finally:
        pool.shutdown()
        first_client.close()
        second_client.close()

    assert received.endswith(b"\r\n\r\nhello,world!\n")
    assert "Unhandled error on connection_id=1" in caplog.text

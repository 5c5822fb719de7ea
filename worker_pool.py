"""Fixed set of selector event loops serving accepted client sockets."""

from __future__ import annotations

import itertools
import logging
import queue
import selectors
import socket
import threading

from config import SELECT_TIMEOUT_SECS
from connection import ClientAddress, ConnectionHandler, ConnectionState

logger = logging.getLogger(__name__)


class EventLoopWorker:
    """One thread multiplexing any number of connections with a selector."""

    def __init__(self, index: int, handler: ConnectionHandler) -> None:
        self.name = f"http-loop-{index}"
        self._handler = handler
        self._inbox: queue.SimpleQueue[tuple[socket.socket, ClientAddress, int]] = (
            queue.SimpleQueue()
        )
        self._stop_event = threading.Event()
        self._wake_reader, self._wake_writer = socket.socketpair()
        self._wake_reader.setblocking(False)
        self._wake_writer.setblocking(False)
        self._connections: dict[int, ConnectionState] = {}
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)

    @property
    def thread(self) -> threading.Thread:
        return self._thread

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def start(self) -> None:
        self._thread.start()

    def submit(self, client_socket: socket.socket, address: ClientAddress, connection_id: int) -> None:
        self._inbox.put((client_socket, address, connection_id))
        self._wake()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        self._wake()
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)
        elif self._thread.ident is None:
            self._wake_reader.close()
            self._wake_writer.close()

    def _wake(self) -> None:
        try:
            self._wake_writer.send(b"\0")
        except BlockingIOError:
            # Wake buffer full: the loop already has a pending wakeup.
            return
        except OSError:
            if not self._stop_event.is_set():
                raise

    def _run(self) -> None:
        with selectors.DefaultSelector() as selector:
            selector.register(self._wake_reader, selectors.EVENT_READ, data=None)
            try:
                while not self._stop_event.is_set():
                    for key, mask in selector.select(timeout=SELECT_TIMEOUT_SECS):
                        if key.data is None:
                            self._drain_wakeups()
                            self._adopt_connections(selector)
                            continue

                        self._service(key.data, mask, selector)
            finally:
                for state in list(self._connections.values()):
                    self._close(state, selector)
                self._drain_inbox()
                self._wake_reader.close()
                self._wake_writer.close()

    def _service(
        self,
        state: ConnectionState,
        mask: int,
        selector: selectors.BaseSelector,
    ) -> None:
        try:
            if mask & selectors.EVENT_READ:
                self._handler.on_readable(state)
            if state.pending_writes and not state.broken:
                self._handler.on_writable(state)
            self._update_interest(state, selector)
        except Exception:
            logger.exception(
                "Unhandled error on connection_id=%s, closing it",
                state.connection_id,
            )
            self._close(state, selector)

    def _drain_wakeups(self) -> None:
        while True:
            try:
                if not self._wake_reader.recv(4096):
                    return
            except BlockingIOError:
                return

    def _adopt_connections(self, selector: selectors.BaseSelector) -> None:
        while True:
            try:
                client_socket, address, connection_id = self._inbox.get_nowait()
            except queue.Empty:
                return
            try:
                client_socket.setblocking(False)
                if client_socket.family in (socket.AF_INET, socket.AF_INET6):
                    client_socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError as exc:
                logger.debug("dropping connection_id=%s: %s", connection_id, exc)
                client_socket.close()
                continue
            state = ConnectionState(
                sock=client_socket,
                address=address,
                connection_id=connection_id,
            )
            self._connections[client_socket.fileno()] = state
            selector.register(client_socket, selectors.EVENT_READ, data=state)
            logger.debug(
                "connection opened connection_id=%s client=%s loop=%s",
                connection_id,
                address[0],
                self.name,
            )

    def _drain_inbox(self) -> None:
        while True:
            try:
                client_socket, _address, _connection_id = self._inbox.get_nowait()
            except queue.Empty:
                return
            client_socket.close()

    def _update_interest(self, state: ConnectionState, selector: selectors.BaseSelector) -> None:
        if state.should_close_now:
            self._close(state, selector)
            return

        if state.closing:
            events = selectors.EVENT_WRITE
        elif state.pending_writes:
            events = selectors.EVENT_READ | selectors.EVENT_WRITE
        else:
            events = selectors.EVENT_READ

        if selector.get_key(state.sock).events != events:
            selector.modify(state.sock, events, data=state)

    def _close(self, state: ConnectionState, selector: selectors.BaseSelector) -> None:
        fileno = state.sock.fileno()
        if self._connections.pop(fileno, None) is None:
            return
        selector.unregister(state.sock)
        state.sock.close()
        logger.debug(
            "connection closed connection_id=%s requests=%s",
            state.connection_id,
            state.requests_served,
        )


class WorkerPool:
    """Round-robin distribution of accepted sockets over worker loops."""

    def __init__(self, worker_count: int, handler: ConnectionHandler) -> None:
        if worker_count <= 0:
            raise ValueError("worker_count must be positive")

        self._worker_count = worker_count
        self._workers = [EventLoopWorker(index, handler) for index in range(worker_count)]
        self._next_worker = itertools.cycle(self._workers)
        self._connection_ids = itertools.count(1)
        self._shutdown_lock = threading.Lock()
        self._started = False
        self._shutdown_started = False

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def threads(self) -> tuple[threading.Thread, ...]:
        return tuple(worker.thread for worker in self._workers)

    @property
    def workers(self) -> tuple[EventLoopWorker, ...]:
        return tuple(self._workers)

    def start(self) -> None:
        for worker in self._workers:
            worker.start()
        self._started = True

    def submit(self, client_socket: socket.socket, address: ClientAddress) -> bool:
        if self._shutdown_started or not self._started:
            return False
        next(self._next_worker).submit(client_socket, address, next(self._connection_ids))
        return True

    def shutdown(self, timeout: float = 2.0) -> None:
        with self._shutdown_lock:
            if self._shutdown_started:
                return
            self._shutdown_started = True

        for worker in self._workers:
            worker.stop(timeout=timeout)

"""Path-pattern routing table."""

from __future__ import annotations

from collections.abc import Callable

from request import HTTPRequest
from response import HTTPResponse

Handler = Callable[[HTTPRequest], HTTPResponse]


class Router:
    """Maps path patterns to handlers, independent of method.

    A pattern ending in ``/`` matches every path below it; any other
    pattern matches only itself. The longest matching pattern wins, so
    ``/`` acts as the catch-all.
    """

    def __init__(self) -> None:
        self._exact: dict[str, Handler] = {}
        self._subtrees: list[tuple[str, Handler]] = []

    def handle(self, pattern: str, handler: Handler) -> None:
        if not pattern.startswith("/"):
            raise ValueError("pattern must start with '/'")
        if pattern in self._exact or any(prefix == pattern for prefix, _ in self._subtrees):
            raise ValueError(f"pattern already registered: {pattern}")

        if pattern.endswith("/"):
            self._subtrees.append((pattern, handler))
            self._subtrees.sort(key=lambda entry: len(entry[0]), reverse=True)
        else:
            self._exact[pattern] = handler

    def resolve(self, path: str) -> Handler | None:
        handler = self._exact.get(path)
        if handler is not None:
            return handler
        for prefix, subtree_handler in self._subtrees:
            if path.startswith(prefix):
                return subtree_handler
        return None

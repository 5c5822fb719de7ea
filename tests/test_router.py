"""Unit tests for path-pattern routing."""

import pytest

from request import HTTPRequest
from response import HTTPResponse
from router import Router


def _handler_root(_request: HTTPRequest) -> HTTPResponse:
    return HTTPResponse(status_code=200, body="root")


def _handler_api(_request: HTTPRequest) -> HTTPResponse:
    return HTTPResponse(status_code=200, body="api")


def _handler_health(_request: HTTPRequest) -> HTTPResponse:
    return HTTPResponse(status_code=200, body="health")


def test_root_pattern_matches_every_path() -> None:
    router = Router()
    router.handle("/", _handler_root)

    assert router.resolve("/") is _handler_root
    assert router.resolve("/arbitrary/deep/path") is _handler_root
    assert router.resolve("/favicon.ico") is _handler_root


def test_longest_pattern_wins() -> None:
    router = Router()
    router.handle("/", _handler_root)
    router.handle("/api/", _handler_api)
    router.handle("/health", _handler_health)

    assert router.resolve("/api/users") is _handler_api
    assert router.resolve("/health") is _handler_health
    assert router.resolve("/health/deep") is _handler_root
    assert router.resolve("/apix") is _handler_root


def test_exact_pattern_without_catch_all_returns_none() -> None:
    router = Router()
    router.handle("/health", _handler_health)

    assert router.resolve("/missing") is None


def test_router_rejects_invalid_pattern() -> None:
    router = Router()

    with pytest.raises(ValueError, match="must start"):
        router.handle("missing-slash", _handler_root)


def test_router_rejects_duplicate_pattern() -> None:
    router = Router()
    router.handle("/", _handler_root)

    with pytest.raises(ValueError, match="already registered"):
        router.handle("/", _handler_api)

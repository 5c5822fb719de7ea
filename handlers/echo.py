"""Constant-payload responder registered for every path."""

from config import DATA, DATA_LEN
from request import HTTPRequest
from response import HTTPResponse


def echo(request: HTTPRequest) -> HTTPResponse:
    return HTTPResponse(
        status_code=200,
        headers={
            "Content-Type": "text/plain",
            "Content-Length": DATA_LEN,
        },
        body=DATA,
    )

from __future__ import annotations

import threading
from collections.abc import Callable

import httpx
import pytest

from sharedsession import ConnectionRegistry, SessionConfig


class RecordingHandler:
    '''
    MockTransport handler that remembers every request it sees and answers
    with a fixed response.
    '''

    def __init__(self, status: int = 200, body: bytes = b'ok') -> None:
        self.status = status
        self.body = body
        self.requests: list[httpx.Request] = []
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        return httpx.Response(
            self.status,
            content=self.body,
            headers={'X-Server': 'mock'},
        )

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def make_config(
    handler: Callable[[httpx.Request], httpx.Response],
    ca_bundle: str = '',
) -> SessionConfig:
    return SessionConfig(
        transport=httpx.MockTransport(handler),
        ca_bundle=lambda: ca_bundle,
    )


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def config(handler: RecordingHandler) -> SessionConfig:
    return make_config(handler)


@pytest.fixture
def registry(config: SessionConfig) -> ConnectionRegistry:
    return ConnectionRegistry(config=config)

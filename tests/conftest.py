from __future__ import annotations

import json
from typing import Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from bills_agent.core.config import Settings
from bills_agent.main import create_app
from bills_agent.services.completions import CompletionClient
from bills_agent.services.push import ExpoPushClient


class Recorder:
    """Collects outbound requests seen by a MockTransport."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: List[httpx.Request] = []
        self._responder = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    def json_bodies(self) -> list:
        return [json.loads(request.content) for request in self.requests]


def _unexpected(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected outbound call to {request.url}")


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "data" / "bills.json"


@pytest.fixture
def make_client(store_path):
    clients: List[TestClient] = []

    def factory(
        openai_api_key: Optional[str] = None,
        openai: Optional[Callable[[httpx.Request], httpx.Response]] = None,
        expo: Optional[Callable[[httpx.Request], httpx.Response]] = None,
        public_base_url: Optional[str] = None,
    ) -> TestClient:
        settings = Settings(
            store_path=str(store_path),
            openai_api_key=openai_api_key,
            public_base_url=public_base_url,
        )
        completions = CompletionClient(
            settings,
            backoff_seconds=0,
            transport=httpx.MockTransport(openai or _unexpected),
        )
        push = ExpoPushClient(settings, transport=httpx.MockTransport(expo or _unexpected))
        client = TestClient(create_app(settings, completion_client=completions, push_client=push))
        client.__enter__()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def recorder():
    return Recorder

from typing import Callable, List

import httpx
import pytest
from fastapi.testclient import TestClient

from ai_relay import upstream
from ai_relay.config import Settings
from ai_relay.main import create_app

SECRET = "app-secret"
AUTH = {"Authorization": f"Bearer {SECRET}"}


def make_settings(**overrides) -> Settings:
    values = {
        "openai_api_key": "sk-test",
        "openai_base_url": "https://openai.test/v1",
        "app_shared_secret": SECRET,
        "prompt_brain": "",
        "prompt_tech": "",
        "supabase_url": "https://project.supabase.test",
        "supabase_anon_key": "anon-key",
        "supabase_service_role_key": "service-key",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class UpstreamRecorder:
    """Collects outbound requests and answers them with a configurable handler."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(200, json={})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def upstream_mock(monkeypatch) -> UpstreamRecorder:
    recorder = UpstreamRecorder()

    def fake_create_client(settings):
        return httpx.AsyncClient(transport=httpx.MockTransport(recorder))

    monkeypatch.setattr(upstream, "create_client", fake_create_client)
    return recorder


@pytest.fixture
def client(settings, upstream_mock) -> TestClient:
    return TestClient(create_app(settings))


@pytest.fixture
def client_factory(upstream_mock):
    def build(**overrides) -> TestClient:
        return TestClient(create_app(make_settings(**overrides)), raise_server_exceptions=False)

    return build

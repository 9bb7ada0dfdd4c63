"""Pytest configuration and fixtures."""

import os
from typing import List, Optional

import pytest
from dotenv import load_dotenv

# Load test environment variables
load_dotenv()

# Minimal valid configuration for the application factory
os.environ.setdefault("HCM_BASE_URL", "https://hcm.example.com")
os.environ.setdefault("HCM_TOKEN_URL", "https://idcs.example.com/oauth2/v1/token")
os.environ.setdefault("HCM_CLIENT_ID", "test-client")
os.environ.setdefault("HCM_CLIENT_SECRET", "test-client-secret")

from hcm_gateway.infra.config import Config  # noqa: E402
from hcm_gateway.models.http import Credential  # noqa: E402
from hcm_gateway.models.tool import ParameterSpec, ToolDescriptor  # noqa: E402
from hcm_gateway.services.credential_provider import CredentialProvider  # noqa: E402

RESOURCES_URL = "https://hcm.example.com/hcmRestApi/resources/11.13.18.05"
TOKEN_URL = "https://idcs.example.com/oauth2/v1/token"


class SleepRecorder:
    """Stands in for asyncio.sleep and records every requested delay."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeCredentialProvider(CredentialProvider):
    """Hands out a new bearer token on every get_token() after an invalidate()."""

    def __init__(self, refreshable: bool = True, error: Optional[Exception] = None):
        self.refreshable = refreshable
        self.error = error
        self.calls = 0
        self.invalidated: List[Credential] = []
        self._generation = 1

    async def get_token(self) -> Credential:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return Credential(access_token=f"token-{self._generation}", token_type="Bearer")

    def invalidate(self, credential: Credential) -> None:
        self.invalidated.append(credential)
        self._generation += 1


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def credential_provider():
    return FakeCredentialProvider()


@pytest.fixture
def credential_provider_factory():
    return FakeCredentialProvider


@pytest.fixture
def config(monkeypatch):
    """Configuration read from a known environment."""
    for key in list(os.environ):
        if key.startswith("HCM_") or key in ("REST_FRAMEWORK_VERSION", "LOG_LEVEL", "PORT"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HCM_BASE_URL", "https://hcm.example.com")
    monkeypatch.setenv("HCM_TOKEN_URL", TOKEN_URL)
    monkeypatch.setenv("HCM_CLIENT_ID", "test-client")
    monkeypatch.setenv("HCM_CLIENT_SECRET", "test-client-secret")
    return Config()


@pytest.fixture
def worker_tool():
    """Pass-through tool mapping onto GET /workers/{workerId}."""
    return ToolDescriptor(
        name="getWorker",
        description="Get a worker by ID",
        http_method="GET",
        path_template="/workers/{workerId}",
        parameters={"workerId": ParameterSpec(type="string", required=True, description="Worker ID")},
    )

"""Test fixtures for member controller tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import respx
import structlog
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from safir.testing.kubernetes import MockKubernetesApi, patch_kubernetes
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook
from structlog.stdlib import BoundLogger

from membercontroller.config import Config
from membercontroller.factory import Factory
from membercontroller.main import create_app

from .support.config import configure
from .support.etcd import MockEtcd, register_mock_etcd


@pytest_asyncio.fixture
async def config() -> Config:
    """Load the standard test configuration."""
    return await configure("standard")


@pytest_asyncio.fixture
async def app(
    config: Config,
    mock_etcd: MockEtcd,
    mock_kubernetes: MockKubernetesApi,
    mock_slack: MockSlackWebhook,
) -> AsyncIterator[FastAPI]:
    """Run the application with its lifespan, against mocked services."""
    app = create_app()
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """HTTP client that sends requests straight to the test application."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="https://example.com/"
    ) as client:
        yield client


@pytest_asyncio.fixture
async def factory(
    config: Config,
    mock_etcd: MockEtcd,
    mock_kubernetes: MockKubernetesApi,
    mock_slack: MockSlackWebhook,
) -> AsyncIterator[Factory]:
    """Factory with its own clients, outside the web application."""
    async with Factory.standalone(config) as factory:
        yield factory


@pytest.fixture
def logger() -> BoundLogger:
    return structlog.get_logger("membercontroller")


@pytest.fixture
def mock_etcd(config: Config, respx_mock: respx.Router) -> MockEtcd:
    return register_mock_etcd(respx_mock, config.etcd.endpoints[0])


@pytest.fixture
def mock_kubernetes() -> Iterator[MockKubernetesApi]:
    yield from patch_kubernetes()


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> Iterator[MockSlackWebhook]:
    config.slack_webhook = SecretStr("https://slack.example.com/webhook")
    yield mock_slack_webhook(config.slack_webhook, respx_mock)
    config.slack_webhook = None

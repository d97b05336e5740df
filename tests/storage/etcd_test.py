"""Tests for the etcd membership client."""

from __future__ import annotations

from datetime import timedelta

import pytest
import respx
from httpx import AsyncClient, ConnectError, ReadTimeout, Request, Response
from structlog.stdlib import BoundLogger

from membercontroller.constants import (
    ETCD_MEMBER_ADD_PATH,
    ETCD_MEMBER_LIST_PATH,
)
from membercontroller.exceptions import (
    ControllerTimeoutError,
    EtcdApiError,
    EtcdParseError,
    EtcdWebError,
    MemberExistsError,
)
from membercontroller.models.domain.etcd import Member
from membercontroller.storage.etcd import EtcdStorageClient
from membercontroller.timeout import Timeout

from ..support.etcd import register_mock_etcd

ENDPOINTS = [
    "https://etcd-0.example.com:2379",
    "https://etcd-1.example.com:2379",
]


def build_client(
    http_client: AsyncClient, logger: BoundLogger
) -> EtcdStorageClient:
    return EtcdStorageClient(
        endpoints=ENDPOINTS,
        http_client=http_client,
        health_timeout=timedelta(seconds=1),
        logger=logger,
    )


def timeout() -> Timeout:
    return Timeout("Test", timedelta(seconds=10))


@pytest.mark.asyncio
async def test_list_and_add(
    respx_mock: respx.Router, logger: BoundLogger
) -> None:
    mock = register_mock_etcd(respx_mock, ENDPOINTS[0])
    mock.add_started_member(
        "etcd-master-0", "https://10.0.0.1:2380", "https://10.0.0.1:2379"
    )
    async with AsyncClient() as http_client:
        client = build_client(http_client, logger)

        members = await client.list_members(timeout())
        assert len(members) == 1
        assert members[0].name == "etcd-master-0"
        assert members[0].peer_urls == ["https://10.0.0.1:2380"]
        assert members[0].client_urls == ["https://10.0.0.1:2379"]
        assert not members[0].is_learner
        assert members[0].started

        member = await client.add_member("https://10.0.0.2:2380", timeout())
        assert member.id
        assert member.name == ""
        assert member.peer_urls == ["https://10.0.0.2:2380"]
        assert not member.started
        assert mock.add_requests == [["https://10.0.0.2:2380"]]

        members = await client.list_members(timeout())
        assert [m.peer_urls for m in members] == [
            ["https://10.0.0.1:2380"],
            ["https://10.0.0.2:2380"],
        ]


@pytest.mark.asyncio
async def test_add_exists(
    respx_mock: respx.Router, logger: BoundLogger
) -> None:
    mock = register_mock_etcd(respx_mock, ENDPOINTS[0])
    mock.add_started_member(
        "etcd-master-0", "https://10.0.0.1:2380", "https://10.0.0.1:2379"
    )
    async with AsyncClient() as http_client:
        client = build_client(http_client, logger)
        with pytest.raises(MemberExistsError) as excinfo:
            await client.add_member("https://10.0.0.1:2380", timeout())
    assert excinfo.value.code == 9
    assert excinfo.value.endpoint == ENDPOINTS[0]
    assert excinfo.value.error == "etcdserver: Peer URLs already exists"
    assert str(excinfo.value) == (
        f"Unable to add member ({ENDPOINTS[0]}, code 9):"
        " etcdserver: Peer URLs already exists"
    )


@pytest.mark.asyncio
async def test_add_rejected(
    respx_mock: respx.Router, logger: BoundLogger
) -> None:
    mock = register_mock_etcd(respx_mock, ENDPOINTS[0])
    mock.fail_add = "etcdserver: unhealthy cluster"
    async with AsyncClient() as http_client:
        client = build_client(http_client, logger)
        with pytest.raises(EtcdApiError) as excinfo:
            await client.add_member("https://10.0.0.2:2380", timeout())
    assert not isinstance(excinfo.value, MemberExistsError)
    assert excinfo.value.error == "etcdserver: unhealthy cluster"


@pytest.mark.asyncio
async def test_failover(respx_mock: respx.Router, logger: BoundLogger) -> None:
    respx_mock.post(ENDPOINTS[0] + ETCD_MEMBER_LIST_PATH).mock(
        side_effect=ConnectError
    )
    respx_mock.post(ENDPOINTS[0] + ETCD_MEMBER_ADD_PATH).mock(
        side_effect=ConnectError
    )
    mock = register_mock_etcd(respx_mock, ENDPOINTS[1])
    async with AsyncClient() as http_client:
        client = build_client(http_client, logger)
        assert await client.list_members(timeout()) == []
        await client.add_member("https://10.0.0.2:2380", timeout())
    assert mock.add_requests == [["https://10.0.0.2:2380"]]


@pytest.mark.asyncio
async def test_add_not_resent(
    respx_mock: respx.Router, logger: BoundLogger
) -> None:
    sent: list[Request] = []

    def timed_out(request: Request) -> Response:
        sent.append(request)
        raise ReadTimeout("Timed out waiting for reply", request=request)

    respx_mock.post(ENDPOINTS[0] + ETCD_MEMBER_LIST_PATH).mock(
        side_effect=timed_out
    )
    respx_mock.post(ENDPOINTS[0] + ETCD_MEMBER_ADD_PATH).mock(
        side_effect=timed_out
    )
    mock = register_mock_etcd(respx_mock, ENDPOINTS[1])
    async with AsyncClient() as http_client:
        client = build_client(http_client, logger)

        # Reads may go to the next endpoint after any transport failure.
        assert await client.list_members(timeout()) == []

        # The add may have reached the first endpoint, so it is not sent
        # anywhere else.
        with pytest.raises(EtcdWebError):
            await client.add_member("https://10.0.0.2:2380", timeout())
    assert len(sent) == 2
    assert mock.add_requests == []


@pytest.mark.asyncio
async def test_all_endpoints_down(
    respx_mock: respx.Router, logger: BoundLogger
) -> None:
    for endpoint in ENDPOINTS:
        respx_mock.post(endpoint + ETCD_MEMBER_LIST_PATH).mock(
            side_effect=ConnectError
        )
    async with AsyncClient() as http_client:
        client = build_client(http_client, logger)
        with pytest.raises(EtcdWebError):
            await client.list_members(timeout())


@pytest.mark.asyncio
async def test_http_error(
    respx_mock: respx.Router, logger: BoundLogger
) -> None:
    respx_mock.post(ENDPOINTS[0] + ETCD_MEMBER_LIST_PATH).mock(
        return_value=Response(502, text="Bad Gateway")
    )
    async with AsyncClient() as http_client:
        client = build_client(http_client, logger)
        with pytest.raises(EtcdWebError) as excinfo:
            await client.list_members(timeout())
    assert excinfo.value.status == 502


@pytest.mark.asyncio
async def test_malformed_reply(
    respx_mock: respx.Router, logger: BoundLogger
) -> None:
    respx_mock.post(ENDPOINTS[0] + ETCD_MEMBER_LIST_PATH).mock(
        return_value=Response(200, json={"members": [{"peerURLs": "bogus"}]})
    )
    respx_mock.post(ENDPOINTS[0] + ETCD_MEMBER_ADD_PATH).mock(
        return_value=Response(200, text="not json")
    )
    async with AsyncClient() as http_client:
        client = build_client(http_client, logger)
        with pytest.raises(EtcdParseError):
            await client.list_members(timeout())
        with pytest.raises(EtcdWebError):
            await client.add_member("https://10.0.0.2:2380", timeout())


@pytest.mark.asyncio
async def test_expired_timeout(
    respx_mock: respx.Router, logger: BoundLogger
) -> None:
    mock = register_mock_etcd(respx_mock, ENDPOINTS[0])
    expired = Timeout("Test", timedelta(seconds=0))
    async with AsyncClient() as http_client:
        client = build_client(http_client, logger)
        with pytest.raises(ControllerTimeoutError):
            await client.add_member("https://10.0.0.2:2380", expired)
    assert mock.add_requests == []


@pytest.mark.asyncio
async def test_unhealthy_members(
    respx_mock: respx.Router, logger: BoundLogger
) -> None:
    mock = register_mock_etcd(respx_mock, ENDPOINTS[0])
    mock.unhealthy.add("https://10.0.0.2:2379")
    healthy = Member(
        id="1",
        name="etcd-master-0",
        peer_urls=["https://10.0.0.1:2380"],
        client_urls=["https://10.0.0.1:2379"],
    )
    unhealthy = Member(
        id="2",
        name="etcd-master-1",
        peer_urls=["https://10.0.0.2:2380"],
        client_urls=["https://10.0.0.2:2379"],
    )
    unstarted = Member(id="3", peer_urls=["https://10.0.0.3:2380"])
    members = [healthy, unhealthy, unstarted]

    async with AsyncClient() as http_client:
        client = build_client(http_client, logger)
        result = await client.unhealthy_members(members, timeout())
        assert result == [unhealthy, unstarted]
        assert await client.unhealthy_members([healthy], timeout()) == []
        assert await client.unhealthy_members([], timeout()) == []

        # An expired timeout fails before any member is checked.
        calls = respx_mock.calls.call_count
        expired = Timeout("Test", timedelta(seconds=0))
        with pytest.raises(ControllerTimeoutError):
            await client.unhealthy_members(members, expired)
        assert respx_mock.calls.call_count == calls

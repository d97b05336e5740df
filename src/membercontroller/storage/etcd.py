"""Client for the membership API of the consensus cluster."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

from httpx import (
    AsyncClient,
    ConnectError,
    ConnectTimeout,
    HTTPError,
    Response,
    TransportError,
)
from pydantic import ValidationError
from structlog.stdlib import BoundLogger

from ..constants import (
    ETCD_HEALTH_PATH,
    ETCD_MEMBER_ADD_PATH,
    ETCD_MEMBER_EXISTS_MESSAGES,
    ETCD_MEMBER_LIST_PATH,
)
from ..exceptions import (
    EtcdApiError,
    EtcdParseError,
    EtcdWebError,
    MemberExistsError,
)
from ..models.domain.etcd import (
    EtcdErrorReply,
    EtcdHealth,
    Member,
    MemberAddReply,
    MemberAddRequest,
    MemberListReply,
    MemberListRequest,
)
from ..timeout import Timeout

__all__ = ["EtcdStorageClient"]


class EtcdStorageClient:
    """List, add, and health-check members of an etcd cluster.

    Talks to the etcd v3 JSON gateway, which every etcd server exposes on its
    client URLs. Endpoints are tried in order and a transport failure on one
    moves on to the next within the same call. A member add is sent to at
    most one endpoint. Nothing is retried after the last endpoint fails.

    Parameters
    ----------
    endpoints
        Client URLs of the cluster, without trailing slashes.
    http_client
        HTTP client configured with any TLS settings the cluster requires.
    health_timeout
        Timeout for each individual member health check.
    logger
        Logger for messages.
    """

    def __init__(
        self,
        *,
        endpoints: list[str],
        http_client: AsyncClient,
        health_timeout: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._endpoints = endpoints
        self._http_client = http_client
        self._health_timeout = health_timeout
        self._logger = logger

    async def list_members(self, timeout: Timeout) -> list[Member]:
        """List the current members of the cluster.

        Parameters
        ----------
        timeout
            Timeout for the call.

        Returns
        -------
        list of Member
            Current members, including learners and members that have been
            added but not yet started.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout has already expired.
        EtcdApiError
            Raised if the cluster rejected the request.
        EtcdParseError
            Raised if the reply could not be parsed.
        EtcdWebError
            Raised if no endpoint could be reached.
        """
        body = MemberListRequest().model_dump(by_alias=True)
        endpoint, data = await self._post(
            ETCD_MEMBER_LIST_PATH, body, "Unable to list members", timeout
        )
        try:
            reply = MemberListReply.model_validate(data)
        except ValidationError as e:
            msg = f"Unable to parse member list from {endpoint}"
            raise EtcdParseError.from_exception(msg, e) from e
        self._logger.debug(
            "Listed cluster members",
            endpoint=endpoint,
            members=[m.name or m.id for m in reply.members],
        )
        return reply.members

    async def add_member(self, peer_url: str, timeout: Timeout) -> Member:
        """Add a new voting member to the cluster.

        Parameters
        ----------
        peer_url
            Peer URL of the new member.
        timeout
            Timeout for the call.

        Returns
        -------
        Member
            Newly-added member, which will have no name until it starts.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout has already expired.
        EtcdApiError
            Raised if the cluster rejected the request.
        EtcdParseError
            Raised if the reply could not be parsed.
        EtcdWebError
            Raised if no endpoint could be reached.
        MemberExistsError
            Raised if a member with this peer URL already exists.
        """
        request = MemberAddRequest(peer_urls=[peer_url], is_learner=False)
        body = request.model_dump(by_alias=True)
        endpoint, data = await self._post(
            ETCD_MEMBER_ADD_PATH,
            body,
            "Unable to add member",
            timeout,
            write=True,
        )
        try:
            reply = MemberAddReply.model_validate(data)
        except ValidationError as e:
            msg = f"Unable to parse member add reply from {endpoint}"
            raise EtcdParseError.from_exception(msg, e) from e
        self._logger.info(
            "Added cluster member",
            endpoint=endpoint,
            peer_url=peer_url,
            member_id=reply.member.id,
        )
        return reply.member

    async def unhealthy_members(
        self, members: list[Member], timeout: Timeout
    ) -> list[Member]:
        """Find the members that are not healthy.

        Members that have been added but have not started have no client
        URLs and are always unhealthy.

        Parameters
        ----------
        members
            Members to check.
        timeout
            Timeout for the whole check. Each member check is limited to the
            time remaining when the check starts.

        Returns
        -------
        list of Member
            Unhealthy members, in the order given.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout has already expired.
        """
        health_timeout = self._health_timeout.total_seconds()
        check_timeout = min(health_timeout, timeout.left())
        async with asyncio.TaskGroup() as tg:
            tasks = [
                tg.create_task(self._is_healthy(m, check_timeout))
                for m in members
            ]
        unhealthy = []
        for member, task in zip(members, tasks, strict=True):
            if not task.result():
                unhealthy.append(member)
        return unhealthy

    async def _is_healthy(self, member: Member, timeout: float) -> bool:
        """Check one member's health endpoint."""
        logger = self._logger.bind(member=member.name or member.id)
        if not member.client_urls:
            logger.debug("Member has not started")
            return False
        for client_url in member.client_urls:
            url = client_url.rstrip("/") + ETCD_HEALTH_PATH
            try:
                r = await self._http_client.get(url, timeout=timeout)
                r.raise_for_status()
                health = EtcdHealth.model_validate(r.json())
            except (HTTPError, ValueError) as e:
                msg = "Member health check failed"
                logger.warning(msg, url=url, error=str(e))
                continue
            if health.healthy:
                return True
            msg = "Member is unhealthy"
            logger.warning(msg, url=url, reason=health.reason)
        return False

    async def _post(
        self,
        path: str,
        body: dict[str, Any],
        action: str,
        timeout: Timeout,
        *,
        write: bool = False,
    ) -> tuple[str, Any]:
        """Send a request to the first endpoint that answers.

        A write moves on to the next endpoint only if the connection to the
        previous one could not be opened. Any other transport failure of a
        write is raised.

        Parameters
        ----------
        path
            Gateway route to call.
        body
            JSON body of the request.
        action
            Summary of the action for error messages.
        timeout
            Timeout for the call.
        write
            Whether the request changes the membership.

        Returns
        -------
        tuple of str and typing.Any
            Endpoint that answered and the decoded JSON reply.

        Raises
        ------
        EtcdApiError
            Raised if the cluster rejected the request.
        EtcdWebError
            Raised if no endpoint could be reached or the reply was not JSON.
        """
        last_error: HTTPError | None = None
        for endpoint in self._endpoints:
            url = endpoint + path
            try:
                r = await self._http_client.post(
                    url, json=body, timeout=timeout.left()
                )
            except TransportError as e:
                if write and not isinstance(e, ConnectError | ConnectTimeout):
                    raise EtcdWebError.from_exception(e) from e
                self._logger.warning(
                    "Unable to reach cluster endpoint",
                    endpoint=endpoint,
                    error=str(e),
                )
                last_error = e
                continue
            if r.is_error:
                self._raise_api_error(action, endpoint, r)
            try:
                return endpoint, r.json()
            except ValueError as e:
                msg = f"{action}: reply from {endpoint} is not JSON"
                raise EtcdWebError(msg) from e
        if last_error is None:
            raise EtcdWebError(f"{action}: no cluster endpoints configured")
        raise EtcdWebError.from_exception(last_error)

    def _raise_api_error(
        self, action: str, endpoint: str, response: Response
    ) -> None:
        """Convert an error reply from the gateway into an exception.

        Raises
        ------
        EtcdApiError
            Raised if the reply was a gateway error body.
        EtcdWebError
            Raised for any other HTTP error.
        MemberExistsError
            Raised if the error says the member already exists.
        """
        try:
            error = EtcdErrorReply.model_validate(response.json())
        except ValueError:
            error = None
        if error is None or error.detail is None:
            try:
                response.raise_for_status()
            except HTTPError as e:
                raise EtcdWebError.from_exception(e) from e
            return
        detail = error.detail
        if any(m in detail.lower() for m in ETCD_MEMBER_EXISTS_MESSAGES):
            raise MemberExistsError(
                action, endpoint=endpoint, code=error.code, error=detail
            )
        raise EtcdApiError(
            action, endpoint=endpoint, code=error.code, error=detail
        )

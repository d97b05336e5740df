"""Exceptions for the cluster member controller."""

from __future__ import annotations

from datetime import datetime
from typing import Self, override

from kubernetes_asyncio.client import ApiException
from pydantic import ValidationError
from safir.datetime import format_datetime_for_logging
from safir.slack.blockkit import (
    SlackBaseField,
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
    SlackWebException,
)
from safir.slack.sentry import SentryEventInfo

__all__ = [
    "ControllerTimeoutError",
    "EtcdApiError",
    "EtcdParseError",
    "EtcdWebError",
    "KubernetesError",
    "MemberExistsError",
    "MissingPeerAddressError",
]


class ControllerTimeoutError(SlackException):
    """An operation did not finish before its deadline.

    Parameters
    ----------
    operation
        Operation that timed out.
    started_at
        When the operation began.
    failed_at
        When the deadline passed.
    """

    def __init__(
        self, operation: str, *, started_at: datetime, failed_at: datetime
    ) -> None:
        self.operation = operation
        self.started_at = started_at
        elapsed = failed_at - started_at
        msg = f"{operation} timed out after {elapsed.total_seconds()}s"
        super().__init__(msg, failed_at=failed_at)

    @override
    def to_slack(self) -> SlackMessage:
        """Build a Slack alert showing when the operation ran.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Alert with start and failure times as fields.
        """
        started_at = format_datetime_for_logging(self.started_at)
        failed_at = format_datetime_for_logging(self.failed_at)
        fields: list[SlackBaseField] = [
            SlackTextField(heading="Started at", text=started_at),
            SlackTextField(heading="Failed at", text=failed_at),
        ]
        return SlackMessage(message=str(self), fields=fields)

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Describe the timeout for Sentry.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Event details tagged with the operation name.
        """
        info = super().to_sentry()
        started_at = format_datetime_for_logging(self.started_at)
        info.contexts.setdefault("info", {})["started_at"] = started_at
        info.tags["operation"] = self.operation
        return info


class EtcdApiError(SlackException):
    """The consensus cluster rejected a request.

    The etcd JSON gateway translates gRPC errors into a JSON body with the
    gRPC status code and the server's error message. This exception carries
    both.

    Parameters
    ----------
    message
        Summary of what was being attempted.
    endpoint
        Endpoint that returned the error.
    code
        gRPC status code from the error body, if any.
    error
        Error message from the cluster, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        endpoint: str,
        code: int | None = None,
        error: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.endpoint = endpoint
        self.code = code
        self.error = error

    @override
    def __str__(self) -> str:
        result = f"{self.message} ({self.endpoint}"
        if self.code is not None:
            result += f", code {self.code}"
        result += ")"
        if self.error:
            result += f": {self.error}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Build a Slack alert naming the endpoint and the cluster error.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Alert for the rejected request.
        """
        message = super().to_slack()
        message.message = self.message
        message.fields.append(
            SlackTextField(heading="Endpoint", text=self.endpoint)
        )
        if self.code is not None:
            field = SlackTextField(heading="Code", text=str(self.code))
            message.fields.append(field)
        if self.error:
            block = SlackCodeBlock(heading="Error", code=self.error)
            message.blocks.append(block)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Describe the rejected request for Sentry.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Event details tagged with the endpoint and gRPC code.
        """
        info = super().to_sentry()
        info.tags["endpoint"] = self.endpoint
        if self.code is not None:
            info.tags["code"] = str(self.code)
        if self.error:
            info.attachments["error"] = self.error
        return info


class EtcdParseError(SlackException):
    """Unable to parse a reply from the consensus cluster.

    Parameters
    ----------
    message
        Which reply could not be parsed.
    error
        Validation errors, which may span several lines.
    """

    @classmethod
    def from_exception(cls, message: str, exc: ValidationError) -> Self:
        """Wrap a Pydantic validation failure.

        Parameters
        ----------
        message
            Summary of which reply could not be parsed.
        exc
            Pydantic exception.

        Returns
        -------
        EtcdParseError
            Constructed exception.
        """
        error = f"{type(exc).__name__}: {exc!s}"
        return cls(message, error)

    def __init__(self, message: str, error: str) -> None:
        super().__init__(message)
        self.error = error

    @override
    def to_slack(self) -> SlackMessage:
        """Build a Slack alert with the validation errors.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Alert with the validation errors as code.
        """
        message = super().to_slack()
        details = SlackCodeBlock(heading="Error", code=self.error)
        message.blocks.append(details)
        return message


class EtcdWebError(SlackWebException):
    """An HTTP call to the consensus cluster failed."""


class KubernetesError(SlackException):
    """Kubernetes rejected or failed a request about member pods.

    Parameters
    ----------
    message
        What was being attempted.
    kind
        Kind of the object involved, such as ``Pod``.
    namespace
        Namespace of the request.
    name
        Name of the object involved, unless the request was a list or watch.
    status
        HTTP status of the failed request.
    body
        Reply body, or the reason phrase if there was no body.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Wrap an exception from the Kubernetes client.

        Parameters
        ----------
        message
            What was being attempted.
        exc
            Exception raised by the client.
        kind
            Kind of the object involved.
        namespace
            Namespace of the request.
        name
            Name of the object involved, if any.

        Returns
        -------
        KubernetesError
            Wrapped exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body or exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        headline = self._headline()
        return f"{headline}: {self.body}" if self.body else headline

    @override
    def to_slack(self) -> SlackMessage:
        """Build a Slack alert for the failure.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Alert with the status as a field and the reply body as code.
        """
        message = super().to_slack()
        message.message = self._headline()
        if self.status:
            status = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(status)
        target = self._target()
        if target:
            block = SlackTextBlock(heading="Object", text=target)
            message.blocks.append(block)
        if self.body:
            reply = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(reply)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Describe the failure for Sentry.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Tags for the request target and status, with the reply body as
            an attachment.
        """
        info = super().to_sentry()
        tags = {
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "status": str(self.status) if self.status else None,
        }
        info.tags.update({k: v for k, v in tags.items() if v})
        if self.body:
            info.attachments["body"] = self.body
        return info

    def _target(self) -> str | None:
        """Describe what the failed request was about."""
        kind = self.kind or ""
        if self.name:
            path = self.name
            if self.namespace:
                path = f"{self.namespace}/{self.name}"
            return f"{kind} {path}".lstrip()
        if kind and self.namespace:
            return f"{kind} in namespace {self.namespace}"
        return kind or None

    def _headline(self) -> str:
        """Single-line form shared by `str` and the Slack alert."""
        details = []
        if self.name:
            details.append(self._target())
        elif self.kind:
            details.append(self.kind)
        if self.status:
            details.append(f"status {self.status}")
        if details:
            return f"{self.message} ({', '.join(str(d) for d in details)})"
        return self.message


class MemberExistsError(EtcdApiError):
    """The peer URL being added is already a cluster member.

    This happens when a member add races with another add of the same pod.
    Callers adding members should treat it as success.
    """


class MissingPeerAddressError(SlackException):
    """A candidate pod has no address from which to build its peer URL.

    Parameters
    ----------
    name
        Name of the pod.
    namespace
        Namespace of the pod.
    template
        Peer URL template that could not be filled.
    """

    def __init__(self, name: str, namespace: str, template: str) -> None:
        msg = f"Pod {namespace}/{name} has no address for peer URL {template}"
        super().__init__(msg)
        self.name = name
        self.namespace = namespace
        self.template = template

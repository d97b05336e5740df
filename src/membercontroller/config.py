"""Controller configuration, read from YAML and the environment."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from string import Formatter
from typing import Annotated, Self

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

from .constants import (
    DEFAULT_MEMBER_CONTAINER,
    DEFAULT_PEER_URL_TEMPLATE,
    DEFAULT_POD_SELECTOR,
    RESYNC_INTERVAL,
    SYNC_TIMEOUT,
)

__all__ = [
    "Config",
    "EtcdConfig",
    "EtcdTLSConfig",
]

_PEER_URL_FIELDS = {"name", "namespace", "node_name", "host_ip", "pod_ip"}
"""Fields that may be used in the peer URL template."""


class EtcdTLSConfig(BaseModel):
    """Client TLS settings for talking to the consensus cluster.

    The certificates themselves are provisioned outside the controller and
    mounted into its pod.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    ca_path: Annotated[
        Path,
        Field(
            title="CA bundle",
            description="Path to the CA bundle that signed the server certs",
        ),
    ]

    cert_path: Annotated[
        Path | None,
        Field(
            title="Client certificate",
            description="Path to the client certificate, if client auth is on",
        ),
    ] = None

    key_path: Annotated[
        Path | None,
        Field(
            title="Client key",
            description="Path to the private key for the client certificate",
        ),
    ] = None

    @model_validator(mode="after")
    def _validate_key_pair(self) -> Self:
        if (self.cert_path is None) != (self.key_path is None):
            raise ValueError("certPath and keyPath must be set together")
        return self


class EtcdConfig(BaseModel):
    """How to reach the consensus cluster."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    endpoints: Annotated[
        list[str],
        Field(
            title="Cluster endpoints",
            description=(
                "Client URLs of the etcd JSON gateway, tried in order until"
                " one answers"
            ),
            examples=[["https://etcd.openshift-etcd.svc:2379"]],
            min_length=1,
        ),
    ]

    require_healthy_members: Annotated[
        bool,
        Field(
            title="Require healthy members",
            description=(
                "Refuse to add a member while any existing member is"
                " unhealthy or has not started. A member that was just added"
                " counts as not started, so this also blocks a second"
                " addition until the first one has joined."
            ),
        ),
    ] = True

    request_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Health check timeout",
            description="Timeout for each member health check",
        ),
    ] = timedelta(seconds=5)

    tls: Annotated[
        EtcdTLSConfig | None,
        Field(title="TLS settings", description="Client TLS configuration"),
    ] = None

    @field_validator("endpoints")
    @classmethod
    def _strip_endpoints(cls, v: list[str]) -> list[str]:
        return [e.rstrip("/") for e in v]


class Config(BaseSettings):
    """Cluster member controller configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    log_profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` writes one JSON object per line."
                " ``development`` writes plain text for people to read."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Shown as the source of Slack alerts and in metadata",
        ),
    ] = "member-controller"

    path_prefix: Annotated[
        str,
        Field(
            title="URL prefix for controller API",
            description="Prefix for all routes except the internal index",
        ),
    ] = "/member-controller"

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook for alerts",
            description=(
                "If set, failed syncs and any uncaught exceptions in the"
                " member controller will be reported to Slack via this"
                " webhook"
            ),
            validation_alias="MEMBER_CONTROLLER_SLACK_WEBHOOK",
        ),
    ] = None

    namespace: Annotated[
        str,
        Field(
            title="Pod namespace",
            description="Namespace containing the cluster member pods",
            examples=["openshift-etcd"],
        ),
    ]

    pod_selector: Annotated[
        dict[str, str],
        Field(
            title="Pod label selector",
            description=(
                "Labels that pods must have to be considered for membership."
                " All labels must match."
            ),
            examples=[{"app": "etcd"}],
        ),
    ] = DEFAULT_POD_SELECTOR

    member_container: Annotated[
        str,
        Field(
            title="Member container",
            description=(
                "Name of the container in each pod that runs the cluster"
                " member process. It must be running and ready before the"
                " pod is added."
            ),
        ),
    ] = DEFAULT_MEMBER_CONTAINER

    peer_url_template: Annotated[
        str,
        Field(
            title="Peer URL template",
            description=(
                "Python format string for the peer URL of a new member. May"
                " use ``name``, ``namespace``, ``node_name``, ``host_ip``,"
                " and ``pod_ip`` from the pod."
            ),
            examples=["https://{host_ip}:2380"],
        ),
    ] = DEFAULT_PEER_URL_TEMPLATE

    resync_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Resync interval",
            description="How often to reconcile without any pod change",
        ),
    ] = RESYNC_INTERVAL

    sync_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Sync timeout",
            description="Overall timeout for one membership sync",
        ),
    ] = SYNC_TIMEOUT

    watch_pods: Annotated[
        bool,
        Field(
            title="Watch pods",
            description="Whether to also sync whenever a member pod changes",
        ),
    ] = True

    etcd: Annotated[EtcdConfig, Field(title="Consensus cluster")]

    @field_validator("pod_selector")
    @classmethod
    def _validate_pod_selector(cls, v: dict[str, str]) -> dict[str, str]:
        if not v:
            raise ValueError("podSelector must contain at least one label")
        return v

    @field_validator("peer_url_template")
    @classmethod
    def _validate_peer_url_template(cls, v: str) -> str:
        fields = {f for _, f, _, _ in Formatter().parse(v) if f is not None}
        unknown = fields - _PEER_URL_FIELDS
        if unknown:
            msg = f"Unknown fields in peerUrlTemplate: {sorted(unknown)}"
            raise ValueError(msg)
        return v

    @property
    def label_selector(self) -> str:
        """Pod selector in Kubernetes label selector syntax."""
        return ",".join(f"{k}={v}" for k, v in self.pod_selector.items())

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the controller configuration from a YAML file.

        Settings from the environment, such as the Slack webhook, are merged
        in, with values from the file taking precedence.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls(**yaml.safe_load(f))

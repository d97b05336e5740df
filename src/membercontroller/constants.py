"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "CONFIGURATION_PATH",
    "DEFAULT_MEMBER_CONTAINER",
    "DEFAULT_PEER_URL_TEMPLATE",
    "DEFAULT_POD_SELECTOR",
    "ETCD_HEALTH_PATH",
    "ETCD_MEMBER_ADD_PATH",
    "ETCD_MEMBER_EXISTS_MESSAGES",
    "ETCD_MEMBER_LIST_PATH",
    "RESYNC_INTERVAL",
    "SYNC_TIMEOUT",
    "WATCH_RESTART_DELAY",
]

CONFIGURATION_PATH = Path("/etc/member-controller/config.yaml")
"""Default path to controller configuration."""

DEFAULT_MEMBER_CONTAINER = "etcd"
"""Name of the container in each pod that runs the cluster member process."""

DEFAULT_PEER_URL_TEMPLATE = "https://{host_ip}:2380"
"""Template used to build the peer URL of a new member from its pod.

The template is filled with the ``name``, ``namespace``, ``node_name``,
``host_ip``, and ``pod_ip`` of the pod. Cluster member pods normally use host
networking, so the host IP is the address other members can reach.
"""

DEFAULT_POD_SELECTOR = {"app": "etcd"}
"""Default label selector for pods that may become cluster members."""

ETCD_HEALTH_PATH = "/health"
"""Path on a member client URL that reports member health."""

ETCD_MEMBER_ADD_PATH = "/v3/cluster/member/add"
"""Path of the etcd JSON gateway route to add a member."""

ETCD_MEMBER_EXISTS_MESSAGES = (
    "peer urls already exists",
    "member id already exist",
)
"""Fragments of etcd error messages meaning the member is already present.

Matched against the lowercased message. etcd reports these as a failed
precondition when a member add races with another add of the same peer URL.
"""

ETCD_MEMBER_LIST_PATH = "/v3/cluster/member/list"
"""Path of the etcd JSON gateway route to list members."""

RESYNC_INTERVAL = timedelta(minutes=1)
"""How frequently to reconcile membership in the absence of pod changes."""

SYNC_TIMEOUT = timedelta(seconds=30)
"""Overall timeout for one membership sync.

A sync is a handful of single round-trip calls to Kubernetes and etcd, so this
only bounds how long we wait for a nonresponsive control plane or cluster.
"""

WATCH_RESTART_DELAY = timedelta(seconds=5)
"""How long to wait before restarting a failed pod watch."""

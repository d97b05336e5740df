"""Tests for configuration parsing and validation."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from membercontroller.config import Config, EtcdConfig, EtcdTLSConfig

from .support.config import config_path


def test_standard() -> None:
    config = Config.from_file(config_path("standard"))

    assert config.namespace == "openshift-etcd"
    assert config.label_selector == "app=etcd"
    assert config.member_container == "etcd"
    assert config.resync_interval == timedelta(hours=1)
    assert config.sync_timeout == timedelta(seconds=10)
    assert not config.watch_pods
    assert config.etcd.endpoints == [
        "https://etcd-0.example.com:2379",
        "https://etcd-1.example.com:2379",
    ]
    assert config.etcd.request_timeout == timedelta(seconds=2)
    assert config.etcd.require_healthy_members
    assert config.etcd.tls is None


def test_defaults() -> None:
    config = Config.from_file(config_path("minimal"))

    assert config.name == "member-controller"
    assert config.path_prefix == "/member-controller"
    assert config.pod_selector == {"app": "etcd"}
    assert config.peer_url_template == "https://{host_ip}:2380"
    assert config.resync_interval == timedelta(minutes=1)
    assert config.sync_timeout == timedelta(seconds=30)
    assert config.watch_pods
    assert config.slack_webhook is None
    assert config.etcd.request_timeout == timedelta(seconds=5)


def test_tls() -> None:
    config = Config.from_file(config_path("tls"))

    assert config.label_selector == "app=etcd,etcd=true"
    assert config.peer_url_template == "https://{name}.{namespace}.svc:2380"
    assert not config.etcd.require_healthy_members
    assert config.etcd.tls == EtcdTLSConfig(
        ca_path=Path("/etc/etcd/ca.crt"),
        cert_path=Path("/etc/etcd/client.crt"),
        key_path=Path("/etc/etcd/client.key"),
    )


def test_slack_webhook_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    webhook = "https://slack.example.com/webhook"
    monkeypatch.setenv("MEMBER_CONTROLLER_SLACK_WEBHOOK", webhook)
    config = Config.from_file(config_path("minimal"))
    assert config.slack_webhook
    assert config.slack_webhook.get_secret_value() == webhook


def test_tls_key_pair() -> None:
    EtcdTLSConfig.model_validate({"caPath": "/etc/etcd/ca.crt"})
    with pytest.raises(ValidationError):
        EtcdTLSConfig.model_validate(
            {"caPath": "/etc/etcd/ca.crt", "certPath": "/etc/etcd/client.crt"}
        )
    with pytest.raises(ValidationError):
        EtcdTLSConfig.model_validate(
            {"caPath": "/etc/etcd/ca.crt", "keyPath": "/etc/etcd/client.key"}
        )


def test_invalid() -> None:
    etcd = {"endpoints": ["http://etcd:2379"]}
    with pytest.raises(ValidationError):
        EtcdConfig.model_validate({"endpoints": []})
    with pytest.raises(ValidationError):
        Config(namespace="etcd", podSelector={}, etcd=etcd)
    with pytest.raises(ValidationError):
        template = "https://{ip}:2380"
        Config(namespace="etcd", peerUrlTemplate=template, etcd=etcd)
    with pytest.raises(ValidationError):
        Config(namespace="etcd", bogusSetting=True, etcd=etcd)
    with pytest.raises(ValidationError):
        Config(namespace="etcd", resyncInterval="soon", etcd=etcd)

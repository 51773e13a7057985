from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import Mock

from nerdy_k8s_disk_migrator.bindings import BindingProvisioner


def _gateway(*, existing_volume: object | None = None, existing_claim: object | None = None) -> Mock:
    gateway = Mock()
    gateway.namespace = "apps"
    gateway.read_volume.return_value = existing_volume
    gateway.read_claim.return_value = existing_claim
    return gateway


def test_ensure_volume_with_missing_pv_creates_retained_gce_volume() -> None:
    gateway = _gateway()
    provisioner = BindingProvisioner(gateway=gateway, fs_type="ext4")

    created = provisioner.ensure_volume(
        name="data-db-0-hd-pv",
        size="10Gi",
        storage_class="hyperdisk-balanced",
        disk_name="data-hd-225960",
    )

    assert created is True
    gateway.read_volume.assert_called_once_with("data-db-0-hd-pv")
    body = gateway.create_volume.call_args.args[0]
    assert body.metadata.name == "data-db-0-hd-pv"
    assert body.spec.capacity == {"storage": "10Gi"}
    assert body.spec.access_modes == ["ReadWriteOnce"]
    assert body.spec.storage_class_name == "hyperdisk-balanced"
    assert body.spec.persistent_volume_reclaim_policy == "Retain"
    assert body.spec.gce_persistent_disk.pd_name == "data-hd-225960"
    assert body.spec.gce_persistent_disk.fs_type == "ext4"


def test_ensure_volume_with_existing_pv_skips_without_reconciling() -> None:
    gateway = _gateway(existing_volume=SimpleNamespace(spec=SimpleNamespace(capacity={"storage": "5Gi"})))
    provisioner = BindingProvisioner(gateway=gateway)

    created = provisioner.ensure_volume(
        name="data-db-0-hd-pv",
        size="10Gi",
        storage_class="hyperdisk-balanced",
        disk_name="data-hd-225960",
    )

    assert created is False
    gateway.create_volume.assert_not_called()


def test_ensure_claim_with_missing_pvc_creates_statically_bound_claim() -> None:
    gateway = _gateway()
    provisioner = BindingProvisioner(gateway=gateway)

    created = provisioner.ensure_claim(
        name="data-db-0-hd",
        size="10Gi",
        storage_class="hyperdisk-balanced",
        volume_name="data-db-0-hd-pv",
    )

    assert created is True
    body = gateway.create_claim.call_args.args[0]
    assert body.metadata.name == "data-db-0-hd"
    assert body.metadata.namespace == "apps"
    assert body.spec.volume_name == "data-db-0-hd-pv"
    assert body.spec.storage_class_name == "hyperdisk-balanced"
    assert body.spec.access_modes == ["ReadWriteOnce"]
    assert body.spec.resources.requests == {"storage": "10Gi"}


def test_ensure_claim_with_existing_pvc_skips_creation() -> None:
    gateway = _gateway(existing_claim=SimpleNamespace(metadata=SimpleNamespace(name="data-db-0-hd")))
    provisioner = BindingProvisioner(gateway=gateway)

    created = provisioner.ensure_claim(
        name="data-db-0-hd",
        size="10Gi",
        storage_class="hyperdisk-balanced",
        volume_name="data-db-0-hd-pv",
    )

    assert created is False
    gateway.read_claim.assert_called_once_with("data-db-0-hd")
    gateway.create_claim.assert_not_called()

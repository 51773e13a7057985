from __future__ import annotations

from kubernetes import client

from .k8s import KubernetesGateway
from .log import get_logger

ACCESS_MODE = "ReadWriteOnce"
RECLAIM_POLICY_RETAIN = "Retain"

logger = get_logger(__name__)


class BindingProvisioner:
    """Creates the PV/PVC pair that statically binds a workload to a migrated disk.

    Both operations check for existence first and never reconcile an existing
    object, which is what makes an interrupted run safe to repeat.
    """

    def __init__(self, *, gateway: KubernetesGateway, fs_type: str = "ext4") -> None:
        self.gateway = gateway
        self.fs_type = fs_type

    def ensure_volume(self, *, name: str, size: str, storage_class: str, disk_name: str) -> bool:
        if self.gateway.read_volume(name) is not None:
            logger.info("PersistentVolume %s already exists; skipping", name)
            return False

        logger.info("Creating PersistentVolume: %s", name)
        self.gateway.create_volume(
            client.V1PersistentVolume(
                api_version="v1",
                kind="PersistentVolume",
                metadata=client.V1ObjectMeta(name=name),
                spec=client.V1PersistentVolumeSpec(
                    capacity={"storage": size},
                    access_modes=[ACCESS_MODE],
                    storage_class_name=storage_class,
                    persistent_volume_reclaim_policy=RECLAIM_POLICY_RETAIN,
                    gce_persistent_disk=client.V1GCEPersistentDiskVolumeSource(
                        pd_name=disk_name,
                        fs_type=self.fs_type,
                    ),
                ),
            )
        )
        return True

    def ensure_claim(self, *, name: str, size: str, storage_class: str, volume_name: str) -> bool:
        namespace = self.gateway.namespace
        if self.gateway.read_claim(name) is not None:
            logger.info("PersistentVolumeClaim %s/%s already exists; skipping", namespace, name)
            return False

        logger.info("Creating PersistentVolumeClaim: %s/%s", namespace, name)
        self.gateway.create_claim(
            client.V1PersistentVolumeClaim(
                api_version="v1",
                kind="PersistentVolumeClaim",
                metadata=client.V1ObjectMeta(name=name, namespace=namespace),
                spec=client.V1PersistentVolumeClaimSpec(
                    storage_class_name=storage_class,
                    access_modes=[ACCESS_MODE],
                    resources=client.V1VolumeResourceRequirements(requests={"storage": size}),
                    volume_name=volume_name,
                ),
            )
        )
        return True

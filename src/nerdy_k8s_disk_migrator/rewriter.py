from __future__ import annotations

from pathlib import Path
from typing import Any

from kubernetes import client
import yaml

MANIFEST_SUFFIX = "-minimal.yaml"


def rewrite_statefulset(
    statefulset: client.V1StatefulSet,
    *,
    template_name: str,
    claim_name: str,
) -> client.V1StatefulSet:
    """Build a minimal StatefulSet that mounts ``claim_name`` in place of the claim template.

    Everything except the pod volume list is carried over by reference without
    inspection. ``volumeClaimTemplates`` is dropped: it cannot be edited on a
    live StatefulSet, so the caller deletes and recreates the object.
    """
    spec = statefulset.spec
    template = spec.template
    template_metadata = template.metadata or client.V1ObjectMeta()
    pod_spec = template.spec

    volumes = [volume for volume in pod_spec.volumes or [] if volume.name != template_name]
    volumes.append(
        client.V1Volume(
            name=template_name,
            persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(claim_name=claim_name),
        )
    )

    return client.V1StatefulSet(
        api_version=statefulset.api_version or "apps/v1",
        kind=statefulset.kind or "StatefulSet",
        metadata=client.V1ObjectMeta(
            name=statefulset.metadata.name,
            namespace=statefulset.metadata.namespace,
        ),
        spec=client.V1StatefulSetSpec(
            service_name=spec.service_name,
            replicas=spec.replicas,
            pod_management_policy=spec.pod_management_policy,
            update_strategy=spec.update_strategy,
            persistent_volume_claim_retention_policy=spec.persistent_volume_claim_retention_policy,
            selector=spec.selector,
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(
                    labels=template_metadata.labels,
                    annotations=template_metadata.annotations,
                ),
                spec=client.V1PodSpec(
                    security_context=pod_spec.security_context,
                    service_account_name=pod_spec.service_account_name,
                    volumes=volumes,
                    init_containers=pod_spec.init_containers or [],
                    containers=pod_spec.containers,
                ),
            ),
        ),
    )


def manifest_document(obj: Any) -> Any:
    return client.ApiClient().sanitize_for_serialization(obj)


def manifest_path_for(directory: Path, workload_name: str) -> Path:
    return directory / f"{workload_name}{MANIFEST_SUFFIX}"


def write_manifest(statefulset: client.V1StatefulSet, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(manifest_document(statefulset), sort_keys=False, default_flow_style=False),
        encoding="utf-8",
    )
    return path

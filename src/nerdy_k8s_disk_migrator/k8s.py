from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar

from kubernetes import client, config
from kubernetes.client import ApiException

from .models import MigrationError

DEFAULT_NAMESPACE = "default"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
T = TypeVar("T")


@dataclass(frozen=True)
class KubernetesClients:
    api_client: client.ApiClient
    core_api: client.CoreV1Api
    apps_api: client.AppsV1Api


class KubernetesOperationError(MigrationError):
    """Raised when a Kubernetes API call needed by the migration fails."""


class KubernetesAuthenticationError(RuntimeError):
    """Raised when Kubernetes authentication configuration fails."""


def load_kubernetes_clients(
    *,
    kubeconfig_path: str | None,
    context: str | None,
    in_cluster: bool,
) -> KubernetesClients:
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        if in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=expanded, context=context)
    except Exception as error:  # pylint: disable=broad-except
        raise KubernetesAuthenticationError(
            _format_authentication_error(
                in_cluster=in_cluster,
                kubeconfig_path=expanded,
                context=context,
                error=error,
            )
        ) from error

    api_client = client.ApiClient()
    return KubernetesClients(
        api_client=api_client,
        core_api=client.CoreV1Api(api_client),
        apps_api=client.AppsV1Api(api_client),
    )


def current_namespace(kubeconfig_path: str | None = None, context: str | None = None) -> str:
    """Namespace selected by the kubeconfig context, as kubens/kubectl would use it."""
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        contexts, active_context = config.list_kube_config_contexts(config_file=expanded)
    except Exception as error:  # pylint: disable=broad-except
        reason = str(error).strip() or error.__class__.__name__
        source = expanded or "default kubeconfig search path"
        raise KubernetesAuthenticationError(
            f"Unable to read kubeconfig contexts from '{source}': {reason}. "
            "Verify the kubeconfig path is readable and valid."
        ) from error

    selected = active_context
    if context:
        selected = next((item for item in contexts or [] if item.get("name") == context), None)
    if not selected:
        return DEFAULT_NAMESPACE

    namespace = (selected.get("context") or {}).get("namespace")
    return namespace.strip() if namespace and namespace.strip() else DEFAULT_NAMESPACE


class KubernetesGateway:
    """Namespaced access to the StatefulSet, PVC, PV and Pod calls the migration needs."""

    def __init__(
        self,
        clients: KubernetesClients,
        *,
        namespace: str,
        request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        if request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        self.clients = clients
        self.namespace = namespace
        self.request_timeout_seconds = request_timeout_seconds

    def list_statefulset_names(self) -> list[str]:
        items = _safe_kubernetes_call(
            operation=f"list StatefulSets in namespace '{self.namespace}'",
            hint="Check the namespace exists and RBAC allows list on statefulsets.",
            func=lambda: self.clients.apps_api.list_namespaced_stateful_set(
                namespace=self.namespace,
                _request_timeout=self.request_timeout_seconds,
            ).items,
        )
        return sorted(item.metadata.name for item in items if item.metadata and item.metadata.name)

    def read_statefulset(self, name: str) -> client.V1StatefulSet | None:
        return _read_or_none(
            operation=f"read StatefulSet '{self.namespace}/{name}'",
            hint="Verify RBAC allows get on statefulsets.",
            func=lambda: self.clients.apps_api.read_namespaced_stateful_set(
                name=name,
                namespace=self.namespace,
                _request_timeout=self.request_timeout_seconds,
            ),
        )

    def scale_statefulset(self, name: str, replicas: int) -> None:
        _safe_kubernetes_call(
            operation=f"scale StatefulSet '{self.namespace}/{name}' to {replicas} replicas",
            hint="Verify RBAC allows patch on statefulsets/scale.",
            func=lambda: self.clients.apps_api.patch_namespaced_stateful_set_scale(
                name=name,
                namespace=self.namespace,
                body={"spec": {"replicas": replicas}},
                _request_timeout=self.request_timeout_seconds,
            ),
        )

    def delete_statefulset(self, name: str) -> None:
        _safe_kubernetes_call(
            operation=f"delete StatefulSet '{self.namespace}/{name}'",
            hint="Verify RBAC allows delete on statefulsets.",
            func=lambda: self.clients.apps_api.delete_namespaced_stateful_set(
                name=name,
                namespace=self.namespace,
                body=client.V1DeleteOptions(propagation_policy="Background"),
                _request_timeout=self.request_timeout_seconds,
            ),
        )

    def create_statefulset(self, body: client.V1StatefulSet) -> None:
        _safe_kubernetes_call(
            operation=f"create StatefulSet '{self.namespace}/{body.metadata.name}'",
            hint="Inspect the rewritten manifest and verify RBAC allows create on statefulsets.",
            func=lambda: self.clients.apps_api.create_namespaced_stateful_set(
                namespace=self.namespace,
                body=body,
                _request_timeout=self.request_timeout_seconds,
            ),
        )

    def list_claim_names(self) -> list[str]:
        items = _safe_kubernetes_call(
            operation=f"list PVCs in namespace '{self.namespace}'",
            hint="Verify RBAC allows list on persistentvolumeclaims.",
            func=lambda: self.clients.core_api.list_namespaced_persistent_volume_claim(
                namespace=self.namespace,
                _request_timeout=self.request_timeout_seconds,
            ).items,
        )
        return sorted(item.metadata.name for item in items if item.metadata and item.metadata.name)

    def read_claim(self, name: str) -> client.V1PersistentVolumeClaim | None:
        return _read_or_none(
            operation=f"read PVC '{self.namespace}/{name}'",
            hint="Verify RBAC allows get on persistentvolumeclaims.",
            func=lambda: self.clients.core_api.read_namespaced_persistent_volume_claim(
                name=name,
                namespace=self.namespace,
                _request_timeout=self.request_timeout_seconds,
            ),
        )

    def create_claim(self, body: client.V1PersistentVolumeClaim) -> None:
        _safe_kubernetes_call(
            operation=f"create PVC '{self.namespace}/{body.metadata.name}'",
            hint="Verify RBAC allows create on persistentvolumeclaims.",
            func=lambda: self.clients.core_api.create_namespaced_persistent_volume_claim(
                namespace=self.namespace,
                body=body,
                _request_timeout=self.request_timeout_seconds,
            ),
        )

    def read_volume(self, name: str) -> client.V1PersistentVolume | None:
        return _read_or_none(
            operation=f"read PV '{name}'",
            hint="Verify the ClusterRole allows get on persistentvolumes.",
            func=lambda: self.clients.core_api.read_persistent_volume(
                name=name,
                _request_timeout=self.request_timeout_seconds,
            ),
        )

    def create_volume(self, body: client.V1PersistentVolume) -> None:
        _safe_kubernetes_call(
            operation=f"create PV '{body.metadata.name}'",
            hint="Verify the ClusterRole allows create on persistentvolumes.",
            func=lambda: self.clients.core_api.create_persistent_volume(
                body=body,
                _request_timeout=self.request_timeout_seconds,
            ),
        )

    def list_pods(self, label_selector: str) -> list[client.V1Pod]:
        return _safe_kubernetes_call(
            operation=f"list Pods in namespace '{self.namespace}' matching '{label_selector}'",
            hint="Verify RBAC allows list on pods.",
            func=lambda: self.clients.core_api.list_namespaced_pod(
                namespace=self.namespace,
                label_selector=label_selector,
                _request_timeout=self.request_timeout_seconds,
            ).items,
        )


def _read_or_none(*, operation: str, hint: str, func: Callable[[], T]) -> T | None:
    try:
        return func()
    except ApiException as error:
        if error.status == 404:
            return None
        raise KubernetesOperationError(
            _format_api_exception_message(operation=operation, hint=hint, error=error)
        ) from error
    except Exception as error:
        raise KubernetesOperationError(
            f"Kubernetes call failed while trying to {operation}: {error}. {hint}"
        ) from error


def _safe_kubernetes_call(*, operation: str, hint: str, func: Callable[[], T]) -> T:
    try:
        return func()
    except ApiException as error:
        raise KubernetesOperationError(
            _format_api_exception_message(
                operation=operation,
                hint=hint,
                error=error,
            )
        ) from error
    except Exception as error:
        raise KubernetesOperationError(
            f"Kubernetes call failed while trying to {operation}: {error}. {hint}"
        ) from error


def _format_api_exception_message(*, operation: str, hint: str, error: ApiException) -> str:
    status = error.status if error.status is not None else "unknown"
    reason = error.reason or "no reason provided"
    return (
        f"Kubernetes call failed while trying to {operation}: "
        f"API status {status} ({reason}). {hint}"
    )


def _expand_kubeconfig_path(kubeconfig_path: str | None) -> str | None:
    if kubeconfig_path is None:
        return None
    stripped = kubeconfig_path.strip()
    if not stripped:
        return None
    return str(Path(stripped).expanduser())


def _format_authentication_error(
    *,
    in_cluster: bool,
    kubeconfig_path: str | None,
    context: str | None,
    error: Exception,
) -> str:
    reason = str(error).strip() or error.__class__.__name__
    if in_cluster:
        return (
            "Kubernetes authentication setup failed while loading in-cluster service account credentials: "
            f"{reason}. Ensure the pod has a mounted service account token and Kubernetes service host "
            "environment variables."
        )

    kubeconfig_source = kubeconfig_path or "default kubeconfig search path"
    context_message = f" with context '{context}'" if context else ""
    return (
        "Kubernetes authentication setup failed while loading kubeconfig "
        f"from '{kubeconfig_source}'{context_message}: {reason}. "
        "Verify the kubeconfig path and context are valid."
    )

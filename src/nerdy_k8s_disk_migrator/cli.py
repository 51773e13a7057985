"""Command line entry point for nerdy-k8s-disk-migrator."""

from __future__ import annotations

import functools
from pathlib import Path
import sys
import threading
from typing import Any, Callable

import click
from rich.console import Console
from rich.table import Table

from nerdy_k8s_disk_migrator.bindings import BindingProvisioner
from nerdy_k8s_disk_migrator.config import DEFAULT_HISTORY_DB_PATH, MigratorConfig, ensure_directories
from nerdy_k8s_disk_migrator.coordinator import MigrationCoordinator
from nerdy_k8s_disk_migrator.gce import GceDiskDriver, verify_required_tools
from nerdy_k8s_disk_migrator.history import MigrationHistoryStore
from nerdy_k8s_disk_migrator.k8s import (
    KubernetesAuthenticationError,
    KubernetesGateway,
    current_namespace,
    load_kubernetes_clients,
)
from nerdy_k8s_disk_migrator.log import set_log_level
from nerdy_k8s_disk_migrator.models import MigrationError, WorkloadMigration, WorkloadPlan

SERVICEACCOUNT_NAMESPACE_PATH = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130

console = Console()


def _migration_options(func: Callable[..., Any]) -> Callable[..., Any]:
    options = [
        click.argument("statefulsets", nargs=-1),
        click.option("--project", envvar="NKDM_PROJECT", required=True, help="GCP project holding the disks"),
        click.option(
            "--storage-class",
            envvar="NKDM_STORAGE_CLASS",
            required=True,
            help="StorageClass for the new PVs/PVCs (e.g. hyperdisk-balanced)",
        ),
        click.option("--disk-type", default=None, help="GCE disk type for new disks (defaults to the storage class)"),
        click.option("--namespace", "-n", envvar="NKDM_NAMESPACE", default=None, help="Namespace to migrate"),
        click.option("--kubeconfig", "kubeconfig_path", default=None, help="Path to kubeconfig"),
        click.option("--context", default=None, help="Kubeconfig context"),
        click.option("--in-cluster", is_flag=True, default=False, help="Use in-cluster service account credentials"),
        click.option("--suffix", "migration_suffix", default=None, help="Migration suffix for new PVs/PVCs"),
        click.option("--poll-interval", type=float, default=None, help="Seconds between detach polls"),
        click.option("--detach-timeout", type=float, default=None, help="Give up waiting for detach after N seconds"),
        click.option(
            "--manifest-dir",
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            help="Directory for rewritten StatefulSet manifests",
        ),
        click.option(
            "--history-db",
            type=click.Path(dir_okay=False, path_type=Path),
            default=None,
            help="SQLite migration history path",
        ),
        click.option("--no-history", is_flag=True, default=False, help="Do not record migration history"),
        click.option(
            "--log-level",
            type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
            default="INFO",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _fatal_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (MigrationError, KubernetesAuthenticationError) as error:
            console.print(f"[red]ERROR: {error}[/red]")
            sys.exit(EXIT_FATAL)
        except KeyboardInterrupt:
            console.print(
                "[yellow]Interrupted. Existing PVs/PVCs are detected on re-run; "
                "disks and snapshots are recreated under a new name.[/yellow]"
            )
            sys.exit(EXIT_INTERRUPTED)

    return wrapper


@click.group()
@click.version_option(version="0.1.0", prog_name="nkdm")
def main() -> None:
    """Migrate StatefulSet volumes to a new GCE disk type with minimal downtime."""


@main.command()
@_migration_options
@_fatal_errors
def migrate(statefulsets: tuple[str, ...], **options: Any) -> None:
    """Migrate the named StatefulSets, or every StatefulSet in the namespace."""
    set_log_level(options["log_level"])
    verify_required_tools()
    coordinator = _build_coordinator(options)

    results = coordinator.run(statefulsets)
    _print_results(results)


@main.command()
@_migration_options
@_fatal_errors
def plan(statefulsets: tuple[str, ...], **options: Any) -> None:
    """Show what a migration would touch without changing anything."""
    set_log_level(options["log_level"])
    coordinator = _build_coordinator({**options, "no_history": True}, create_directories=False)
    _print_plans(coordinator.plan(statefulsets))


@main.command()
@click.option(
    "--history-db",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite migration history path",
)
@click.option("--limit", type=int, default=50, show_default=True)
def history(history_db: Path | None, limit: int) -> None:
    """Show recently recorded migration outcomes."""
    db_path = history_db or DEFAULT_HISTORY_DB_PATH
    if not db_path.exists():
        console.print("[dim]No migration history recorded yet.[/dim]")
        return

    store = MigrationHistoryStore(db_path)
    store.initialize()
    rows = store.get_recent_results(limit=limit)

    table = Table(title="Migration history")
    for column in (
        "Recorded",
        "Namespace",
        "StatefulSet",
        "State",
        "Source PVC",
        "PVC state",
        "New PVC",
        "New disk",
        "Snapshot",
        "Message",
    ):
        table.add_column(column)
    for row in rows:
        table.add_row(
            str(row["created_at"]),
            str(row["namespace"]),
            str(row["workload"]),
            str(row["workload_state"]),
            str(row["source_claim"] or ""),
            str(row["volume_state"] or ""),
            str(row["new_claim"] or ""),
            str(row["new_disk"] or ""),
            str(row["snapshot_name"] or ""),
            str(row["message"] or ""),
        )
    console.print(table)


def build_config(options: dict[str, Any], *, namespace: str) -> MigratorConfig:
    overrides: dict[str, Any] = {}
    for option_name, field_name in (
        ("disk_type", "disk_type"),
        ("migration_suffix", "migration_suffix"),
        ("poll_interval", "poll_interval_seconds"),
        ("detach_timeout", "detach_timeout_seconds"),
        ("manifest_dir", "manifest_dir"),
        ("history_db", "history_db_path"),
    ):
        if options.get(option_name) is not None:
            overrides[field_name] = options[option_name]
    if options.get("no_history"):
        overrides["history_db_path"] = None

    return MigratorConfig(
        project=options["project"],
        storage_class=options["storage_class"],
        namespace=namespace,
        **overrides,
    )


def resolve_namespace(
    *,
    namespace: str | None,
    kubeconfig_path: str | None,
    context: str | None,
    in_cluster: bool,
) -> str:
    if namespace and namespace.strip():
        return namespace.strip()
    if in_cluster:
        if SERVICEACCOUNT_NAMESPACE_PATH.is_file():
            mounted = SERVICEACCOUNT_NAMESPACE_PATH.read_text(encoding="utf-8").strip()
            if mounted:
                return mounted
        return "default"
    return current_namespace(kubeconfig_path, context)


def _build_coordinator(options: dict[str, Any], *, create_directories: bool = True) -> MigrationCoordinator:
    namespace = resolve_namespace(
        namespace=options.get("namespace"),
        kubeconfig_path=options.get("kubeconfig_path"),
        context=options.get("context"),
        in_cluster=options.get("in_cluster", False),
    )
    try:
        config = build_config(options, namespace=namespace)
    except ValueError as error:
        raise click.UsageError(str(error)) from error
    if create_directories:
        ensure_directories(config)
    console.print(f"Using Kubernetes namespace: [bold]{config.namespace}[/bold]")

    clients = load_kubernetes_clients(
        kubeconfig_path=options.get("kubeconfig_path"),
        context=options.get("context"),
        in_cluster=options.get("in_cluster", False),
    )
    gateway = KubernetesGateway(
        clients,
        namespace=config.namespace,
        request_timeout_seconds=config.request_timeout_seconds,
    )
    history_store = None
    if config.history_db_path is not None:
        history_store = MigrationHistoryStore(config.history_db_path)
        history_store.initialize()

    return MigrationCoordinator(
        gateway=gateway,
        disk_driver=GceDiskDriver(project=config.project),
        provisioner=BindingProvisioner(gateway=gateway, fs_type=config.fs_type),
        config=config,
        history_store=history_store,
        cancel_event=threading.Event(),
    )


def _print_results(results: list[WorkloadMigration]) -> None:
    table = Table(title="Migration results")
    table.add_column("StatefulSet", style="cyan", no_wrap=True)
    table.add_column("State")
    table.add_column("Replicas", justify="right")
    table.add_column("Migrated PVCs")
    table.add_column("Skipped PVCs")
    table.add_column("Bound PVC")
    table.add_column("Warnings", style="yellow")

    for result in results:
        skipped = [volume.source_claim for volume in result.volumes if not volume.migrated]
        table.add_row(
            result.name,
            result.state,
            "" if result.original_replicas is None else str(result.original_replicas),
            ", ".join(volume.source_claim for volume in result.migrated_volumes),
            ", ".join(skipped),
            result.bound_claim or "",
            "; ".join(result.warnings),
        )

    console.print(table)


def _print_plans(plans: list[WorkloadPlan]) -> None:
    table = Table(title="Migration plan")
    table.add_column("StatefulSet", style="cyan", no_wrap=True)
    table.add_column("Template")
    table.add_column("Replicas", justify="right")
    table.add_column("Source PVC")
    table.add_column("New PV")
    table.add_column("New PVC")

    for workload in plans:
        if workload.already_migrated:
            table.add_row(*_plan_prefix(workload), "[dim]already migrated[/dim]", "", "")
            continue
        if not workload.claims:
            table.add_row(*_plan_prefix(workload), "[dim]nothing to migrate[/dim]", "", "")
            continue
        for claim in workload.claims:
            table.add_row(
                *_plan_prefix(workload),
                claim.source_claim,
                claim.new_volume,
                claim.new_claim,
            )

    console.print(table)


def _plan_prefix(workload: WorkloadPlan) -> tuple[str, str, str]:
    return workload.name, workload.template_name or "", str(workload.replicas)

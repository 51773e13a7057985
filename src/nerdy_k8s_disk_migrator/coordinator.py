from __future__ import annotations

from datetime import UTC, datetime
import threading
import time
from typing import Any, Callable, Iterable

from kubernetes import client

from .bindings import BindingProvisioner
from .config import MigratorConfig
from .gce import DiskNotFoundError, GceDiskDriver, locate_disk
from .history import MigrationHistoryStore
from .k8s import KubernetesGateway
from .log import get_logger
from .models import (
    STATE_ALREADY_MIGRATED,
    STATE_APPLIED,
    STATE_BINDINGS_ENSURED,
    STATE_DETACHING,
    STATE_DISK_CREATED,
    STATE_REWRITTEN,
    STATE_SKIPPED,
    STATE_SNAPSHOTTING,
    STATE_VERIFIED,
    ClaimPlan,
    MigrationError,
    VolumeMigration,
    WorkloadMigration,
    WorkloadPlan,
)
from .naming import (
    carries_migration_suffix,
    claim_name_for,
    derive_names,
    disambiguator_token,
    volume_name_for,
)
from .rewriter import manifest_path_for, rewrite_statefulset, write_manifest
from .waiting import PollingWait

DEFAULT_REPLICAS = 1

logger = get_logger(__name__)


class MigrationCoordinator:
    """Moves each StatefulSet's claim-template volumes onto new disks of the target type.

    Workloads and their volumes are processed strictly one after another.
    Per volume the order is: detach wait, snapshot, new disk, PV, PVC. The
    StatefulSet is only replaced once every source claim has either reached
    ``BindingsEnsured`` or been skipped.
    """

    def __init__(
        self,
        *,
        gateway: KubernetesGateway,
        disk_driver: GceDiskDriver,
        provisioner: BindingProvisioner,
        config: MigratorConfig,
        history_store: MigrationHistoryStore | None = None,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.gateway = gateway
        self.disk_driver = disk_driver
        self.provisioner = provisioner
        self.config = config
        self.history_store = history_store
        self.cancel_event = cancel_event or threading.Event()
        self.clock = clock

    def run(self, names: Iterable[str] | None = None) -> list[WorkloadMigration]:
        targets = self._target_names(names)
        logger.info(
            "Migrating %d StatefulSet(s) in namespace %s to storage class %s",
            len(targets),
            self.config.namespace,
            self.config.storage_class,
        )
        return [self.migrate_workload(name) for name in targets]

    def plan(self, names: Iterable[str] | None = None) -> list[WorkloadPlan]:
        plans: list[WorkloadPlan] = []
        for name in self._target_names(names):
            statefulset = self.gateway.read_statefulset(name)
            if statefulset is None:
                logger.warning("StatefulSet %s/%s not found; skipping", self.config.namespace, name)
                continue

            template_name = _template_name(statefulset)
            already_migrated = self._already_migrated(statefulset)
            claims: tuple[ClaimPlan, ...] = ()
            if template_name and not already_migrated:
                claims = tuple(
                    ClaimPlan(
                        source_claim=claim,
                        new_volume=volume_name_for(
                            claim,
                            migration_suffix=self.config.migration_suffix,
                            max_length=self.config.max_name_length,
                        ),
                        new_claim=claim_name_for(
                            claim,
                            migration_suffix=self.config.migration_suffix,
                            max_length=self.config.max_name_length,
                        ),
                    )
                    for claim in self._source_claims(name, template_name)
                )
            plans.append(
                WorkloadPlan(
                    namespace=self.config.namespace,
                    name=name,
                    already_migrated=already_migrated,
                    template_name=template_name,
                    replicas=_replicas(statefulset),
                    claims=claims,
                )
            )
        return plans

    def migrate_workload(self, name: str) -> WorkloadMigration:
        result = WorkloadMigration(namespace=self.config.namespace, name=name, started_at=_utc_now_iso())
        logger.info("Starting migration for StatefulSet: %s", name)
        try:
            self._migrate_workload(result)
        except MigrationError as error:
            result.warnings.append(f"aborted: {error}")
            self._finish(result)
            raise
        except KeyboardInterrupt:
            result.warnings.append("aborted: interrupted")
            self._finish(result)
            raise

        self._finish(result)
        return result

    def _migrate_workload(self, result: WorkloadMigration) -> None:
        name = result.name
        statefulset = self.gateway.read_statefulset(name)
        if statefulset is None:
            self._skip_workload(result, f"StatefulSet {result.namespace}/{name} not found")
            return

        if self._already_migrated(statefulset):
            result.state = STATE_ALREADY_MIGRATED
            logger.info("Migration already completed for %s; skipping", name)
            return

        template_name = _template_name(statefulset)
        if not template_name:
            self._skip_workload(result, f"StatefulSet {name} has no volumeClaimTemplates to migrate")
            return
        if len(statefulset.spec.volume_claim_templates) > 1:
            message = f"only volumeClaimTemplate '{template_name}' is migrated; other templates are left untouched"
            logger.warning("  %s", message)
            result.warnings.append(message)
        result.template_name = template_name
        logger.info("  Using volumeClaimTemplate name: %s", template_name)

        result.original_replicas = _replicas(statefulset)
        logger.info("  Scaling StatefulSet/%s down to 0 replicas", name)
        self.gateway.scale_statefulset(name, 0)

        logger.info("  Retrieving source PVCs for %s", name)
        for claim_name in self._source_claims(name, template_name):
            volume = VolumeMigration(source_claim=claim_name)
            result.volumes.append(volume)
            self._migrate_volume(volume, template_name=template_name)

        migrated = result.migrated_volumes
        if not migrated:
            message = "no PVC was migrated; StatefulSet definition left unchanged"
            logger.warning("  %s", message)
            result.warnings.append(message)
            result.state = STATE_SKIPPED
            self._restore_replicas(result)
            return

        result.bound_claim = migrated[0].new_claim
        logger.info("  Patching StatefulSet definition for %s", name)
        rewritten = rewrite_statefulset(statefulset, template_name=template_name, claim_name=result.bound_claim)
        manifest_path = write_manifest(rewritten, manifest_path_for(self.config.manifest_dir, name))
        result.manifest_path = str(manifest_path)
        result.state = STATE_REWRITTEN

        logger.info("  Deleting original StatefulSet/%s", name)
        deletion_wait = self._deletion_wait()
        self.gateway.delete_statefulset(name)
        self._await_statefulset_deleted(name, deletion_wait)
        logger.info("  Applying patched StatefulSet from %s", manifest_path)
        self.gateway.create_statefulset(rewritten)
        result.state = STATE_APPLIED

        self._restore_replicas(result)
        logger.info("Completed migration for StatefulSet: %s", name)
        self._verify(result, statefulset)

    def _migrate_volume(self, volume: VolumeMigration, *, template_name: str) -> None:
        claim_name = volume.source_claim
        logger.info("    Processing PVC: %s", claim_name)

        claim = self.gateway.read_claim(claim_name)
        volume_name = claim.spec.volume_name if claim is not None and claim.spec else None
        if not volume_name:
            self._skip_volume(volume, f"PVC {claim_name} is not bound to a PersistentVolume")
            return

        size = _requested_storage(claim)
        if not size:
            self._skip_volume(volume, f"PVC {claim_name} has no requested storage size")
            return
        volume.size = size

        persistent_volume = self.gateway.read_volume(volume_name)
        if persistent_volume is None:
            self._skip_volume(volume, f"PV {volume_name} bound to {claim_name} not found")
            return

        try:
            disk_name = locate_disk(persistent_volume)
        except DiskNotFoundError as error:
            self._skip_volume(volume, str(error))
            return
        volume.source_disk = disk_name

        zone = self.disk_driver.discover_zone(disk_name)
        volume.zone = zone

        volume.state = STATE_DETACHING
        self.disk_driver.await_detachment(disk_name, zone, self._detach_wait())

        names = derive_names(
            template_name=template_name,
            claim_name=claim_name,
            token=disambiguator_token(self.clock()),
            migration_suffix=self.config.migration_suffix,
            max_length=self.config.max_name_length,
        )

        volume.state = STATE_SNAPSHOTTING
        self.disk_driver.snapshot(disk_name, zone, names.snapshot)
        volume.snapshot_name = names.snapshot

        new_disk = self.disk_driver.create_disk_from_snapshot(
            snapshot_name=names.snapshot,
            zone=zone,
            size=size,
            disk_type=self.config.target_disk_type,
            disk_name=names.disk,
        )
        volume.new_disk = new_disk.name
        volume.state = STATE_DISK_CREATED

        self.provisioner.ensure_volume(
            name=names.volume,
            size=size,
            storage_class=self.config.storage_class,
            disk_name=new_disk.name,
        )
        volume.new_volume = names.volume
        self.provisioner.ensure_claim(
            name=names.claim,
            size=size,
            storage_class=self.config.storage_class,
            volume_name=names.volume,
        )
        volume.new_claim = names.claim
        volume.state = STATE_BINDINGS_ENSURED

    def _verify(self, result: WorkloadMigration, statefulset: client.V1StatefulSet) -> None:
        claim_name = result.bound_claim
        logger.info("Post-migration checks for %s", result.name)
        issues: list[str] = []

        claim = self.gateway.read_claim(claim_name)
        phase = claim.status.phase if claim is not None and claim.status else None
        if claim is None:
            issues.append(f"PVC {claim_name} not found")
        elif phase != "Bound":
            issues.append(f"PVC {claim_name} is {phase or 'Unknown'}, expected Bound")
        else:
            logger.info("  PVC %s is Bound", claim_name)

        selector = _label_selector(statefulset)
        pods = self.gateway.list_pods(selector) if selector else []
        if any(_pod_uses_claim(pod, claim_name) for pod in pods):
            logger.info("  Pod is using new PVC: %s", claim_name)
        else:
            issues.append(f"no pod is using expected PVC {claim_name}; please investigate")

        for issue in issues:
            logger.warning("  [WARN] %s", issue)
        result.warnings.extend(issues)
        if not issues:
            result.state = STATE_VERIFIED

    def _restore_replicas(self, result: WorkloadMigration) -> None:
        replicas = result.original_replicas if result.original_replicas is not None else DEFAULT_REPLICAS
        logger.info("  Scaling StatefulSet/%s back to %d replicas", result.name, replicas)
        self.gateway.scale_statefulset(result.name, replicas)

    def _deletion_wait(self) -> PollingWait:
        return PollingWait(
            interval_seconds=self.config.poll_interval_seconds,
            timeout_seconds=self.config.deletion_timeout_seconds,
            cancel_event=self.cancel_event,
        )

    def _await_statefulset_deleted(self, name: str, wait: PollingWait) -> None:
        wait.until(
            lambda: self.gateway.read_statefulset(name),
            satisfied=lambda statefulset: statefulset is None,
            description=f"StatefulSet {self.config.namespace}/{name} to be deleted",
        )

    def _detach_wait(self) -> PollingWait:
        return PollingWait(
            interval_seconds=self.config.poll_interval_seconds,
            timeout_seconds=self.config.detach_timeout_seconds,
            cancel_event=self.cancel_event,
        )

    def _already_migrated(self, statefulset: client.V1StatefulSet) -> bool:
        pod_spec = statefulset.spec.template.spec if statefulset.spec and statefulset.spec.template else None
        # Suffix match, not substring: "data-hdfs-0" is not a migrated claim.
        for volume in (pod_spec.volumes if pod_spec else None) or []:
            source = volume.persistent_volume_claim
            if source and carries_migration_suffix(source.claim_name, self.config.migration_suffix):
                return True
        return False

    def _source_claims(self, name: str, template_name: str) -> list[str]:
        prefix = f"{template_name}-{name}-"
        ordinals: list[tuple[int, str]] = []
        for claim_name in self.gateway.list_claim_names():
            if not claim_name.startswith(prefix):
                continue
            if carries_migration_suffix(claim_name, self.config.migration_suffix):
                continue
            ordinal = claim_name[len(prefix):]
            if ordinal.isdigit():
                ordinals.append((int(ordinal), claim_name))
        return [claim_name for _, claim_name in sorted(ordinals)]

    def _target_names(self, names: Iterable[str] | None) -> list[str]:
        explicit = [name.strip() for name in names or [] if name and name.strip()]
        if explicit:
            return list(dict.fromkeys(explicit))
        return self.gateway.list_statefulset_names()

    def _skip_workload(self, result: WorkloadMigration, message: str) -> None:
        logger.warning("  %s; skipping", message)
        result.warnings.append(message)
        result.state = STATE_SKIPPED

    def _skip_volume(self, volume: VolumeMigration, message: str) -> None:
        logger.warning("      ERROR: %s; skipping", message)
        volume.message = message
        volume.state = STATE_SKIPPED

    def _finish(self, result: WorkloadMigration) -> None:
        result.finished_at = _utc_now_iso()
        if self.history_store is not None:
            self.history_store.record_workload(result)


def _template_name(statefulset: client.V1StatefulSet) -> str | None:
    templates = statefulset.spec.volume_claim_templates if statefulset.spec else None
    if not templates:
        return None
    metadata = templates[0].metadata
    return metadata.name if metadata and metadata.name else None


def _replicas(statefulset: client.V1StatefulSet) -> int:
    replicas = statefulset.spec.replicas if statefulset.spec else None
    return DEFAULT_REPLICAS if replicas is None else int(replicas)


def _requested_storage(claim: client.V1PersistentVolumeClaim) -> str | None:
    resources = claim.spec.resources if claim.spec else None
    requests = resources.requests if resources and resources.requests else {}
    if requests.get("storage"):
        return requests["storage"]
    capacity = claim.status.capacity if claim.status and claim.status.capacity else {}
    return capacity.get("storage")


def _label_selector(statefulset: client.V1StatefulSet) -> str:
    selector = statefulset.spec.selector if statefulset.spec else None
    labels = selector.match_labels if selector and selector.match_labels else {}
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def _pod_uses_claim(pod: Any, claim_name: str) -> bool:
    spec = getattr(pod, "spec", None)
    for volume in getattr(spec, "volumes", None) or []:
        source = getattr(volume, "persistent_volume_claim", None)
        if source is not None and getattr(source, "claim_name", None) == claim_name:
            return True
    return False


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).replace(microsecond=0).isoformat()

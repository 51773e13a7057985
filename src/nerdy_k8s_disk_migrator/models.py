from __future__ import annotations

from dataclasses import dataclass, field

STATE_PENDING = "Pending"
STATE_DETACHING = "Detaching"
STATE_SNAPSHOTTING = "Snapshotting"
STATE_DISK_CREATED = "DiskCreated"
STATE_BINDINGS_ENSURED = "BindingsEnsured"
STATE_REWRITTEN = "Rewritten"
STATE_APPLIED = "Applied"
STATE_VERIFIED = "Verified"
STATE_ALREADY_MIGRATED = "AlreadyMigrated"
STATE_SKIPPED = "Skipped"

COMPLETED_WORKLOAD_STATES = frozenset({STATE_APPLIED, STATE_VERIFIED, STATE_ALREADY_MIGRATED})


class MigrationError(RuntimeError):
    """Base class for failures that halt a migration run."""


@dataclass(frozen=True)
class LegacyDiskName:
    name: str

    @property
    def disk_name(self) -> str | None:
        stripped = self.name.strip()
        return stripped or None


@dataclass(frozen=True)
class CsiVolumeHandle:
    handle: str

    @property
    def disk_name(self) -> str | None:
        # projects/<project>/zones/<zone>/disks/<name>
        segment = self.handle.strip().rstrip("/").rsplit("/", 1)[-1]
        return segment or None


DiskReference = LegacyDiskName | CsiVolumeHandle


@dataclass(frozen=True)
class DiskRef:
    name: str
    zone: str


@dataclass
class VolumeMigration:
    source_claim: str
    state: str = STATE_PENDING
    source_disk: str | None = None
    zone: str | None = None
    snapshot_name: str | None = None
    new_disk: str | None = None
    new_volume: str | None = None
    new_claim: str | None = None
    size: str | None = None
    message: str = ""

    @property
    def migrated(self) -> bool:
        return self.state == STATE_BINDINGS_ENSURED


@dataclass
class WorkloadMigration:
    namespace: str
    name: str
    state: str = STATE_PENDING
    template_name: str | None = None
    original_replicas: int | None = None
    bound_claim: str | None = None
    manifest_path: str | None = None
    volumes: list[VolumeMigration] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    started_at: str = ""
    finished_at: str = ""

    @property
    def migrated_volumes(self) -> list[VolumeMigration]:
        return [volume for volume in self.volumes if volume.migrated]

    @property
    def completed(self) -> bool:
        return self.state in COMPLETED_WORKLOAD_STATES


@dataclass(frozen=True)
class ClaimPlan:
    source_claim: str
    new_volume: str
    new_claim: str


@dataclass(frozen=True)
class WorkloadPlan:
    namespace: str
    name: str
    already_migrated: bool
    template_name: str | None
    replicas: int
    claims: tuple[ClaimPlan, ...] = ()

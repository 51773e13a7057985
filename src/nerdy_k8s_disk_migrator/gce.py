from __future__ import annotations

from decimal import ROUND_CEILING, Decimal, InvalidOperation
import json
import re
import shutil
import subprocess
from typing import Any

from .log import get_logger
from .models import CsiVolumeHandle, DiskRef, DiskReference, LegacyDiskName, MigrationError
from .waiting import PollingWait

GCLOUD_BINARY = "gcloud"
REQUIRED_TOOLS = (GCLOUD_BINARY,)
GIB = 1024**3

_QUANTITY_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGTPE]i|[kMGTPE])?\s*$")
_QUANTITY_MULTIPLIERS = {
    None: 1,
    "Ki": 1024,
    "Mi": 1024**2,
    "Gi": 1024**3,
    "Ti": 1024**4,
    "Pi": 1024**5,
    "Ei": 1024**6,
    "k": 10**3,
    "M": 10**6,
    "G": 10**9,
    "T": 10**12,
    "P": 10**15,
    "E": 10**18,
}

logger = get_logger(__name__)


class MissingCapabilityError(MigrationError):
    """Raised when an external tool the migration depends on is unavailable."""


class DiskNotFoundError(MigrationError):
    """Raised when a PersistentVolume carries no usable GCE disk reference."""


class ZoneDiscoveryError(MigrationError):
    """Raised when a disk cannot be found in any zone of the project."""


class DiskOperationError(MigrationError):
    def __init__(self, *, stage: str, reason: str) -> None:
        normalized_reason = reason.strip() or "unknown error"
        super().__init__(f"{stage} stage failed: {normalized_reason}")
        self.stage = stage


def verify_required_tools(tools: tuple[str, ...] = REQUIRED_TOOLS) -> None:
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise MissingCapabilityError(
            f"required command(s) not found in PATH: {', '.join(missing)}; please install them"
        )


def disk_reference_from_volume(volume: Any) -> DiskReference | None:
    spec = getattr(volume, "spec", None)
    if spec is None:
        return None

    legacy = getattr(spec, "gce_persistent_disk", None)
    pd_name = getattr(legacy, "pd_name", None) if legacy is not None else None
    if pd_name and pd_name.strip():
        return LegacyDiskName(pd_name)

    csi = getattr(spec, "csi", None)
    volume_handle = getattr(csi, "volume_handle", None) if csi is not None else None
    if volume_handle and volume_handle.strip():
        return CsiVolumeHandle(volume_handle)
    return None


def locate_disk(volume: Any) -> str:
    """Resolve a PersistentVolume to the name of its backing GCE disk."""
    volume_name = getattr(getattr(volume, "metadata", None), "name", None) or "<unknown>"
    reference = disk_reference_from_volume(volume)
    disk_name = reference.disk_name if reference is not None else None
    if not disk_name:
        raise DiskNotFoundError(f"no GCE disk found for PV {volume_name}")
    return disk_name


def gce_disk_size(quantity: str) -> str:
    """Convert a Kubernetes storage quantity to a whole-GB gcloud size, rounding up."""
    match = _QUANTITY_PATTERN.match(quantity or "")
    if match is None:
        raise DiskOperationError(stage="size", reason=f"unsupported storage quantity '{quantity}'")

    try:
        amount = Decimal(match.group(1)) * _QUANTITY_MULTIPLIERS[match.group(2)]
    except InvalidOperation as error:
        raise DiskOperationError(stage="size", reason=f"unsupported storage quantity '{quantity}'") from error

    gigabytes = (amount / GIB).to_integral_value(rounding=ROUND_CEILING)
    return f"{max(1, int(gigabytes))}GB"


class GceDiskDriver:
    def __init__(self, *, project: str) -> None:
        if not project.strip():
            raise ValueError("project is required")
        self.project = project

    def discover_zone(self, disk_name: str) -> str:
        disks = self._run_gcloud_json(
            stage="zone",
            args=[
                "compute",
                "disks",
                "list",
                f"--filter=name={disk_name}",
            ],
        )
        for disk in disks or []:
            if disk.get("name") != disk_name:
                continue
            zone = str(disk.get("zone") or "").rstrip("/").rsplit("/", 1)[-1]
            if zone:
                return zone

        raise ZoneDiscoveryError(f"disk {disk_name} not found in any zone of project {self.project}")

    def attached_users(self, disk_name: str, zone: str) -> list[str]:
        disk = self._run_gcloud_json(
            stage="describe",
            args=["compute", "disks", "describe", disk_name, f"--zone={zone}"],
        )
        return list((disk or {}).get("users") or [])

    def await_detachment(self, disk_name: str, zone: str, wait: PollingWait) -> None:
        logger.info("Waiting for disk %s to detach", disk_name)
        wait.until(
            lambda: self.attached_users(disk_name, zone),
            satisfied=lambda users: not users,
            description=f"disk {disk_name} in {zone} to detach",
        )
        logger.info("Disk %s is detached", disk_name)

    def snapshot(self, disk_name: str, zone: str, snapshot_name: str) -> None:
        logger.info("Creating snapshot: %s", snapshot_name)
        self._run_gcloud(
            stage="snapshot",
            args=[
                "compute",
                "disks",
                "snapshot",
                disk_name,
                f"--snapshot-names={snapshot_name}",
                f"--zone={zone}",
            ],
        )

    def create_disk_from_snapshot(
        self,
        *,
        snapshot_name: str,
        zone: str,
        size: str,
        disk_type: str,
        disk_name: str,
    ) -> DiskRef:
        logger.info("Creating new disk: %s", disk_name)
        self._run_gcloud(
            stage="create-disk",
            args=[
                "compute",
                "disks",
                "create",
                disk_name,
                f"--source-snapshot={snapshot_name}",
                f"--type={disk_type}",
                f"--zone={zone}",
                f"--size={gce_disk_size(size)}",
            ],
        )
        return DiskRef(name=disk_name, zone=zone)

    def _run_gcloud_json(self, *, stage: str, args: list[str]) -> Any:
        output = self._run_gcloud(stage=stage, args=[*args, "--format=json"])
        try:
            return json.loads(output) if output.strip() else None
        except json.JSONDecodeError as error:
            raise DiskOperationError(stage=stage, reason=f"unparseable gcloud output: {error}") from error

    def _run_gcloud(self, *, stage: str, args: list[str]) -> str:
        gcloud = shutil.which(GCLOUD_BINARY)
        if gcloud is None:
            raise MissingCapabilityError("gcloud is required for disk operations but was not found in PATH")

        command = [gcloud, *args, f"--project={self.project}", "--quiet"]
        logger.debug("Running: %s", " ".join(command))
        completed = subprocess.run(command, check=False, capture_output=True, text=True)
        if completed.returncode != 0:
            raise DiskOperationError(
                stage=stage,
                reason=completed.stderr.strip() or completed.stdout.strip() or "gcloud command failed",
            )
        return completed.stdout

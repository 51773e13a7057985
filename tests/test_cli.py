from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock

from click.testing import CliRunner
import pytest

from nerdy_k8s_disk_migrator import cli
from nerdy_k8s_disk_migrator.gce import ZoneDiscoveryError
from nerdy_k8s_disk_migrator.history import MigrationHistoryStore
from nerdy_k8s_disk_migrator.models import STATE_VERIFIED, WorkloadMigration

_REQUIRED = ["--project", "acme", "--storage-class", "hyperdisk-balanced", "--namespace", "apps"]


def _install_coordinator(monkeypatch: pytest.MonkeyPatch, coordinator: Mock) -> Mock:
    build = Mock(return_value=coordinator)
    monkeypatch.setattr(cli, "_build_coordinator", build)
    monkeypatch.setattr(cli, "verify_required_tools", Mock())
    return build


def test_migrate_with_named_statefulsets_runs_coordinator_and_exits_zero(monkeypatch: pytest.MonkeyPatch) -> None:
    coordinator = Mock()
    coordinator.run.return_value = [
        WorkloadMigration(namespace="apps", name="db", state=STATE_VERIFIED, original_replicas=3)
    ]
    build = _install_coordinator(monkeypatch, coordinator)

    result = CliRunner().invoke(cli.main, ["migrate", "db", "web", *_REQUIRED])

    assert result.exit_code == 0, result.output
    coordinator.run.assert_called_once_with(("db", "web"))
    options = build.call_args.args[0]
    assert options["project"] == "acme"
    assert options["namespace"] == "apps"


def test_migrate_with_fatal_migration_error_exits_one(monkeypatch: pytest.MonkeyPatch) -> None:
    coordinator = Mock()
    coordinator.run.side_effect = ZoneDiscoveryError("zone lookup failed")
    _install_coordinator(monkeypatch, coordinator)

    result = CliRunner().invoke(cli.main, ["migrate", *_REQUIRED])

    assert result.exit_code == 1
    assert "ERROR: zone lookup failed" in result.output


def test_migrate_with_keyboard_interrupt_exits_130(monkeypatch: pytest.MonkeyPatch) -> None:
    coordinator = Mock()
    coordinator.run.side_effect = KeyboardInterrupt()
    _install_coordinator(monkeypatch, coordinator)

    result = CliRunner().invoke(cli.main, ["migrate", *_REQUIRED])

    assert result.exit_code == 130
    assert "Interrupted" in result.output


def test_migrate_without_project_exits_with_usage_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NKDM_PROJECT", raising=False)

    result = CliRunner().invoke(cli.main, ["migrate", "--storage-class", "hyperdisk-balanced"])

    assert result.exit_code == 2
    assert "--project" in result.output


def test_plan_disables_history_recording(monkeypatch: pytest.MonkeyPatch) -> None:
    coordinator = Mock()
    coordinator.plan.return_value = []
    build = _install_coordinator(monkeypatch, coordinator)

    result = CliRunner().invoke(cli.main, ["plan", "db", *_REQUIRED])

    assert result.exit_code == 0, result.output
    assert build.call_args.args[0]["no_history"] is True
    assert build.call_args.kwargs == {"create_directories": False}
    coordinator.plan.assert_called_once_with(("db",))


def test_history_without_database_reports_nothing_recorded(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli.main, ["history", "--history-db", str(tmp_path / "missing.db")])

    assert result.exit_code == 0
    assert "No migration history recorded yet." in result.output


def test_history_with_recorded_rows_prints_table(tmp_path: Path) -> None:
    db_path = tmp_path / "history.db"
    store = MigrationHistoryStore(db_path)
    store.initialize()
    store.record_workload(
        WorkloadMigration(namespace="apps", name="db", state=STATE_VERIFIED, finished_at="2026-10-19T10:00:00+00:00")
    )

    result = CliRunner().invoke(cli.main, ["history", "--history-db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "Migration history" in result.output


def test_build_config_with_overrides_maps_cli_options_to_fields(tmp_path: Path) -> None:
    config = cli.build_config(
        {
            "project": "acme",
            "storage_class": "hyperdisk-balanced",
            "disk_type": "hyperdisk-extreme",
            "migration_suffix": "-new",
            "poll_interval": 2.5,
            "detach_timeout": 600.0,
            "manifest_dir": tmp_path,
            "history_db": tmp_path / "h.db",
            "no_history": False,
        },
        namespace="apps",
    )

    assert config.namespace == "apps"
    assert config.target_disk_type == "hyperdisk-extreme"
    assert config.migration_suffix == "-new"
    assert config.poll_interval_seconds == 2.5
    assert config.detach_timeout_seconds == 600.0
    assert config.manifest_dir == tmp_path
    assert config.history_db_path == tmp_path / "h.db"


def test_build_config_with_no_history_clears_history_path() -> None:
    config = cli.build_config(
        {"project": "acme", "storage_class": "hyperdisk-balanced", "no_history": True},
        namespace="apps",
    )

    assert config.history_db_path is None


def test_resolve_namespace_with_explicit_value_skips_kubeconfig(monkeypatch: pytest.MonkeyPatch) -> None:
    lookup = Mock()
    monkeypatch.setattr(cli, "current_namespace", lookup)

    assert cli.resolve_namespace(namespace=" apps ", kubeconfig_path=None, context=None, in_cluster=False) == "apps"
    lookup.assert_not_called()


def test_resolve_namespace_without_value_uses_kubeconfig_context(monkeypatch: pytest.MonkeyPatch) -> None:
    lookup = Mock(return_value="payments")
    monkeypatch.setattr(cli, "current_namespace", lookup)

    namespace = cli.resolve_namespace(namespace=None, kubeconfig_path="/tmp/kc", context="prod", in_cluster=False)

    assert namespace == "payments"
    lookup.assert_called_once_with("/tmp/kc", "prod")


def test_resolve_namespace_in_cluster_reads_service_account_namespace(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    namespace_file = tmp_path / "namespace"
    namespace_file.write_text("storage-ops\n", encoding="utf-8")
    monkeypatch.setattr(cli, "SERVICEACCOUNT_NAMESPACE_PATH", namespace_file)

    assert cli.resolve_namespace(namespace=None, kubeconfig_path=None, context=None, in_cluster=True) == "storage-ops"


def test_resolve_namespace_in_cluster_without_mounted_file_returns_default(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setattr(cli, "SERVICEACCOUNT_NAMESPACE_PATH", tmp_path / "absent")

    assert cli.resolve_namespace(namespace=None, kubeconfig_path=None, context=None, in_cluster=True) == "default"


def test_build_coordinator_without_directory_creation_leaves_manifest_dir_absent(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setattr(cli, "load_kubernetes_clients", Mock(return_value=Mock()))
    manifest_dir = tmp_path / "manifests"
    options = {
        "project": "acme",
        "storage_class": "hyperdisk-balanced",
        "namespace": "apps",
        "manifest_dir": manifest_dir,
        "no_history": True,
    }

    coordinator = cli._build_coordinator(options, create_directories=False)

    assert coordinator.config.namespace == "apps"
    assert not manifest_dir.exists()

    cli._build_coordinator(options)

    assert manifest_dir.is_dir()

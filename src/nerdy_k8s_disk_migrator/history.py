from __future__ import annotations

from pathlib import Path
import sqlite3
from typing import Any

from .models import WorkloadMigration


class MigrationHistoryStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def initialize(self) -> None:
        with sqlite3.connect(self.db_path) as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS migration_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    namespace TEXT NOT NULL,
                    workload TEXT NOT NULL,
                    workload_state TEXT NOT NULL,
                    source_claim TEXT,
                    volume_state TEXT,
                    source_disk TEXT,
                    zone TEXT,
                    snapshot_name TEXT,
                    new_disk TEXT,
                    new_volume TEXT,
                    new_claim TEXT,
                    message TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_migration_history_lookup
                ON migration_history(namespace, workload, created_at)
                """
            )
            connection.commit()

    def record_workload(self, result: WorkloadMigration) -> None:
        workload_message = "; ".join(result.warnings)
        rows = [
            (
                result.namespace,
                result.name,
                result.state,
                volume.source_claim,
                volume.state,
                volume.source_disk,
                volume.zone,
                volume.snapshot_name,
                volume.new_disk,
                volume.new_volume,
                volume.new_claim,
                volume.message or workload_message,
                result.finished_at,
            )
            for volume in result.volumes
        ]
        if not rows:
            rows.append(
                (
                    result.namespace,
                    result.name,
                    result.state,
                    None,
                    None,
                    None,
                    None,
                    None,
                    None,
                    None,
                    None,
                    workload_message,
                    result.finished_at,
                )
            )

        with sqlite3.connect(self.db_path) as connection:
            connection.executemany(
                """
                INSERT INTO migration_history (
                    namespace,
                    workload,
                    workload_state,
                    source_claim,
                    volume_state,
                    source_disk,
                    zone,
                    snapshot_name,
                    new_disk,
                    new_volume,
                    new_claim,
                    message,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            connection.commit()

    def get_recent_results(self, limit: int = 50) -> list[dict[str, Any]]:
        if limit <= 0:
            return []

        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute(
                """
                SELECT namespace, workload, workload_state, source_claim, volume_state,
                       new_claim, new_disk, snapshot_name, message, created_at
                FROM migration_history
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()

        return [
            {
                "namespace": row[0],
                "workload": row[1],
                "workload_state": row[2],
                "source_claim": row[3],
                "volume_state": row[4],
                "new_claim": row[5],
                "new_disk": row[6],
                "snapshot_name": row[7],
                "message": row[8],
                "created_at": row[9],
            }
            for row in rows
        ]

    def count_results(self) -> int:
        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute("SELECT COUNT(*) FROM migration_history")
            row = cursor.fetchone()

        return int(row[0]) if row else 0

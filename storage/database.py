"""SQLite persistence for canonical screens, workflow templates and instances."""

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from analyzer.errors import StoreError
from analyzer.schema import (
    CanonicalScreen,
    ParameterDef,
    StepSnapshot,
    TemplateStep,
    WorkflowInstance,
    WorkflowTemplate,
    now_ms,
)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS canonical_screens (
    id TEXT PRIMARY KEY,
    label TEXT NOT NULL,
    description TEXT NOT NULL,
    url_patterns_json TEXT NOT NULL,
    example_screenshot_path TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS workflow_templates (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    inputs_json TEXT NOT NULL,
    outputs_json TEXT NOT NULL,
    steps_json TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS workflow_instances (
    id TEXT PRIMARY KEY,
    template_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    parameter_values_json TEXT NOT NULL,
    extracted_values_json TEXT NOT NULL,
    step_snapshots_json TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    FOREIGN KEY (template_id) REFERENCES workflow_templates(id)
);

CREATE INDEX IF NOT EXISTS idx_workflow_instances_template_id
ON workflow_instances(template_id);
"""


class WorkflowDatabase:
    """Entity store: upsert for screens and templates, append-only instances."""

    def __init__(self, db_file: Path | str):
        self._db_file = Path(db_file)
        self._db_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._db_file

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_file, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection; commit on success, roll back and wrap errors on failure."""
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self._db_file}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self._connection() as conn:
            conn.executescript(_SCHEMA)

    # =========================================================================
    # Writes
    # =========================================================================

    def save_finalization(
        self,
        screens: list[CanonicalScreen],
        pairs: list[tuple[WorkflowTemplate, WorkflowInstance]],
    ) -> None:
        """Persist one finalization run in a single transaction.

        Screens and templates are upserted by id; instances are appended.

        Raises:
            StoreError: If any write fails. Nothing is written in that case.
        """
        for template, instance in pairs:
            if instance.template_id != template.id:
                raise StoreError(
                    f"Instance {instance.id} belongs to template {instance.template_id}, "
                    f"not {template.id}"
                )
        if not screens and not pairs:
            return
        with self._lock, self._connection() as conn:
            self._upsert_screens(conn, screens)
            for template, instance in pairs:
                self._upsert_template(conn, template)
                self._insert_instance(conn, instance)

    @staticmethod
    def _upsert_screens(conn: sqlite3.Connection, screens: list[CanonicalScreen]) -> None:
        created_at = now_ms()
        conn.executemany(
            """
            INSERT INTO canonical_screens(
                id, label, description, url_patterns_json,
                example_screenshot_path, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                label = excluded.label,
                description = excluded.description,
                url_patterns_json = excluded.url_patterns_json,
                example_screenshot_path = excluded.example_screenshot_path
            """,
            [
                (
                    s.id,
                    s.label,
                    s.description,
                    json.dumps(s.url_patterns),
                    s.example_screenshot_path,
                    created_at,
                )
                for s in screens
            ],
        )

    @staticmethod
    def _upsert_template(conn: sqlite3.Connection, template: WorkflowTemplate) -> None:
        conn.execute(
            """
            INSERT INTO workflow_templates(
                id, name, description, inputs_json, outputs_json,
                steps_json, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                inputs_json = excluded.inputs_json,
                outputs_json = excluded.outputs_json,
                steps_json = excluded.steps_json,
                updated_at = excluded.updated_at
            """,
            (
                template.id,
                template.name,
                template.description,
                json.dumps({k: v.to_dict() for k, v in template.inputs.items()}),
                json.dumps({k: v.to_dict() for k, v in template.outputs.items()}),
                json.dumps([s.to_dict() for s in template.steps]),
                template.created_at,
                template.updated_at,
            ),
        )

    @staticmethod
    def _insert_instance(conn: sqlite3.Connection, instance: WorkflowInstance) -> None:
        conn.execute(
            """
            INSERT INTO workflow_instances(
                id, template_id, session_id, parameter_values_json,
                extracted_values_json, step_snapshots_json, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                instance.id,
                instance.template_id,
                instance.session_id,
                json.dumps(instance.parameter_values),
                json.dumps(instance.extracted_values),
                json.dumps([s.to_dict() for s in instance.step_snapshots]),
                instance.created_at,
            ),
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def list_screens(self) -> list[CanonicalScreen]:
        with self._lock, self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM canonical_screens ORDER BY created_at DESC, id ASC"
            ).fetchall()
        return [
            CanonicalScreen(
                id=row["id"],
                label=row["label"],
                description=row["description"],
                url_patterns=json.loads(row["url_patterns_json"]),
                example_screenshot_path=row["example_screenshot_path"],
            )
            for row in rows
        ]

    def list_templates(self) -> list[WorkflowTemplate]:
        with self._lock, self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM workflow_templates ORDER BY updated_at DESC, id ASC"
            ).fetchall()
        return [self._row_to_template(row) for row in rows]

    def get_template(self, template_id: str) -> WorkflowTemplate | None:
        with self._lock, self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM workflow_templates WHERE id = ?",
                (template_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_template(row)

    def list_instances(self, template_id: str | None = None) -> list[WorkflowInstance]:
        with self._lock, self._connection() as conn:
            if template_id is None:
                rows = conn.execute(
                    "SELECT * FROM workflow_instances ORDER BY created_at DESC, id ASC"
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM workflow_instances
                    WHERE template_id = ?
                    ORDER BY created_at DESC, id ASC
                    """,
                    (template_id,),
                ).fetchall()
        return [self._row_to_instance(row) for row in rows]

    def list_templates_with_instances(
        self,
    ) -> list[tuple[WorkflowTemplate, list[WorkflowInstance]]]:
        """All templates, each paired with the instances that reference it."""
        templates = self.list_templates()
        by_template: dict[str, list[WorkflowInstance]] = {}
        for instance in self.list_instances():
            by_template.setdefault(instance.template_id, []).append(instance)
        return [(t, by_template.get(t.id, [])) for t in templates]

    def clear_all(self) -> None:
        """Drop and recreate all tables."""
        with self._lock, self._connection() as conn:
            conn.executescript(
                """
                DROP TABLE IF EXISTS workflow_instances;
                DROP TABLE IF EXISTS workflow_templates;
                DROP TABLE IF EXISTS canonical_screens;
                """
            )
            conn.executescript(_SCHEMA)

    @staticmethod
    def _row_to_template(row: sqlite3.Row) -> WorkflowTemplate:
        return WorkflowTemplate(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            inputs={k: ParameterDef.from_dict(v) for k, v in json.loads(row["inputs_json"]).items()},
            outputs={k: ParameterDef.from_dict(v) for k, v in json.loads(row["outputs_json"]).items()},
            steps=[TemplateStep.from_dict(s) for s in json.loads(row["steps_json"])],
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
        )

    @staticmethod
    def _row_to_instance(row: sqlite3.Row) -> WorkflowInstance:
        return WorkflowInstance(
            id=row["id"],
            template_id=row["template_id"],
            session_id=row["session_id"],
            parameter_values=json.loads(row["parameter_values_json"]),
            extracted_values=json.loads(row["extracted_values_json"]),
            step_snapshots=[StepSnapshot.from_dict(s) for s in json.loads(row["step_snapshots_json"])],
            created_at=int(row["created_at"]),
        )

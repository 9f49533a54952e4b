from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from agency_workflow.app.models import AuditEventRecord, Stage, utc_now


def _normalize_database_url(database_url: str) -> str:
    value = database_url.strip()
    if value.startswith("sqlite:///"):
        sqlite_path = value[len("sqlite:///") :].split("?", 1)[0]
        if sqlite_path and sqlite_path != ":memory:":
            path = Path(sqlite_path)
            if path.parent:
                path.parent.mkdir(parents=True, exist_ok=True)
        return value
    if "://" in value:
        return value
    path = Path(value)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{str(path).replace(chr(92), '/')}"


class SqlitePersistence:
    """
    Snapshot and stage audit storage. Uses SQLAlchemy and supports both SQLite and PostgreSQL URLs.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = _normalize_database_url(database_url)
        self._lock = Lock()
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
        )
        self.metadata = MetaData()
        self.state_snapshots = Table(
            "state_snapshots",
            self.metadata,
            Column("id", String(50), primary_key=True),
            Column("payload_json", Text, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self.stage_audit_events = Table(
            "stage_audit_events",
            self.metadata,
            Column("id", String(255), primary_key=True),
            Column("application_id", String(120), nullable=False, index=True),
            Column("from_stage", String(50), nullable=True),
            Column("to_stage", String(50), nullable=False),
            Column("reason", Text, nullable=False),
            Column("created_at_utc", DateTime, nullable=False),
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.metadata.create_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def save_snapshot(self, payload: dict) -> None:
        with self._lock:
            serialized = json.dumps(payload)
            now = utc_now()
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(self.state_snapshots.c.id).where(self.state_snapshots.c.id == "default")
                ).first()
                if existing:
                    conn.execute(
                        self.state_snapshots.update()
                        .where(self.state_snapshots.c.id == "default")
                        .values(payload_json=serialized, updated_at_utc=now)
                    )
                else:
                    conn.execute(
                        self.state_snapshots.insert().values(
                            id="default",
                            payload_json=serialized,
                            updated_at_utc=now,
                        )
                    )

    def load_snapshot(self) -> Optional[dict]:
        with self._lock:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(self.state_snapshots.c.payload_json).where(
                        self.state_snapshots.c.id == "default"
                    )
                ).first()
            if not row:
                return None
            return json.loads(row[0])

    def insert_audit_event(self, record: AuditEventRecord) -> None:
        with self._lock:
            with self.engine.begin() as conn:
                conn.execute(
                    self.stage_audit_events.insert().values(
                        id=record.id,
                        application_id=record.application_id,
                        from_stage=record.from_stage.value if record.from_stage else None,
                        to_stage=record.to_stage.value,
                        reason=record.reason,
                        created_at_utc=record.created_at_utc,
                    )
                )

    def list_audit_events(
        self, application_id: Optional[str] = None, limit: int = 100
    ) -> list[AuditEventRecord]:
        safe_limit = max(1, min(limit, 500))
        query = select(
            self.stage_audit_events.c.id,
            self.stage_audit_events.c.application_id,
            self.stage_audit_events.c.from_stage,
            self.stage_audit_events.c.to_stage,
            self.stage_audit_events.c.reason,
            self.stage_audit_events.c.created_at_utc,
        )
        if application_id is not None:
            query = query.where(self.stage_audit_events.c.application_id == application_id)
        query = query.order_by(self.stage_audit_events.c.created_at_utc.asc()).limit(safe_limit)
        with self._lock:
            with self.engine.connect() as conn:
                rows = conn.execute(query).all()
        return [
            AuditEventRecord(
                id=row.id,
                application_id=row.application_id,
                from_stage=Stage(row.from_stage) if row.from_stage else None,
                to_stage=Stage(row.to_stage),
                reason=row.reason,
                created_at_utc=row.created_at_utc or datetime.utcnow(),
            )
            for row in rows
        ]

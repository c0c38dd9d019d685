from __future__ import annotations

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


class StateStoreUnavailableError(Exception):
    pass


def normalize_database_url(database_url: str) -> str:
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


class DocumentPersistence:
    """
    Key/value table holding one serialized JSON document per key.
    Works with any SQLAlchemy URL (SQLite locally, PostgreSQL in production).
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = normalize_database_url(database_url)
        self._lock = Lock()
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
        )
        self.metadata = MetaData()
        self.state_documents = Table(
            "state_documents",
            self.metadata,
            Column("key", String(120), primary_key=True),
            Column("payload_json", Text, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        try:
            self.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StateStoreUnavailableError(str(exc)) from exc

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def get_raw(self, key: str) -> Optional[str]:
        try:
            with self._lock:
                with self.engine.connect() as conn:
                    row = conn.execute(
                        select(self.state_documents.c.payload_json).where(
                            self.state_documents.c.key == key
                        )
                    ).first()
        except SQLAlchemyError as exc:
            raise StateStoreUnavailableError(f"failed to read {key}: {exc}") from exc
        if not row:
            return None
        return row[0]

    def put_raw(self, key: str, payload: str) -> None:
        now = datetime.utcnow()
        try:
            with self._lock:
                with self.engine.begin() as conn:
                    existing = conn.execute(
                        select(self.state_documents.c.key).where(
                            self.state_documents.c.key == key
                        )
                    ).first()
                    if existing:
                        conn.execute(
                            self.state_documents.update()
                            .where(self.state_documents.c.key == key)
                            .values(payload_json=payload, updated_at_utc=now)
                        )
                    else:
                        conn.execute(
                            self.state_documents.insert().values(
                                key=key,
                                payload_json=payload,
                                updated_at_utc=now,
                            )
                        )
        except SQLAlchemyError as exc:
            raise StateStoreUnavailableError(f"failed to write {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            with self._lock:
                with self.engine.begin() as conn:
                    conn.execute(
                        self.state_documents.delete().where(self.state_documents.c.key == key)
                    )
        except SQLAlchemyError as exc:
            raise StateStoreUnavailableError(f"failed to delete {key}: {exc}") from exc

# services/api/adapters/sqlite/__init__.py
from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    event,
    insert,
    literal_column,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine

from adapters.base import MEMO_UPDATABLE_FIELDS, MemoNotFound

# ---- Engine (SQLite) with WAL & pragmas -------------------------------------

def _ensure_dir(path: str):
    d = os.path.dirname(path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

def make_engine(db_url: str) -> Engine:
    # Create data dir if sqlite file
    if db_url.startswith("sqlite:///"):
        file_path = db_url.replace("sqlite:///", "", 1)
        _ensure_dir(file_path)

    engine = create_engine(db_url, future=True, pool_pre_ping=True)

    # Apply pragmas per-connection
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore
        if isinstance(dbapi_connection, sqlite3.Connection):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute("PRAGMA temp_store=MEMORY;")
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    return engine

# ---- Schema via SQLAlchemy Core ---------------------------------------------

metadata = MetaData()

memos = Table(
    "memos",
    metadata,
    Column("memo_id", String, primary_key=True),
    Column("user_id", String, nullable=False),
    Column("user_name", String, nullable=True),
    Column("title", Text, nullable=False),
    Column("blocks", Text, nullable=False, default="[]"),  # JSON list of block dicts
    Column("is_public", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)

user_profiles = Table(
    "user_profiles",
    metadata,
    Column("uid", String, primary_key=True),
    Column("display_name", String, nullable=False, default=""),
    Column("photo_url", Text, nullable=True),
    Column("bio", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)

Index("idx_memos_owner", memos.c.user_id, memos.c.created_at)
Index("idx_memos_public", memos.c.is_public, memos.c.created_at)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    # SQLite hands back naive datetimes; everything we write is UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _memo_row(row: Any) -> Dict[str, Any]:
    data = dict(row)
    data["blocks"] = json.loads(data.get("blocks") or "[]")
    data["is_public"] = bool(data.get("is_public"))
    data["created_at"] = _iso(data.get("created_at"))
    data["updated_at"] = _iso(data.get("updated_at"))
    return data

# ---- Adapter implementation --------------------------------------------------

@dataclass(frozen=True)
class SqliteAdapter:
    engine: Engine

    @classmethod
    def from_url(cls, db_url: str = "sqlite:///data/ashiato.db") -> "SqliteAdapter":
        eng = make_engine(db_url)
        metadata.create_all(eng)
        return cls(engine=eng)

    # Memos
    def create_memo(
        self,
        user_id: str,
        title: str,
        blocks: List[Dict[str, Any]],
        is_public: bool = False,
        user_name: Optional[str] = None,
    ) -> str:
        memo_id = str(uuid4())
        with self.engine.begin() as conn:
            conn.execute(
                insert(memos).values(
                    memo_id=memo_id,
                    user_id=user_id,
                    user_name=user_name,
                    title=title,
                    blocks=json.dumps(blocks, ensure_ascii=False),
                    is_public=bool(is_public),
                    created_at=_utcnow(),
                )
            )
        return memo_id

    def get_memo(self, memo_id: str) -> Optional[Dict[str, Any]]:
        with self.engine.begin() as conn:
            row = conn.execute(select(memos).where(memos.c.memo_id == memo_id)).mappings().first()
            return _memo_row(row) if row else None

    def update_memo(self, memo_id: str, updates: Dict[str, Any]) -> None:
        values = {k: v for k, v in updates.items() if k in MEMO_UPDATABLE_FIELDS}
        if "blocks" in values:
            values["blocks"] = json.dumps(values["blocks"], ensure_ascii=False)
        if "is_public" in values:
            values["is_public"] = bool(values["is_public"])
        values["updated_at"] = _utcnow()

        with self.engine.begin() as conn:
            res = conn.execute(update(memos).where(memos.c.memo_id == memo_id).values(**values))
            if res.rowcount == 0:
                raise MemoNotFound(memo_id)

    def delete_memo(self, memo_id: str) -> None:
        with self.engine.begin() as conn:
            res = conn.execute(delete(memos).where(memos.c.memo_id == memo_id))
            if res.rowcount == 0:
                raise MemoNotFound(memo_id)

    def list_memos_by_owner(self, user_id: str) -> List[Dict[str, Any]]:
        with self.engine.begin() as conn:
            q = (
                select(memos)
                .where(memos.c.user_id == user_id)
                .order_by(memos.c.created_at.desc(), literal_column("rowid").desc())
            )
            return [_memo_row(r) for r in conn.execute(q).mappings().all()]

    def list_public_memos(self) -> List[Dict[str, Any]]:
        with self.engine.begin() as conn:
            q = (
                select(memos)
                .where(memos.c.is_public.is_(True))
                .order_by(memos.c.created_at.desc(), literal_column("rowid").desc())
            )
            return [_memo_row(r) for r in conn.execute(q).mappings().all()]

    # Profiles
    def get_user_profile(self, uid: str) -> Optional[Dict[str, Any]]:
        with self.engine.begin() as conn:
            row = conn.execute(select(user_profiles).where(user_profiles.c.uid == uid)).mappings().first()
            if not row:
                return None
            data = dict(row)
            data["created_at"] = _iso(data.get("created_at"))
            data["updated_at"] = _iso(data.get("updated_at"))
            return data

    def save_user_profile(self, uid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        values = {k: data[k] for k in ("display_name", "photo_url", "bio") if k in data}
        now = _utcnow()
        with self.engine.begin() as conn:
            exists = conn.execute(select(user_profiles.c.uid).where(user_profiles.c.uid == uid)).first()
            if exists:
                conn.execute(
                    update(user_profiles)
                    .where(user_profiles.c.uid == uid)
                    .values(updated_at=now, **values)
                )
            else:
                values.setdefault("display_name", "")
                conn.execute(
                    insert(user_profiles).values(uid=uid, created_at=now, updated_at=now, **values)
                )
        return self.get_user_profile(uid) or {}

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

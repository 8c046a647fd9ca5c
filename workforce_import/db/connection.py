from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg2

from ..config.loader import DatabaseConfig, ImportConfig
from .postgres_store import PostgresEmployeeStore
from .store import EmployeeStore, InMemoryEmployeeStore

"""Store selection and PostgreSQL connection handling.

接続情報の解決優先順位 (.env を最優先):
    1. `.env` で読み込まれた環境変数 (CLI 冒頭で上書きロード済み)
       - DATABASE_URL / PGDSN があれば DSN 全体をそのまま使用
       - 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
    2. config/import.yml の database セクション (不足分のフォールバック)
"""

__all__ = [
    "resolve_dsn",
    "open_store",
]

logger = logging.getLogger(__name__)


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def _memory_store(cfg: ImportConfig) -> InMemoryEmployeeStore:
    return InMemoryEmployeeStore(options=cfg.dropdown_options)


@contextmanager
def open_store(cfg: ImportConfig) -> Iterator[tuple[EmployeeStore, str]]:
    """Yield ``(store, mode)`` where mode is ``live`` or ``memory``.

    DISABLE_DB_CONNECT=1 or ``store: memory`` selects the in-memory store
    directly. A failing PostgreSQL connection falls back to it as well.
    """
    if os.getenv("DISABLE_DB_CONNECT") == "1" or cfg.store == "memory":
        logger.debug("using in-memory store (store=%s)", cfg.store)
        yield _memory_store(cfg), "memory"
        return

    try:
        conn = psycopg2.connect(resolve_dsn(cfg.database))
    except psycopg2.Error as e:
        # テストで警告抑制したい場合は SUPPRESS_DB_WARNING=1
        if os.getenv("SUPPRESS_DB_WARNING") == "1":
            logger.debug("DB connection failed -> fallback to in-memory store: %s", e)
        else:
            logger.info("DB connection failed -> fallback to in-memory store: %s", e)
        yield _memory_store(cfg), "memory"
        return

    conn.autocommit = False  # 明示トランザクション境界 (1 レコード 1 トランザクション)
    store = PostgresEmployeeStore(conn)
    try:
        # 新規 DB でもテーブルを用意 (DDL は IF NOT EXISTS)
        store.ensure_schema()
        yield store, "live"
    finally:
        if not conn.closed:
            try:
                conn.rollback()
            finally:
                conn.close()

from __future__ import annotations

import sqlite3
from pathlib import Path


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db(db_path: str) -> None:
    parent = Path(db_path).parent
    if str(parent):
        parent.mkdir(parents=True, exist_ok=True)
    conn = connect(db_path)
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS tenants (
            id TEXT PRIMARY KEY,
            slug TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
        """
    )
    # Migração leve para colunas novas
    cols_tenant = [r[1] for r in cur.execute("PRAGMA table_info(tenants);").fetchall()]
    if "timezone" not in cols_tenant:
        cur.execute("ALTER TABLE tenants ADD COLUMN timezone TEXT NOT NULL DEFAULT 'America/Sao_Paulo'")
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            email TEXT NOT NULL,
            nome TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'USER',
            area TEXT NOT NULL DEFAULT '',
            active INTEGER NOT NULL DEFAULT 1,
            can_delete INTEGER NOT NULL DEFAULT 0,
            password_hash TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            UNIQUE(tenant_id, email),
            FOREIGN KEY(tenant_id) REFERENCES tenants(id)
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            competencia_ym TEXT NOT NULL,
            recorrencia TEXT NOT NULL,
            tipo TEXT NOT NULL,
            atividade TEXT NOT NULL,
            responsavel_email TEXT NOT NULL,
            responsavel_nome TEXT NOT NULL DEFAULT '',
            area TEXT NOT NULL DEFAULT '',
            prazo TEXT,
            realizado TEXT,
            status TEXT NOT NULL,
            observacoes TEXT,
            created_at TEXT NOT NULL,
            created_by TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            updated_by TEXT NOT NULL,
            deleted_at TEXT,
            deleted_by TEXT,
            FOREIGN KEY(tenant_id) REFERENCES tenants(id)
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_tenant ON tasks(tenant_id)")
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS rules (
            id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            area TEXT NOT NULL,
            allowed_recorrencias TEXT NOT NULL DEFAULT '[]',
            updated_at TEXT NOT NULL,
            updated_by TEXT NOT NULL,
            UNIQUE(tenant_id, area),
            FOREIGN KEY(tenant_id) REFERENCES tenants(id)
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS lookups (
            id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            category TEXT NOT NULL,
            value TEXT NOT NULL,
            order_index INTEGER NOT NULL DEFAULT 9999,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            UNIQUE(tenant_id, category, value),
            FOREIGN KEY(tenant_id) REFERENCES tenants(id)
        )
        """
    )
    conn.commit()
    conn.close()

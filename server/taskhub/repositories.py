from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .db import connect
from .models import Role, Rule, Task, Tenant, User, safe_lower_email
from .security import hash_password
from .status import format_date, load_zone, parse_date


DEFAULT_LOOKUPS: Dict[str, List[str]] = {
    "AREA": ["TI", "Financeiro", "RH", "Operações", "Comercial"],
    "RECORRENCIA": ["Diário", "Semanal", "Quinzenal", "Mensal", "Trimestral", "Semestral", "Anual", "Pontual"],
    "TIPO": ["Rotina", "Projeto", "Reunião", "Auditoria", "Treinamento"],
}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_id() -> str:
    return str(uuid.uuid4())


def _row_to_tenant(row: sqlite3.Row) -> Tenant:
    return Tenant(
        id=str(row["id"]),
        slug=str(row["slug"]),
        name=str(row["name"]),
        active=bool(row["active"]),
        timezone=str(row["timezone"] or "America/Sao_Paulo"),
    )


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        email=safe_lower_email(row["email"]),
        nome=str(row["nome"] or ""),
        role=Role.parse(row["role"]),
        area=str(row["area"] or ""),
        active=bool(row["active"]),
        can_delete=bool(row["can_delete"]),
    )


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        competencia_ym=str(row["competencia_ym"] or ""),
        recorrencia=str(row["recorrencia"] or ""),
        tipo=str(row["tipo"] or ""),
        atividade=str(row["atividade"] or ""),
        responsavel_email=safe_lower_email(row["responsavel_email"]),
        responsavel_nome=str(row["responsavel_nome"] or ""),
        area=str(row["area"] or ""),
        prazo=parse_date(row["prazo"]),
        realizado=parse_date(row["realizado"]),
        status=str(row["status"] or ""),
        observacoes=str(row["observacoes"] or ""),
        created_at=str(row["created_at"] or ""),
        created_by=str(row["created_by"] or ""),
        updated_at=str(row["updated_at"] or ""),
        updated_by=str(row["updated_by"] or ""),
        deleted_at=row["deleted_at"],
        deleted_by=row["deleted_by"],
    )


def _row_to_rule(row: sqlite3.Row) -> Rule:
    try:
        allowed = json.loads(row["allowed_recorrencias"] or "[]")
    except ValueError:
        allowed = []
    if not isinstance(allowed, list):
        allowed = []
    return Rule(
        tenant_id=str(row["tenant_id"]),
        area=str(row["area"]),
        allowed_recorrencias=[str(x) for x in allowed],
        updated_at=str(row["updated_at"] or ""),
        updated_by=str(row["updated_by"] or ""),
    )


class TenantRepository:
    def __init__(self, db_path: str):
        self.db_path = db_path

    def get_active_by_slug(self, slug: str) -> Optional[Tenant]:
        conn = connect(self.db_path)
        row = conn.execute(
            "SELECT id, slug, name, active, timezone FROM tenants WHERE slug = ? AND active = 1",
            ((slug or "").strip().lower(),),
        ).fetchone()
        conn.close()
        return _row_to_tenant(row) if row else None

    def get(self, tenant_id: str) -> Optional[Tenant]:
        conn = connect(self.db_path)
        row = conn.execute(
            "SELECT id, slug, name, active, timezone FROM tenants WHERE id = ?",
            (str(tenant_id),),
        ).fetchone()
        conn.close()
        return _row_to_tenant(row) if row else None

    def create_with_admin(
        self,
        *,
        slug: str,
        name: str,
        admin_email: str,
        admin_password: str,
        admin_nome: str = "Administrador",
        admin_area: str = "TI",
        timezone_name: str = "America/Sao_Paulo",
    ) -> Tenant:
        """Cria tenant, admin inicial e listas padrao numa unica transacao."""
        slug_norm = "".join(ch if (ch.isalnum() and ch.isascii()) or ch == "-" else "-" for ch in (slug or "").strip().lower())
        if not slug_norm or not (name or "").strip():
            raise ValueError("slug e name sao obrigatorios")
        timezone_name = str(timezone_name or "").strip()
        load_zone(timezone_name)
        tenant_id = new_id()
        now = now_iso()
        conn = connect(self.db_path)
        try:
            with conn:
                conn.execute(
                    "INSERT INTO tenants (id, slug, name, active, created_at, timezone) VALUES (?, ?, ?, 1, ?, ?)",
                    (tenant_id, slug_norm, name.strip(), now, timezone_name),
                )
                conn.execute(
                    """
                    INSERT INTO users (id, tenant_id, email, nome, role, area, active, can_delete, password_hash, created_at)
                    VALUES (?, ?, ?, ?, 'ADMIN', ?, 1, 1, ?, ?)
                    """,
                    (new_id(), tenant_id, safe_lower_email(admin_email), admin_nome, admin_area, hash_password(admin_password), now),
                )
                order = 0
                for category, values in DEFAULT_LOOKUPS.items():
                    for value in values:
                        conn.execute(
                            """
                            INSERT OR IGNORE INTO lookups (id, tenant_id, category, value, order_index, created_at)
                            VALUES (?, ?, ?, ?, ?, ?)
                            """,
                            (new_id(), tenant_id, category, value, order, now),
                        )
                        order += 1
        finally:
            conn.close()
        return Tenant(id=tenant_id, slug=slug_norm, name=name.strip(), active=True, timezone=timezone_name)


class UserRepository:
    def __init__(self, db_path: str):
        self.db_path = db_path

    def list(self, tenant_id: str, *, only_active: bool = True) -> List[User]:
        conn = connect(self.db_path)
        q = "SELECT * FROM users WHERE tenant_id = ?"
        if only_active:
            q += " AND active = 1"
        q += " ORDER BY nome COLLATE NOCASE"
        rows = conn.execute(q, (str(tenant_id),)).fetchall()
        conn.close()
        return [_row_to_user(r) for r in rows]

    def get(self, tenant_id: str, user_id: str) -> Optional[User]:
        conn = connect(self.db_path)
        row = conn.execute(
            "SELECT * FROM users WHERE tenant_id = ? AND id = ?",
            (str(tenant_id), str(user_id)),
        ).fetchone()
        conn.close()
        return _row_to_user(row) if row else None

    def get_by_email(self, tenant_id: str, email: str) -> Optional[User]:
        conn = connect(self.db_path)
        row = conn.execute(
            "SELECT * FROM users WHERE tenant_id = ? AND email = ?",
            (str(tenant_id), safe_lower_email(email)),
        ).fetchone()
        conn.close()
        return _row_to_user(row) if row else None

    def get_password_hash(self, tenant_id: str, email: str) -> str:
        conn = connect(self.db_path)
        row = conn.execute(
            "SELECT password_hash FROM users WHERE tenant_id = ? AND email = ?",
            (str(tenant_id), safe_lower_email(email)),
        ).fetchone()
        conn.close()
        return str(row["password_hash"] or "") if row else ""

    def set_password_hash(self, tenant_id: str, user_id: str, password_hash: str) -> None:
        conn = connect(self.db_path)
        conn.execute(
            "UPDATE users SET password_hash = ? WHERE tenant_id = ? AND id = ?",
            (password_hash, str(tenant_id), str(user_id)),
        )
        conn.commit()
        conn.close()

    def create(
        self,
        *,
        tenant_id: str,
        email: str,
        nome: str,
        role: Role,
        area: str,
        can_delete: bool = False,
        password: Optional[str] = None,
    ) -> User:
        email_norm = safe_lower_email(email)
        if not email_norm or not (nome or "").strip():
            raise ValueError("Nome e email sao obrigatorios")
        user_id = new_id()
        conn = connect(self.db_path)
        conn.execute(
            """
            INSERT INTO users (id, tenant_id, email, nome, role, area, active, can_delete, password_hash, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
            """,
            (
                user_id,
                str(tenant_id),
                email_norm,
                nome.strip(),
                role.value,
                (area or "").strip(),
                1 if can_delete else 0,
                hash_password(password) if password else "",
                now_iso(),
            ),
        )
        conn.commit()
        conn.close()
        return User(
            id=user_id,
            tenant_id=str(tenant_id),
            email=email_norm,
            nome=nome.strip(),
            role=role,
            area=(area or "").strip(),
            active=True,
            can_delete=bool(can_delete),
        )

    def update(
        self,
        tenant_id: str,
        email: str,
        *,
        nome: Optional[str] = None,
        role: Optional[Role] = None,
        area: Optional[str] = None,
        can_delete: Optional[bool] = None,
        active: Optional[bool] = None,
        password: Optional[str] = None,
    ) -> Optional[User]:
        """Atualiza so os campos informados; None mantem o valor atual."""
        sets: List[str] = []
        params: List[object] = []
        if nome is not None:
            if not nome.strip():
                raise ValueError("Nome nao pode ficar vazio")
            sets.append("nome = ?")
            params.append(nome.strip())
        if role is not None:
            sets.append("role = ?")
            params.append(role.value)
        if area is not None:
            sets.append("area = ?")
            params.append(area.strip())
        if can_delete is not None:
            sets.append("can_delete = ?")
            params.append(1 if can_delete else 0)
        if active is not None:
            sets.append("active = ?")
            params.append(1 if active else 0)
        if password:
            sets.append("password_hash = ?")
            params.append(hash_password(password))
        if sets:
            conn = connect(self.db_path)
            conn.execute(
                f"UPDATE users SET {', '.join(sets)} WHERE tenant_id = ? AND email = ?",
                (*params, str(tenant_id), safe_lower_email(email)),
            )
            conn.commit()
            conn.close()
        return self.get_by_email(tenant_id, email)

    def set_active(self, tenant_id: str, email: str, active: bool) -> Optional[User]:
        return self.update(tenant_id, email, active=active)


class TaskStore:
    """Colaborador de armazenamento: operacoes por registro, sem regra de negocio.

    list_tasks devolve tudo (todos os tenants, incluindo excluidas); filtrar e
    papel do TaskService.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def list_tasks(self) -> List[Task]:
        conn = connect(self.db_path)
        rows = conn.execute(
            "SELECT * FROM tasks ORDER BY competencia_ym DESC, prazo ASC, created_at DESC"
        ).fetchall()
        conn.close()
        return [_row_to_task(r) for r in rows]

    def insert_task(self, task: Task) -> Task:
        conn = connect(self.db_path)
        conn.execute(
            """
            INSERT INTO tasks (id, tenant_id, competencia_ym, recorrencia, tipo, atividade,
                responsavel_email, responsavel_nome, area, prazo, realizado, status, observacoes,
                created_at, created_by, updated_at, updated_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.id,
                task.tenant_id,
                task.competencia_ym,
                task.recorrencia,
                task.tipo,
                task.atividade,
                task.responsavel_email,
                task.responsavel_nome,
                task.area,
                format_date(task.prazo) or None,
                format_date(task.realizado) or None,
                task.status,
                task.observacoes or None,
                task.created_at,
                task.created_by,
                task.updated_at,
                task.updated_by,
            ),
        )
        conn.commit()
        conn.close()
        return task

    def update_task(self, task: Task) -> Optional[Task]:
        conn = connect(self.db_path)
        cur = conn.execute(
            """
            UPDATE tasks SET
                competencia_ym = ?, recorrencia = ?, tipo = ?, atividade = ?,
                responsavel_email = ?, responsavel_nome = ?, area = ?,
                prazo = ?, realizado = ?, status = ?, observacoes = ?,
                updated_at = ?, updated_by = ?
            WHERE id = ? AND tenant_id = ? AND deleted_at IS NULL
            """,
            (
                task.competencia_ym,
                task.recorrencia,
                task.tipo,
                task.atividade,
                task.responsavel_email,
                task.responsavel_nome,
                task.area,
                format_date(task.prazo) or None,
                format_date(task.realizado) or None,
                task.status,
                task.observacoes or None,
                task.updated_at,
                task.updated_by,
                task.id,
                task.tenant_id,
            ),
        )
        conn.commit()
        changed = cur.rowcount
        conn.close()
        return task if changed else None

    def soft_delete_task(self, tenant_id: str, task_id: str, deleted_by: str, deleted_at: str) -> bool:
        conn = connect(self.db_path)
        cur = conn.execute(
            """
            UPDATE tasks SET deleted_at = ?, deleted_by = ?
            WHERE id = ? AND tenant_id = ? AND deleted_at IS NULL
            """,
            (deleted_at, deleted_by, str(task_id), str(tenant_id)),
        )
        conn.commit()
        changed = cur.rowcount
        conn.close()
        return bool(changed)


class RuleRepository:
    def __init__(self, db_path: str):
        self.db_path = db_path

    def list(self, tenant_id: str, area: Optional[str] = None) -> List[Rule]:
        conn = connect(self.db_path)
        if area is None:
            rows = conn.execute(
                "SELECT * FROM rules WHERE tenant_id = ? ORDER BY area ASC",
                (str(tenant_id),),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM rules WHERE tenant_id = ? AND area = ?",
                (str(tenant_id), area),
            ).fetchall()
        conn.close()
        return [_row_to_rule(r) for r in rows]

    def get(self, tenant_id: str, area: str) -> Optional[Rule]:
        conn = connect(self.db_path)
        row = conn.execute(
            "SELECT * FROM rules WHERE tenant_id = ? AND area = ?",
            (str(tenant_id), str(area or "")),
        ).fetchone()
        conn.close()
        return _row_to_rule(row) if row else None

    def upsert(self, *, tenant_id: str, area: str, allowed: List[str], updated_by: str) -> Rule:
        cleaned: List[str] = []
        for item in allowed:
            value = str(item or "").strip()
            if value and value not in cleaned:
                cleaned.append(value)
        now = now_iso()
        conn = connect(self.db_path)
        conn.execute(
            """
            INSERT INTO rules (id, tenant_id, area, allowed_recorrencias, updated_at, updated_by)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(tenant_id, area) DO UPDATE SET
                allowed_recorrencias = excluded.allowed_recorrencias,
                updated_at = excluded.updated_at,
                updated_by = excluded.updated_by
            """,
            (new_id(), str(tenant_id), area, json.dumps(cleaned, ensure_ascii=False), now, updated_by),
        )
        conn.commit()
        conn.close()
        return Rule(tenant_id=str(tenant_id), area=area, allowed_recorrencias=cleaned, updated_at=now, updated_by=updated_by)


class LookupRepository:
    def __init__(self, db_path: str):
        self.db_path = db_path

    def list(self, tenant_id: str) -> Dict[str, List[str]]:
        conn = connect(self.db_path)
        rows = conn.execute(
            """
            SELECT category, value FROM lookups
            WHERE tenant_id = ?
            ORDER BY category ASC, order_index ASC, value COLLATE NOCASE
            """,
            (str(tenant_id),),
        ).fetchall()
        conn.close()
        out: Dict[str, List[str]] = {}
        for r in rows:
            out.setdefault(str(r["category"]), []).append(str(r["value"]))
        return out

    def add(self, tenant_id: str, category: str, value: str, order: Optional[int] = None) -> Dict[str, List[str]]:
        cat = (category or "").strip().upper()
        val = (value or "").strip()
        if not cat or not val:
            raise ValueError("Categoria e valor sao obrigatorios")
        conn = connect(self.db_path)
        on_conflict = "DO UPDATE SET order_index = excluded.order_index" if order is not None else "DO NOTHING"
        if order is None:
            row = conn.execute(
                "SELECT COALESCE(MAX(order_index), -1) + 1 AS next FROM lookups WHERE tenant_id = ? AND category = ?",
                (str(tenant_id), cat),
            ).fetchone()
            order = int(row["next"])
        conn.execute(
            f"""
            INSERT INTO lookups (id, tenant_id, category, value, order_index, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(tenant_id, category, value) {on_conflict}
            """,
            (new_id(), str(tenant_id), cat, val, int(order), now_iso()),
        )
        conn.commit()
        conn.close()
        return self.list(tenant_id)

    def rename(self, tenant_id: str, category: str, old_value: str, new_value: str) -> Optional[Dict[str, List[str]]]:
        """None quando o valor antigo nao existe na categoria."""
        cat = (category or "").strip().upper()
        old = (old_value or "").strip()
        new = (new_value or "").strip()
        if not cat or not old or not new:
            raise ValueError("Categoria, valor antigo e novo valor sao obrigatorios")
        conn = connect(self.db_path)
        try:
            cur = conn.execute(
                "UPDATE lookups SET value = ? WHERE tenant_id = ? AND category = ? AND value = ?",
                (new, str(tenant_id), cat, old),
            )
            conn.commit()
            changed = cur.rowcount
        except sqlite3.IntegrityError as exc:
            raise ValueError(f'Valor "{new}" ja existe em {cat}') from exc
        finally:
            conn.close()
        if not changed:
            return None
        return self.list(tenant_id)

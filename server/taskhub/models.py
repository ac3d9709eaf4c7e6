from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import List, Optional

from .status import DatePatch, format_date


class Role(str, Enum):
    USER = "USER"
    LEADER = "LEADER"
    ADMIN = "ADMIN"

    @classmethod
    def parse(cls, value: object) -> "Role":
        raw = str(value or "").strip().upper()
        try:
            return cls(raw)
        except ValueError:
            raise ValueError(f"Role invalido: {value!r}") from None


def safe_lower_email(email: Optional[str]) -> str:
    return str(email or "").strip().lower()


@dataclass(frozen=True)
class Tenant:
    id: str
    slug: str
    name: str
    active: bool = True
    timezone: str = "America/Sao_Paulo"


@dataclass(frozen=True)
class User:
    id: str
    tenant_id: str
    email: str
    nome: str
    role: Role
    area: str
    active: bool = True
    can_delete: bool = False


@dataclass(frozen=True)
class Actor:
    """Quem esta agindo: extraido do token, nunca do corpo da requisicao."""

    email: str
    role: Role
    area: str
    can_delete: bool
    tenant_id: str
    nome: str = ""
    id: str = ""

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(
            id=user.id,
            email=safe_lower_email(user.email),
            nome=user.nome,
            role=user.role,
            area=user.area,
            can_delete=bool(user.can_delete),
            tenant_id=user.tenant_id,
        )

    def owns_email(self, email: Optional[str]) -> bool:
        return safe_lower_email(email) == safe_lower_email(self.email)


@dataclass(frozen=True)
class Task:
    id: str
    tenant_id: str
    competencia_ym: str
    recorrencia: str
    tipo: str
    atividade: str
    responsavel_email: str
    responsavel_nome: str
    area: str
    prazo: Optional[date] = None
    realizado: Optional[date] = None
    status: str = "Em Andamento"
    observacoes: str = ""
    created_at: str = ""
    created_by: str = ""
    updated_at: str = ""
    updated_by: str = ""
    deleted_at: Optional[str] = None
    deleted_by: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return bool(self.deleted_at)

    def with_status(self, status: str) -> "Task":
        if status == self.status:
            return self
        return replace(self, status=status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "competencia_ym": self.competencia_ym,
            "recorrencia": self.recorrencia,
            "tipo": self.tipo,
            "atividade": self.atividade,
            "responsavel_email": self.responsavel_email,
            "responsavel_nome": self.responsavel_nome,
            "area": self.area,
            "prazo": format_date(self.prazo),
            "realizado": format_date(self.realizado),
            "status": self.status,
            "observacoes": self.observacoes,
            "created_at": self.created_at,
            "created_by": self.created_by,
            "updated_at": self.updated_at,
            "updated_by": self.updated_by,
        }


@dataclass(frozen=True)
class Rule:
    tenant_id: str
    area: str
    allowed_recorrencias: List[str] = field(default_factory=list)
    updated_at: str = ""
    updated_by: str = ""


@dataclass
class TaskDraft:
    competencia_ym: str
    recorrencia: str
    tipo: str
    atividade: str
    responsavel_email: Optional[str] = None
    prazo: Optional[date] = None
    realizado: Optional[date] = None
    observacoes: str = ""
    status_hint: Optional[str] = None


@dataclass
class TaskPatch:
    """Campos None nao foram enviados; datas usam DatePatch."""

    competencia_ym: Optional[str] = None
    recorrencia: Optional[str] = None
    tipo: Optional[str] = None
    atividade: Optional[str] = None
    responsavel_email: Optional[str] = None
    area: Optional[str] = None
    observacoes: Optional[str] = None
    prazo: DatePatch = field(default_factory=DatePatch.keep)
    realizado: DatePatch = field(default_factory=DatePatch.keep)
    status_hint: Optional[str] = None

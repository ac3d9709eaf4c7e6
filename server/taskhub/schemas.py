from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class UserOut(BaseModel):
    id: str
    email: str
    nome: str
    role: str
    area: str
    active: bool = True
    can_delete: bool = False


class UserCreate(BaseModel):
    email: str
    nome: str
    role: str = "USER"
    area: str
    can_delete: bool = False
    senha: Optional[str] = None


class UserUpdate(BaseModel):
    """Campos ausentes ficam como estao."""

    nome: Optional[str] = None
    role: Optional[str] = None
    area: Optional[str] = None
    can_delete: Optional[bool] = None
    active: Optional[bool] = None
    senha: Optional[str] = None


class UserActive(BaseModel):
    active: bool


class UserLogin(BaseModel):
    email: str
    senha: str


class AuthLoginOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class TenantOut(BaseModel):
    id: str
    slug: str
    name: str


class TaskOut(BaseModel):
    id: str
    competencia_ym: str
    recorrencia: str
    tipo: str
    atividade: str
    responsavel_email: str
    responsavel_nome: str = ""
    area: str = ""
    prazo: str = ""
    realizado: str = ""
    status: str
    observacoes: str = ""
    created_at: str = ""
    created_by: str = ""
    updated_at: str = ""
    updated_by: str = ""


class TaskCreate(BaseModel):
    competencia_ym: str
    recorrencia: str
    tipo: str
    atividade: str
    responsavel_email: Optional[str] = None
    prazo: Optional[str] = None
    realizado: Optional[str] = None
    observacoes: str = ""
    status: Optional[str] = None


class TaskUpdate(BaseModel):
    """Campos ausentes ficam como estao; prazo/realizado aceitam "CLEAR"."""

    competencia_ym: Optional[str] = None
    recorrencia: Optional[str] = None
    tipo: Optional[str] = None
    atividade: Optional[str] = None
    responsavel_email: Optional[str] = None
    area: Optional[str] = None
    prazo: Optional[str] = None
    realizado: Optional[str] = None
    observacoes: Optional[str] = None
    status: Optional[str] = None


class RuleOut(BaseModel):
    area: str
    allowed_recorrencias: List[str] = []
    updated_at: str = ""
    updated_by: str = ""


class RuleUpsert(BaseModel):
    area: str
    allowed_recorrencias: List[str] = Field(default_factory=list)


class LookupsOut(BaseModel):
    lookups: Dict[str, List[str]] = {}


class LookupAdd(BaseModel):
    category: str
    value: str
    order: Optional[int] = None


class LookupRename(BaseModel):
    category: str
    old_value: str
    new_value: str

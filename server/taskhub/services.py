from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Callable, Iterator, List, Optional

from . import access
from .cache import TaskCache
from .errors import Forbidden, Internal, NotFound, TenantMismatch, ValidationFailed
from .models import Actor, Role, Task, TaskDraft, TaskPatch, User, safe_lower_email
from .repositories import RuleRepository, TaskStore, UserRepository, new_id, now_iso
from .status import STATUS_ORDER, evaluate_status, normalize_competencia


logger = logging.getLogger(__name__)

ATIVIDADE_MAX = 200
OBSERVACOES_MAX = 1000


def _must_string(value: Optional[str], label: str) -> str:
    s = str(value or "").strip()
    if not s:
        raise ValidationFailed(f"{label} é obrigatório.")
    return s


def _check_lengths(atividade: str, observacoes: str) -> None:
    if len(atividade) > ATIVIDADE_MAX:
        raise ValidationFailed(f"Atividade muito longa (máx {ATIVIDADE_MAX} chars).")
    if len(observacoes) > OBSERVACOES_MAX:
        raise ValidationFailed(f"Observações muito longas (máx {OBSERVACOES_MAX} chars).")


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        logger.exception("Falha no armazenamento durante %s", operation)
        raise Internal("Erro ao acessar o armazenamento.") from exc


class TaskService:
    """Fachada de tarefas: escopo por tenant, status recalculado, cache invalidado.

    Nao existe busca por id sem tenant_id: get_by_id le o snapshot do cache e
    trata tarefa de outro tenant exatamente como id inexistente.
    """

    def __init__(
        self,
        store: TaskStore,
        users: UserRepository,
        rules: RuleRepository,
        cache: Optional[TaskCache] = None,
        *,
        today_for: Optional[Callable[[str], date]] = None,
    ):
        self.store = store
        self.users = users
        self.rules = rules
        self.cache = cache or TaskCache(store.list_tasks)
        self._today_for = today_for or (lambda tenant_id: date.today())

    def today(self, tenant_id: str) -> date:
        return self._today_for(tenant_id)

    def _current(self, task: Task, today: date) -> Task:
        return task.with_status(evaluate_status(task.prazo, task.realizado, today))

    # ---- operacoes por tenant ----

    def list(self, tenant_id: str) -> List[Task]:
        with _storage_errors("listagem de tarefas"):
            snapshot = self.cache.all()
        today = self.today(tenant_id)
        return [
            self._current(t, today)
            for t in snapshot
            if t.tenant_id == tenant_id and not t.is_deleted
        ]

    def get_by_id(self, tenant_id: str, task_id: str) -> Optional[Task]:
        with _storage_errors("leitura de tarefa"):
            task = self.cache.get(str(task_id))
        if task is None or task.tenant_id != tenant_id or task.is_deleted:
            return None
        return self._current(task, self.today(tenant_id))

    def create(
        self,
        tenant_id: str,
        draft: TaskDraft,
        *,
        responsavel: User,
        created_by: str,
    ) -> Task:
        if responsavel.tenant_id != tenant_id:
            raise ValidationFailed("Responsável não encontrado.")
        atividade = _must_string(draft.atividade, "Atividade")
        observacoes = str(draft.observacoes or "").strip()
        _check_lengths(atividade, observacoes)
        now = now_iso()
        task = Task(
            id=new_id(),
            tenant_id=tenant_id,
            competencia_ym=normalize_competencia(draft.competencia_ym),
            recorrencia=_must_string(draft.recorrencia, "Recorrência"),
            tipo=_must_string(draft.tipo, "Tipo"),
            atividade=atividade,
            responsavel_email=safe_lower_email(responsavel.email),
            responsavel_nome=responsavel.nome,
            area=responsavel.area,
            prazo=draft.prazo,
            realizado=draft.realizado,
            status=evaluate_status(draft.prazo, draft.realizado, self.today(tenant_id)),
            observacoes=observacoes,
            created_at=now,
            created_by=created_by,
            updated_at=now,
            updated_by=created_by,
        )
        if draft.status_hint and draft.status_hint != task.status:
            logger.debug("Status informado %r ignorado; calculado %r", draft.status_hint, task.status)
        with _storage_errors("criacao de tarefa"):
            created = self.store.insert_task(task)
        self.cache.invalidate()
        logger.info("Tarefa %s criada no tenant %s por %s", created.id, tenant_id, created_by)
        return created

    def update(
        self,
        tenant_id: str,
        task_id: str,
        patch: TaskPatch,
        *,
        updated_by: str,
        responsavel: Optional[User] = None,
    ) -> Task:
        current = self.get_by_id(tenant_id, task_id)
        if current is None:
            raise NotFound("Tarefa não encontrada.")

        atividade = current.atividade if patch.atividade is None else _must_string(patch.atividade, "Atividade")
        observacoes = current.observacoes if patch.observacoes is None else str(patch.observacoes).strip()
        _check_lengths(atividade, observacoes)

        competencia = current.competencia_ym
        if patch.competencia_ym is not None and str(patch.competencia_ym).strip():
            competencia = normalize_competencia(patch.competencia_ym)

        prazo = patch.prazo.apply(current.prazo)
        realizado = patch.realizado.apply(current.realizado)

        changes = {}
        if responsavel is not None:
            changes.update(
                responsavel_email=safe_lower_email(responsavel.email),
                responsavel_nome=responsavel.nome,
                area=responsavel.area,
            )
        elif patch.area is not None:
            changes["area"] = str(patch.area).strip()

        updated = replace(
            current,
            competencia_ym=competencia,
            recorrencia=(patch.recorrencia or "").strip() or current.recorrencia,
            tipo=(patch.tipo or "").strip() or current.tipo,
            atividade=atividade,
            observacoes=observacoes,
            prazo=prazo,
            realizado=realizado,
            status=evaluate_status(prazo, realizado, self.today(tenant_id)),
            updated_at=now_iso(),
            updated_by=updated_by,
            **changes,
        )
        if patch.status_hint and patch.status_hint != updated.status:
            logger.debug("Status informado %r ignorado; calculado %r", patch.status_hint, updated.status)
        with _storage_errors("atualizacao de tarefa"):
            saved = self.store.update_task(updated)
        if saved is None:
            raise NotFound("Tarefa não encontrada.")
        self.cache.invalidate()
        logger.info("Tarefa %s atualizada no tenant %s por %s", task_id, tenant_id, updated_by)
        return saved

    def soft_delete(self, tenant_id: str, task_id: str, deleted_by: str) -> Task:
        current = self.get_by_id(tenant_id, task_id)
        if current is None:
            raise NotFound("Tarefa não encontrada.")
        deleted_at = now_iso()
        with _storage_errors("exclusao de tarefa"):
            ok = self.store.soft_delete_task(tenant_id, current.id, deleted_by, deleted_at)
        if not ok:
            raise NotFound("Tarefa não encontrada.")
        self.cache.invalidate()
        logger.info("Tarefa %s excluida no tenant %s por %s", task_id, tenant_id, deleted_by)
        return replace(current, deleted_at=deleted_at, deleted_by=deleted_by)

    # ---- operacoes do ponto de vista de um ator ----

    def _require_tenant(self, tenant_id: str, actor: Actor) -> None:
        if actor.tenant_id != tenant_id:
            raise TenantMismatch()

    def _resolve_responsavel(self, tenant_id: str, email: str) -> User:
        with _storage_errors("consulta de usuario"):
            user = self.users.get_by_email(tenant_id, email)
        if user is None:
            raise ValidationFailed("Responsável não encontrado.")
        if not user.active:
            raise ValidationFailed("Responsável inativo.")
        return user

    def list_for(
        self,
        tenant_id: str,
        actor: Actor,
        *,
        area: Optional[str] = None,
        responsavel: Optional[str] = None,
        status: Optional[str] = None,
        competencia_ym: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Task]:
        if status and status not in STATUS_ORDER:
            raise ValidationFailed(f"Status invalido: {status}")
        self._require_tenant(tenant_id, actor)
        visible = access.filter_visible(actor, self.list(tenant_id))
        if competencia_ym:
            competencia_ym = normalize_competencia(competencia_ym)
        return access.apply_filters(
            visible,
            area=area,
            responsavel=responsavel,
            status=status,
            competencia_ym=competencia_ym,
            search=search,
        )

    def get_for(self, tenant_id: str, actor: Actor, task_id: str) -> Task:
        self._require_tenant(tenant_id, actor)
        task = self.get_by_id(tenant_id, task_id)
        if task is None:
            raise NotFound("Tarefa não encontrada.")
        if not access.can_see(actor, task):
            raise Forbidden("Sem permissão para ver esta tarefa.")
        return task

    def create_for(self, tenant_id: str, actor: Actor, draft: TaskDraft) -> Task:
        self._require_tenant(tenant_id, actor)
        requested = safe_lower_email(draft.responsavel_email)

        if actor.role is Role.USER:
            if requested and requested != safe_lower_email(actor.email):
                raise Forbidden("USER não pode atribuir outro responsável.")
            responsavel = self._resolve_responsavel(tenant_id, actor.email)
            recorrencia = _must_string(draft.recorrencia, "Recorrência")
            with _storage_errors("consulta de regra"):
                rule = self.rules.get(tenant_id, responsavel.area)
            access.check_recurrence(rule, responsavel.area, recorrencia)
        else:
            responsavel = self._resolve_responsavel(tenant_id, requested or actor.email)

        access.check_assignment(actor, responsavel.area)
        return self.create(tenant_id, draft, responsavel=responsavel, created_by=actor.email)

    def update_for(self, tenant_id: str, actor: Actor, task_id: str, patch: TaskPatch) -> Task:
        self._require_tenant(tenant_id, actor)
        current = self.get_by_id(tenant_id, task_id)
        if current is None:
            raise NotFound("Tarefa não encontrada.")
        if not access.can_see(actor, current):
            raise Forbidden("Sem permissão para editar esta tarefa.")
        if not access.can_edit(actor, current, patch):
            raise Forbidden("Sem permissão para esta alteração.")

        responsavel: Optional[User] = None
        requested = safe_lower_email(patch.responsavel_email)
        if requested and requested != safe_lower_email(current.responsavel_email):
            responsavel = self._resolve_responsavel(tenant_id, requested)
            access.check_assignment(actor, responsavel.area)

        return self.update(tenant_id, current.id, patch, updated_by=actor.email, responsavel=responsavel)

    def delete_for(self, tenant_id: str, actor: Actor, task_id: str) -> Task:
        self._require_tenant(tenant_id, actor)
        current = self.get_by_id(tenant_id, task_id)
        if current is None:
            raise NotFound("Tarefa não encontrada.")
        if not access.can_delete(actor, current):
            raise Forbidden("Sem permissão para excluir esta tarefa.")
        return self.soft_delete(tenant_id, current.id, actor.email)

    def duplicate_for(self, tenant_id: str, actor: Actor, task_id: str) -> Task:
        self._require_tenant(tenant_id, actor)
        current = self.get_by_id(tenant_id, task_id)
        if current is None:
            raise NotFound("Tarefa não encontrada.")
        if not access.can_duplicate(actor, current):
            raise Forbidden("Sem permissão para duplicar tarefas.")

        # a copia repete o responsavel e a area gravados na tarefa, sem reler o diretorio
        responsavel = User(
            id="",
            tenant_id=tenant_id,
            email=current.responsavel_email,
            nome=current.responsavel_nome,
            role=Role.USER,
            area=current.area,
        )
        draft = TaskDraft(
            competencia_ym=current.competencia_ym,
            recorrencia=current.recorrencia,
            tipo=current.tipo,
            atividade=current.atividade,
            responsavel_email=current.responsavel_email,
            prazo=current.prazo,
            realizado=None,
            observacoes=current.observacoes,
        )
        access.check_assignment(actor, current.area)
        return self.create(tenant_id, draft, responsavel=responsavel, created_by=actor.email)

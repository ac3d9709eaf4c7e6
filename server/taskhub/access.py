from __future__ import annotations

from typing import Iterable, List, NoReturn, Optional

from .errors import Forbidden, NoRuleConfigured, RecurrenceNotAllowed
from .models import Actor, Role, Rule, Task, TaskPatch, safe_lower_email


def _unhandled_role(role: Role) -> NoReturn:
    raise AssertionError(f"Role sem regra de acesso: {role!r}")


def _same_area(a: Optional[str], b: Optional[str]) -> bool:
    return str(a or "") == str(b or "")


def can_see(actor: Actor, task: Task) -> bool:
    if actor.tenant_id != task.tenant_id:
        return False
    if actor.role is Role.ADMIN:
        return True
    if actor.role is Role.LEADER:
        return _same_area(task.area, actor.area)
    if actor.role is Role.USER:
        return actor.owns_email(task.responsavel_email)
    _unhandled_role(actor.role)


def can_edit(actor: Actor, task: Task, patch: TaskPatch) -> bool:
    if not can_see(actor, task):
        return False
    if actor.role is Role.ADMIN:
        return True
    if actor.role is Role.LEADER:
        # leader nao tira tarefa da propria area
        if patch.area is not None and not _same_area(patch.area, actor.area):
            return False
        return True
    if actor.role is Role.USER:
        if patch.responsavel_email is not None and not actor.owns_email(patch.responsavel_email):
            return False
        if patch.area is not None and not _same_area(patch.area, actor.area):
            return False
        return True
    _unhandled_role(actor.role)


def can_delete(actor: Actor, task: Task) -> bool:
    if actor.tenant_id != task.tenant_id:
        return False
    if actor.role is Role.ADMIN:
        return True
    if actor.role is Role.LEADER:
        return actor.can_delete and _same_area(task.area, actor.area)
    if actor.role is Role.USER:
        return actor.can_delete and actor.owns_email(task.responsavel_email)
    _unhandled_role(actor.role)


def can_duplicate(actor: Actor, task: Task) -> bool:
    if not can_see(actor, task):
        return False
    if actor.role is Role.ADMIN:
        return True
    if actor.role is Role.LEADER:
        return _same_area(task.area, actor.area)
    if actor.role is Role.USER:
        return False
    _unhandled_role(actor.role)


def can_manage_rule(actor: Actor, area: str) -> bool:
    if actor.role is Role.ADMIN:
        return True
    if actor.role is Role.LEADER:
        return _same_area(area, actor.area)
    if actor.role is Role.USER:
        return False
    _unhandled_role(actor.role)


def can_read_rule(actor: Actor, area: str) -> bool:
    if actor.role is Role.ADMIN:
        return True
    if actor.role in (Role.LEADER, Role.USER):
        return _same_area(area, actor.area)
    _unhandled_role(actor.role)


def check_assignment(actor: Actor, responsible_area: str) -> None:
    """Regra de criacao/reatribuicao: para onde o ator pode mandar a tarefa."""
    if actor.role is Role.ADMIN:
        return
    if actor.role is Role.LEADER:
        if not _same_area(responsible_area, actor.area):
            raise Forbidden("LEADER só pode atribuir tarefas da sua área.")
        return
    if actor.role is Role.USER:
        if not _same_area(responsible_area, actor.area):
            raise Forbidden("USER não pode atribuir tarefas para outra área.")
        return
    _unhandled_role(actor.role)


def check_recurrence(rule: Optional[Rule], area: str, recorrencia: str) -> None:
    if rule is None:
        raise NoRuleConfigured(area)
    if recorrencia not in rule.allowed_recorrencias:
        raise RecurrenceNotAllowed(recorrencia, rule.allowed_recorrencias)


def filter_visible(actor: Actor, tasks: Iterable[Task]) -> List[Task]:
    return [t for t in tasks if can_see(actor, t)]


def apply_filters(
    tasks: Iterable[Task],
    *,
    area: Optional[str] = None,
    responsavel: Optional[str] = None,
    status: Optional[str] = None,
    competencia_ym: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Task]:
    """Filtros opcionais da listagem. Rodam sempre depois de filter_visible."""
    out = list(tasks)
    if area:
        out = [t for t in out if _same_area(t.area, area)]
    if responsavel:
        email = safe_lower_email(responsavel)
        out = [t for t in out if safe_lower_email(t.responsavel_email) == email]
    if status:
        out = [t for t in out if t.status == status]
    if competencia_ym:
        out = [t for t in out if t.competencia_ym == competencia_ym]
    needle = (search or "").strip().lower()
    if needle:
        out = [
            t
            for t in out
            if needle in (t.atividade or "").lower() or needle in (t.observacoes or "").lower()
        ]
    return out

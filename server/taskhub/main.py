from __future__ import annotations

import logging
import time
from datetime import date
from typing import Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import access
from .auth import create_access_token, decode_access_token
from .cache import TaskCache
from .config import Settings, load_settings
from .db import init_db
from .errors import AppError, Forbidden, NotFound, Unauthorized, ValidationFailed
from .models import Actor, Role, Task, TaskDraft, TaskPatch, Tenant, User
from .repositories import LookupRepository, RuleRepository, TaskStore, TenantRepository, UserRepository
from .schemas import (
    AuthLoginOut,
    LookupAdd,
    LookupRename,
    LookupsOut,
    RuleOut,
    RuleUpsert,
    TaskCreate,
    TaskOut,
    TaskUpdate,
    TenantOut,
    UserActive,
    UserCreate,
    UserLogin,
    UserOut,
    UserUpdate,
)
from .security import hash_password, needs_rehash, verify_password
from .services import TaskService
from .status import DatePatch, today_in
from .tenancy import TenantResolver, ensure_same_tenant


logger = logging.getLogger(__name__)

_PUBLIC_PATHS = {"/health"}
_PUBLIC_PREFIXES = ("/docs", "/redoc", "/openapi.json")
# rotas que precisam de tenant mas nao de token
_TENANT_ONLY_PATHS = {"/auth/login", "/tenants/current"}


class LoginThrottle:
    def __init__(self, window_seconds: int, max_attempts: int, clock: Callable[[], float] = time.time):
        self.window_seconds = window_seconds
        self.max_attempts = max_attempts
        self._clock = clock
        self._attempts: Dict[str, Dict[str, float]] = {}

    def is_limited(self, key: str) -> bool:
        entry = self._attempts.get(key)
        if not entry:
            return False
        if self._clock() - entry["first"] > self.window_seconds:
            self._attempts.pop(key, None)
            return False
        return entry["count"] >= self.max_attempts

    def register_failure(self, key: str) -> None:
        now = self._clock()
        entry = self._attempts.get(key)
        if (not entry) or (now - entry["first"] > self.window_seconds):
            self._attempts[key] = {"first": now, "count": 1}
            return
        entry["count"] += 1

    def clear(self, key: str) -> None:
        self._attempts.pop(key, None)


def _login_attempt_key(request: Request, tenant: Tenant, email: str) -> str:
    forwarded = str(request.headers.get("x-forwarded-for") or "").split(",", 1)[0].strip()
    host = forwarded or (request.client.host if request.client else "unknown")
    return f"{host}:{tenant.id}:{str(email or '').strip().lower()}"


def _set_security_headers(response) -> None:
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")


def _error_response(exc: AppError) -> JSONResponse:
    response = JSONResponse(status_code=exc.status_code, content=exc.to_dict())
    _set_security_headers(response)
    return response


def _user_out(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "nome": user.nome,
        "role": user.role.value,
        "area": user.area,
        "active": user.active,
        "can_delete": user.can_delete,
    }


def _task_out(task: Task) -> dict:
    out = task.to_dict()
    out.pop("tenant_id", None)
    return out


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _draft_from_payload(payload: TaskCreate) -> TaskDraft:
    return TaskDraft(
        competencia_ym=payload.competencia_ym,
        recorrencia=payload.recorrencia,
        tipo=payload.tipo,
        atividade=payload.atividade,
        responsavel_email=_blank_to_none(payload.responsavel_email),
        prazo=DatePatch.from_raw(payload.prazo, "Prazo").apply(None),
        realizado=DatePatch.from_raw(payload.realizado, "Data de realização").apply(None),
        observacoes=payload.observacoes or "",
        status_hint=_blank_to_none(payload.status),
    )


def _patch_from_payload(payload: TaskUpdate) -> TaskPatch:
    return TaskPatch(
        competencia_ym=_blank_to_none(payload.competencia_ym),
        recorrencia=_blank_to_none(payload.recorrencia),
        tipo=_blank_to_none(payload.tipo),
        atividade=payload.atividade,
        responsavel_email=_blank_to_none(payload.responsavel_email),
        area=_blank_to_none(payload.area),
        observacoes=payload.observacoes,
        prazo=DatePatch.from_raw(payload.prazo, "Prazo"),
        realizado=DatePatch.from_raw(payload.realizado, "Data de realização"),
        status_hint=_blank_to_none(payload.status),
    )


def _current_tenant(request: Request) -> Tenant:
    return request.state.tenant


def _current_actor(request: Request) -> Actor:
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise Unauthorized()
    return actor


def _tasks(request: Request) -> TaskService:
    return request.app.state.tasks


def _require_admin(actor: Actor, message: str) -> None:
    if actor.role is not Role.ADMIN:
        raise Forbidden(message)


def create_app(
    settings: Optional[Settings] = None,
    *,
    cache_clock: Optional[Callable[[], float]] = None,
    today_for: Optional[Callable[[str], date]] = None,
) -> FastAPI:
    settings = settings or load_settings()
    settings.validate()

    tenants = TenantRepository(settings.db_path)
    users = UserRepository(settings.db_path)
    rules = RuleRepository(settings.db_path)
    lookups = LookupRepository(settings.db_path)
    store = TaskStore(settings.db_path)

    def _tenant_today(tenant_id: str) -> date:
        tenant = tenants.get(tenant_id)
        zone = tenant.timezone if tenant else settings.default_timezone
        try:
            return today_in(zone)
        except ValidationFailed:
            logger.warning("Fuso %r invalido no tenant %s; usando %s", zone, tenant_id, settings.default_timezone)
            return today_in(settings.default_timezone)

    cache_kwargs = {"ttl_seconds": settings.cache_ttl_seconds}
    if cache_clock is not None:
        cache_kwargs["clock"] = cache_clock
    cache = TaskCache(store.list_tasks, **cache_kwargs)

    app = FastAPI(title="TaskHub API")
    app.state.settings = settings
    app.state.tenants = tenants
    app.state.users = users
    app.state.rules = rules
    app.state.lookups = lookups
    app.state.cache = cache
    app.state.tasks = TaskService(store, users, rules, cache, today_for=today_for or _tenant_today)
    app.state.resolver = TenantResolver(tenants, allow_query=not settings.is_production)
    app.state.login_throttle = LoginThrottle(settings.login_window_seconds, settings.login_max_attempts)

    @app.exception_handler(AppError)
    async def _app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("Falha interna em %s %s: %s", request.method, request.url.path, exc.message)
        elif exc.status_code == 403:
            actor = getattr(request.state, "actor", None)
            logger.info(
                "Acesso negado em %s %s para %s: %s",
                request.method,
                request.url.path,
                actor.email if actor else "-",
                exc.message,
            )
        return _error_response(exc)

    @app.middleware("http")
    async def tenant_auth_guard(request: Request, call_next):
        method = request.method.upper()
        path = (request.url.path or "/").rstrip("/") or "/"

        if method == "OPTIONS":
            return await call_next(request)

        if path in _PUBLIC_PATHS or any(path.startswith(prefix) for prefix in _PUBLIC_PREFIXES):
            response = await call_next(request)
            _set_security_headers(response)
            return response

        state = request.app.state
        try:
            tenant = state.resolver.resolve(request.headers, request.query_params)
            request.state.tenant = tenant
            request.state.actor = None

            if path not in _TENANT_ONLY_PATHS:
                auth_header = str(request.headers.get("authorization") or "")
                if not auth_header.lower().startswith("bearer "):
                    raise Unauthorized()
                token = auth_header.split(" ", 1)[1].strip()
                if not token:
                    raise Unauthorized("Token ausente")
                payload = decode_access_token(token, secret=state.settings.jwt_secret)
                ensure_same_tenant(str(payload.get("tenant_id") or ""), tenant, email=str(payload.get("email") or ""))
                user = state.users.get(tenant.id, str(payload.get("sub") or ""))
                if user is None or not user.active:
                    raise Unauthorized("Usuario do token nao encontrado ou inativo")
                request.state.actor = Actor.from_user(user)
        except AppError as exc:
            return _error_response(exc)

        response = await call_next(request)
        _set_security_headers(response)
        return response

    # adicionado por ultimo: CORS fica por fora do guard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup() -> None:
        init_db(settings.db_path)

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/tenants/current", response_model=TenantOut)
    def current_tenant(tenant: Tenant = Depends(_current_tenant)):
        return {"id": tenant.id, "slug": tenant.slug, "name": tenant.name}

    @app.post("/auth/login", response_model=AuthLoginOut)
    def login(payload: UserLogin, request: Request, tenant: Tenant = Depends(_current_tenant)):
        throttle: LoginThrottle = request.app.state.login_throttle
        attempt_key = _login_attempt_key(request, tenant, payload.email)
        if throttle.is_limited(attempt_key):
            return JSONResponse(
                status_code=429,
                content={"detail": "Muitas tentativas. Aguarde e tente novamente.", "code": "RATE_LIMITED"},
            )

        repo: UserRepository = request.app.state.users
        user = repo.get_by_email(tenant.id, payload.email)
        stored = repo.get_password_hash(tenant.id, payload.email) if user else ""
        if not user or not user.active or not verify_password(payload.senha, stored):
            throttle.register_failure(attempt_key)
            raise Unauthorized("Credenciais inválidas")

        throttle.clear(attempt_key)
        if needs_rehash(stored):
            repo.set_password_hash(tenant.id, user.id, hash_password(payload.senha))
        token = create_access_token(
            user,
            secret=request.app.state.settings.jwt_secret,
            expire_hours=request.app.state.settings.jwt_expire_hours,
        )
        logger.info("Login de %s no tenant %s", user.email, tenant.slug)
        return {"access_token": token, "token_type": "bearer", "user": _user_out(user)}

    @app.get("/me", response_model=UserOut)
    def me(request: Request, actor: Actor = Depends(_current_actor)):
        user = request.app.state.users.get(actor.tenant_id, actor.id)
        if user is None:
            raise Unauthorized()
        return _user_out(user)

    @app.get("/tasks", response_model=List[TaskOut])
    def list_tasks(
        request: Request,
        area: Optional[str] = None,
        responsavel: Optional[str] = None,
        status: Optional[str] = None,
        competencia_ym: Optional[str] = None,
        search: Optional[str] = None,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        rows = _tasks(request).list_for(
            tenant.id,
            actor,
            area=area,
            responsavel=responsavel,
            status=status,
            competencia_ym=competencia_ym,
            search=search,
        )
        return [_task_out(t) for t in rows]

    @app.get("/tasks/{task_id}", response_model=TaskOut)
    def get_task(
        task_id: str,
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        return _task_out(_tasks(request).get_for(tenant.id, actor, task_id))

    @app.post("/tasks", response_model=TaskOut, status_code=201)
    def create_task(
        payload: TaskCreate,
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        created = _tasks(request).create_for(tenant.id, actor, _draft_from_payload(payload))
        return _task_out(created)

    @app.put("/tasks/{task_id}", response_model=TaskOut)
    def update_task(
        task_id: str,
        payload: TaskUpdate,
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        updated = _tasks(request).update_for(tenant.id, actor, task_id, _patch_from_payload(payload))
        return _task_out(updated)

    @app.delete("/tasks/{task_id}")
    def delete_task(
        task_id: str,
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        _tasks(request).delete_for(tenant.id, actor, task_id)
        return {"ok": True}

    @app.post("/tasks/{task_id}/duplicate", response_model=TaskOut, status_code=201)
    def duplicate_task(
        task_id: str,
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        return _task_out(_tasks(request).duplicate_for(tenant.id, actor, task_id))

    @app.get("/users", response_model=List[UserOut])
    def list_users(
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        rows = request.app.state.users.list(tenant.id)
        if actor.role is Role.LEADER:
            rows = [u for u in rows if u.area == actor.area]
        elif actor.role is Role.USER:
            rows = [u for u in rows if actor.owns_email(u.email)]
        return [_user_out(u) for u in rows]

    @app.post("/users", response_model=UserOut, status_code=201)
    def create_user(
        payload: UserCreate,
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        _require_admin(actor, "Apenas admin pode cadastrar usuários.")
        try:
            role = Role.parse(payload.role)
        except ValueError as exc:
            raise ValidationFailed("Role inválido.") from exc
        repo: UserRepository = request.app.state.users
        if repo.get_by_email(tenant.id, payload.email):
            raise ValidationFailed("Email já cadastrado nesta empresa.")
        senha = str(payload.senha or "")
        if senha and len(senha) < 8:
            raise ValidationFailed("Senha deve ter no minimo 8 caracteres.")
        try:
            user = repo.create(
                tenant_id=tenant.id,
                email=payload.email,
                nome=payload.nome,
                role=role,
                area=payload.area,
                can_delete=payload.can_delete,
                password=senha or None,
            )
        except ValueError as exc:
            raise ValidationFailed(str(exc)) from exc
        logger.info("Usuario %s criado no tenant %s por %s", user.email, tenant.slug, actor.email)
        return _user_out(user)

    @app.get("/users/all", response_model=List[UserOut])
    def list_all_users(
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        _require_admin(actor, "Apenas admin pode ver todos os usuários.")
        return [_user_out(u) for u in request.app.state.users.list(tenant.id, only_active=False)]

    @app.put("/users/{email}", response_model=UserOut)
    def update_user(
        email: str,
        payload: UserUpdate,
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        _require_admin(actor, "Apenas admin pode alterar usuários.")
        repo: UserRepository = request.app.state.users
        if repo.get_by_email(tenant.id, email) is None:
            raise NotFound("Usuário não encontrado.")
        role = None
        if payload.role is not None:
            try:
                role = Role.parse(payload.role)
            except ValueError as exc:
                raise ValidationFailed("Role inválido.") from exc
        if actor.owns_email(email) and (payload.active is False or (role is not None and role is not Role.ADMIN)):
            raise ValidationFailed("Admin não pode desativar ou rebaixar a si mesmo.")
        senha = str(payload.senha or "")
        if senha and len(senha) < 8:
            raise ValidationFailed("Senha deve ter no minimo 8 caracteres.")
        try:
            user = repo.update(
                tenant.id,
                email,
                nome=payload.nome,
                role=role,
                area=payload.area,
                can_delete=payload.can_delete,
                active=payload.active,
                password=senha or None,
            )
        except ValueError as exc:
            raise ValidationFailed(str(exc)) from exc
        logger.info("Usuario %s alterado no tenant %s por %s", user.email, tenant.slug, actor.email)
        return _user_out(user)

    @app.post("/users/{email}/active", response_model=UserOut)
    def set_user_active(
        email: str,
        payload: UserActive,
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        _require_admin(actor, "Apenas admin pode ativar ou desativar usuários.")
        if actor.owns_email(email) and not payload.active:
            raise ValidationFailed("Admin não pode desativar a si mesmo.")
        user = request.app.state.users.set_active(tenant.id, email, payload.active)
        if user is None:
            raise NotFound("Usuário não encontrado.")
        logger.info(
            "Usuario %s %s no tenant %s por %s",
            user.email,
            "ativado" if user.active else "desativado",
            tenant.slug,
            actor.email,
        )
        return _user_out(user)

    @app.get("/rules", response_model=List[RuleOut])
    def list_rules(
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        repo: RuleRepository = request.app.state.rules
        rows = repo.list(tenant.id) if actor.role is Role.ADMIN else repo.list(tenant.id, actor.area)
        return [
            {"area": r.area, "allowed_recorrencias": r.allowed_recorrencias, "updated_at": r.updated_at, "updated_by": r.updated_by}
            for r in rows
        ]

    @app.get("/rules/by-area")
    def get_rule_by_area(
        request: Request,
        area: Optional[str] = None,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        if not area:
            raise ValidationFailed("Área é obrigatória.")
        if not access.can_read_rule(actor, area):
            raise Forbidden("Sem permissão para ver regras desta área.")
        rule = request.app.state.rules.get(tenant.id, area)
        if rule is None:
            return {"rule": None}
        return {
            "rule": {
                "area": rule.area,
                "allowed_recorrencias": rule.allowed_recorrencias,
                "updated_at": rule.updated_at,
                "updated_by": rule.updated_by,
            }
        }

    @app.put("/rules", response_model=RuleOut)
    def upsert_rule(
        payload: RuleUpsert,
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        area = payload.area.strip()
        if not area:
            raise ValidationFailed("Área é obrigatória.")
        if not access.can_manage_rule(actor, area):
            raise Forbidden("Sem permissão para gerenciar regras desta área.")
        rule = request.app.state.rules.upsert(
            tenant_id=tenant.id,
            area=area,
            allowed=payload.allowed_recorrencias,
            updated_by=actor.email,
        )
        logger.info("Regra da area %s atualizada no tenant %s por %s", area, tenant.slug, actor.email)
        return {"area": rule.area, "allowed_recorrencias": rule.allowed_recorrencias, "updated_at": rule.updated_at, "updated_by": rule.updated_by}

    @app.get("/lookups", response_model=LookupsOut)
    def list_lookups(
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        return {"lookups": request.app.state.lookups.list(tenant.id)}

    @app.post("/lookups", response_model=LookupsOut)
    def add_lookup(
        payload: LookupAdd,
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        _require_admin(actor, "Apenas admin pode alterar listas.")
        try:
            lookups = request.app.state.lookups.add(tenant.id, payload.category, payload.value, payload.order)
        except ValueError as exc:
            raise ValidationFailed(str(exc)) from exc
        logger.info("Lista %s ganhou %r no tenant %s", payload.category.upper(), payload.value, tenant.slug)
        return {"lookups": lookups}

    @app.put("/lookups/rename", response_model=LookupsOut)
    def rename_lookup(
        payload: LookupRename,
        request: Request,
        tenant: Tenant = Depends(_current_tenant),
        actor: Actor = Depends(_current_actor),
    ):
        _require_admin(actor, "Apenas admin pode alterar listas.")
        try:
            lookups = request.app.state.lookups.rename(
                tenant.id, payload.category, payload.old_value, payload.new_value
            )
        except ValueError as exc:
            raise ValidationFailed(str(exc)) from exc
        if lookups is None:
            raise NotFound("Valor não encontrado na lista.")
        logger.info(
            "Lista %s: %r renomeado para %r no tenant %s por %s",
            payload.category.upper(),
            payload.old_value,
            payload.new_value,
            tenant.slug,
            actor.email,
        )
        return {"lookups": lookups}

    return app

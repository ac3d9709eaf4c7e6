# tests/conftest.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict

import pytest
from fastapi.testclient import TestClient

from taskhub.auth import create_access_token
from taskhub.cache import TaskCache
from taskhub.config import Settings
from taskhub.db import init_db
from taskhub.main import create_app
from taskhub.models import Actor, Role, Tenant, User
from taskhub.repositories import RuleRepository, TaskStore, TenantRepository, UserRepository
from taskhub.services import TaskService

from .fakes import FakeClock, FixedToday


TODAY = date(2025, 6, 15)
ADMIN_PASSWORD = "admin-senha-123"
SECRET = "test-secret-with-at-least-32-characters!!"


@dataclass
class World:
    """Dois tenants com usuarios de cada papel e uma regra de recorrencia."""

    db_path: str
    acme: Tenant
    beta: Tenant
    users: Dict[str, User] = field(default_factory=dict)

    def actor(self, key: str) -> Actor:
        return Actor.from_user(self.users[key])


@pytest.fixture()
def db_path(tmp_path: Path) -> str:
    path = str(tmp_path / "taskhub.sqlite3")
    init_db(path)
    return path


@pytest.fixture()
def world(db_path: str) -> World:
    tenants = TenantRepository(db_path)
    users = UserRepository(db_path)
    rules = RuleRepository(db_path)

    acme = tenants.create_with_admin(
        slug="acme", name="Acme Ltda", admin_email="admin@acme.com", admin_password=ADMIN_PASSWORD
    )
    beta = tenants.create_with_admin(
        slug="beta", name="Beta SA", admin_email="admin@beta.com", admin_password=ADMIN_PASSWORD
    )
    w = World(db_path=db_path, acme=acme, beta=beta)
    w.users["admin"] = users.get_by_email(acme.id, "admin@acme.com")
    w.users["beta_admin"] = users.get_by_email(beta.id, "admin@beta.com")
    w.users["leader"] = users.create(
        tenant_id=acme.id, email="lider@acme.com", nome="Lider Fin", role=Role.LEADER, area="Financeiro"
    )
    w.users["leader_del"] = users.create(
        tenant_id=acme.id,
        email="lider.rh@acme.com",
        nome="Lider RH",
        role=Role.LEADER,
        area="RH",
        can_delete=True,
    )
    w.users["user"] = users.create(
        tenant_id=acme.id, email="ana@acme.com", nome="Ana", role=Role.USER, area="Financeiro"
    )
    w.users["user_del"] = users.create(
        tenant_id=acme.id,
        email="bia@acme.com",
        nome="Bia",
        role=Role.USER,
        area="Financeiro",
        can_delete=True,
    )
    w.users["user_rh"] = users.create(
        tenant_id=acme.id, email="caio@acme.com", nome="Caio", role=Role.USER, area="RH"
    )
    w.users["beta_user"] = users.create(
        tenant_id=beta.id, email="ana@acme.com", nome="Ana (Beta)", role=Role.USER, area="Financeiro"
    )
    rules.upsert(tenant_id=acme.id, area="Financeiro", allowed=["Mensal", "Semanal"], updated_by="admin@acme.com")
    rules.upsert(tenant_id=beta.id, area="Financeiro", allowed=["Anual"], updated_by="admin@beta.com")
    return w


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def today() -> FixedToday:
    return FixedToday(TODAY)


@pytest.fixture()
def service(world: World, clock: FakeClock, today: FixedToday) -> TaskService:
    store = TaskStore(world.db_path)
    cache = TaskCache(store.list_tasks, ttl_seconds=8.0, clock=clock)
    return TaskService(
        store,
        UserRepository(world.db_path),
        RuleRepository(world.db_path),
        cache,
        today_for=today,
    )


@pytest.fixture()
def app(world: World, clock: FakeClock, today: FixedToday):
    settings = Settings(env="development", db_path=world.db_path, jwt_secret=SECRET)
    return create_app(settings, cache_clock=clock, today_for=today)


@pytest.fixture()
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def auth_headers(world: World):
    """auth_headers("leader") -> headers com token e tenant do usuario."""

    def _make(key: str, *, tenant: Tenant = None) -> Dict[str, str]:
        user = world.users[key]
        if tenant is None:
            tenant = world.acme if user.tenant_id == world.acme.id else world.beta
        token = create_access_token(user, secret=SECRET)
        return {"Authorization": f"Bearer {token}", "X-Tenant-Slug": tenant.slug}

    return _make

# tests/test_tenancy.py

from __future__ import annotations

import sqlite3

import pytest

from taskhub.db import connect
from taskhub.errors import NoTenant, TenantMismatch, TenantNotFound, ValidationFailed
from taskhub.repositories import LookupRepository, TenantRepository
from taskhub.tenancy import TenantResolver, ensure_same_tenant, resolve_tenant_slug


def test_header_wins_over_host_and_query() -> None:
    headers = {"x-tenant-slug": " ACME ", "host": "beta.taskhub.com.br"}
    assert resolve_tenant_slug(headers, {"tenant": "gama"}) == "acme"


def test_subdomain_is_used_when_header_missing() -> None:
    assert resolve_tenant_slug({"host": "beta.taskhub.com:8443"}, {"tenant": "gama"}) == "beta"


@pytest.mark.parametrize("host", ["localhost:8000", "api.localhost", "taskhub.com", "127.0.0.1:8000"])
def test_host_without_tenant_subdomain_falls_back_to_query(host: str) -> None:
    assert resolve_tenant_slug({"host": host}, {"tenant": "gama"}) == "gama"


def test_query_fallback_can_be_disabled() -> None:
    assert resolve_tenant_slug({"host": "localhost"}, {"tenant": "gama"}, allow_query=False) is None


def test_resolver_errors(world) -> None:
    resolver = TenantResolver(TenantRepository(world.db_path))
    with pytest.raises(NoTenant):
        resolver.resolve({"host": "localhost"}, {})
    with pytest.raises(TenantNotFound):
        resolver.resolve({"x-tenant-slug": "inexistente"}, {})
    assert resolver.resolve({"x-tenant-slug": "acme"}, {}).id == world.acme.id


def test_inactive_tenant_is_not_found(world) -> None:
    conn = connect(world.db_path)
    conn.execute("UPDATE tenants SET active = 0 WHERE id = ?", (world.beta.id,))
    conn.commit()
    conn.close()
    with pytest.raises(TenantNotFound):
        TenantResolver(TenantRepository(world.db_path)).resolve({"x-tenant-slug": "beta"}, {})


def test_ensure_same_tenant(world) -> None:
    ensure_same_tenant(world.acme.id, world.acme)
    with pytest.raises(TenantMismatch):
        ensure_same_tenant(world.beta.id, world.acme, email="admin@beta.com")
    with pytest.raises(TenantMismatch):
        ensure_same_tenant("", world.acme)


def test_create_with_admin_seeds_lookups(world) -> None:
    lookups = LookupRepository(world.db_path).list(world.acme.id)
    assert "Mensal" in lookups["RECORRENCIA"]
    assert "Financeiro" in lookups["AREA"]


def test_slug_is_normalized_and_unique(db_path) -> None:
    repo = TenantRepository(db_path)
    tenant = repo.create_with_admin(slug=" Minha Empresa ", name="Minha", admin_email="a@x.com", admin_password="12345678")
    assert tenant.slug == "minha-empresa"
    with pytest.raises(sqlite3.IntegrityError):
        repo.create_with_admin(slug="minha-empresa", name="Outra", admin_email="b@x.com", admin_password="12345678")


def test_invalid_timezone_is_rejected_on_create(db_path) -> None:
    repo = TenantRepository(db_path)
    with pytest.raises(ValidationFailed, match="Mars/Olympus"):
        repo.create_with_admin(
            slug="gama",
            name="Gama",
            admin_email="root@gama.com",
            admin_password="12345678",
            timezone_name="Mars/Olympus",
        )
    assert repo.get_active_by_slug("gama") is None


def test_timezone_is_stored(db_path) -> None:
    repo = TenantRepository(db_path)
    tenant = repo.create_with_admin(
        slug="lisboa",
        name="Lisboa",
        admin_email="root@lx.com",
        admin_password="12345678",
        timezone_name=" Europe/Lisbon ",
    )
    assert repo.get(tenant.id).timezone == "Europe/Lisbon"

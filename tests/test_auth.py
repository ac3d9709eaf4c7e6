# tests/test_auth.py

from __future__ import annotations

import jwt
import pytest

from taskhub import __main__ as cli
from taskhub.auth import JWT_ALGORITHM, create_access_token, decode_access_token
from taskhub.config import DEFAULT_JWT_SECRET, Settings, load_settings
from taskhub.db import connect
from taskhub.errors import Unauthorized
from taskhub.repositories import TenantRepository, UserRepository
from taskhub.security import hash_password, needs_rehash, verify_password

from .conftest import ADMIN_PASSWORD, SECRET


def test_password_hash_roundtrip() -> None:
    stored = hash_password("segredo-123", iterations=1000)
    assert stored.startswith("pbkdf2_sha256$1000$")
    assert verify_password("segredo-123", stored)
    assert not verify_password("outra", stored)
    assert needs_rehash(stored)


def test_password_without_hash_never_verifies() -> None:
    assert not verify_password("qualquer", "")
    assert not verify_password("qualquer", "texto-puro")
    with pytest.raises(ValueError):
        hash_password("   ")


def test_token_carries_tenant_and_role(world) -> None:
    user = world.users["leader"]
    payload = decode_access_token(create_access_token(user, secret=SECRET), secret=SECRET)
    assert payload["sub"] == user.id
    assert payload["tenant_id"] == world.acme.id
    assert payload["role"] == "LEADER"
    assert payload["area"] == "Financeiro"


def test_expired_or_foreign_token(world) -> None:
    user = world.users["leader"]
    expired = create_access_token(user, secret=SECRET, expire_hours=-1)
    with pytest.raises(Unauthorized):
        decode_access_token(expired, secret=SECRET)
    with pytest.raises(Unauthorized):
        decode_access_token(create_access_token(user, secret="outro-segredo"), secret=SECRET)


def test_token_without_tenant_is_rejected() -> None:
    token = jwt.encode({"sub": "u1", "email": "a@b.com"}, SECRET, algorithm=JWT_ALGORITHM)
    with pytest.raises(Unauthorized):
        decode_access_token(token, secret=SECRET)


def test_login_upgrades_weak_hash(world, client) -> None:
    users = UserRepository(world.db_path)
    admin = world.users["admin"]
    users.set_password_hash(world.acme.id, admin.id, hash_password(ADMIN_PASSWORD, iterations=1000))

    resp = client.post(
        "/auth/login",
        json={"email": "admin@acme.com", "senha": ADMIN_PASSWORD},
        headers={"X-Tenant-Slug": "acme"},
    )
    assert resp.status_code == 200
    assert not needs_rehash(users.get_password_hash(world.acme.id, "admin@acme.com"))


def test_user_without_password_cannot_login(client) -> None:
    resp = client.post("/auth/login", json={"email": "ana@acme.com", "senha": ""}, headers={"X-Tenant-Slug": "acme"})
    assert resp.status_code == 401


def test_token_of_removed_user_is_rejected(world, client, auth_headers) -> None:
    headers = auth_headers("user")
    users = UserRepository(world.db_path)
    ana = world.users["user"]
    conn = connect(world.db_path)
    conn.execute("UPDATE users SET active = 0 WHERE id = ?", (ana.id,))
    conn.commit()
    conn.close()
    assert users.get(world.acme.id, ana.id).active is False
    assert client.get("/tasks", headers=headers).status_code == 401


# ---- configuracao ----


def test_production_requires_strong_secret() -> None:
    with pytest.raises(RuntimeError):
        Settings(env="production", jwt_secret=DEFAULT_JWT_SECRET).validate()
    with pytest.raises(RuntimeError):
        Settings(env="prod", jwt_secret="curto").validate()
    Settings(env="production", jwt_secret="x" * 32).validate()


def test_negative_ttl_is_rejected() -> None:
    with pytest.raises(RuntimeError):
        Settings(cache_ttl_seconds=-1).validate()


def test_load_settings_from_env(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("TASKHUB_DB_PATH", str(tmp_path / "x.db"))
    monkeypatch.setenv("TASKHUB_CACHE_TTL_SECONDS", "2.5")
    monkeypatch.setenv("TASKHUB_LOGIN_MAX_ATTEMPTS", "nao-e-numero")
    monkeypatch.setenv("TASKHUB_CORS_ORIGINS", "https://app.exemplo.com, http://localhost:5173")
    settings = load_settings()
    assert settings.db_path == str(tmp_path / "x.db")
    assert settings.cache_ttl_seconds == 2.5
    assert settings.login_max_attempts == 8
    assert settings.cors_origins.count("http://localhost:5173") == 1
    assert "https://app.exemplo.com" in settings.cors_origins
    assert not settings.is_production


# ---- linha de comando ----


def test_cli_create_tenant(monkeypatch, tmp_path, capsys) -> None:
    db = tmp_path / "cli.db"
    monkeypatch.setenv("TASKHUB_DB_PATH", str(db))
    monkeypatch.setattr(cli, "setup_logging", lambda *a, **kw: None)

    code = cli.main([
        "create-tenant",
        "--slug", "gama",
        "--name", "Gama",
        "--admin-email", "root@gama.com",
        "--admin-password", "senha-forte-1",
    ])
    assert code == 0
    assert "gama" in capsys.readouterr().out
    tenant = TenantRepository(str(db)).get_active_by_slug("gama")
    assert tenant is not None
    assert UserRepository(str(db)).get_by_email(tenant.id, "root@gama.com").role.value == "ADMIN"

    assert cli.main([
        "create-tenant",
        "--slug", "delta",
        "--name", "Delta",
        "--admin-email", "root@delta.com",
        "--admin-password", "curta",
    ]) == 2


def test_invalid_default_timezone_is_rejected() -> None:
    with pytest.raises(RuntimeError, match="TASKHUB_DEFAULT_TIMEZONE"):
        Settings(default_timezone="Mars/Olympus").validate()


def test_cli_rejects_invalid_timezone(monkeypatch, tmp_path, capsys) -> None:
    db = tmp_path / "cli.db"
    monkeypatch.setenv("TASKHUB_DB_PATH", str(db))
    monkeypatch.setattr(cli, "setup_logging", lambda *a, **kw: None)

    code = cli.main([
        "create-tenant",
        "--slug", "marte",
        "--name", "Marte",
        "--admin-email", "root@marte.com",
        "--admin-password", "senha-forte-1",
        "--timezone", "Mars/Olympus",
    ])
    assert code == 2
    assert "Mars/Olympus" in capsys.readouterr().err
    assert TenantRepository(str(db)).get_active_by_slug("marte") is None

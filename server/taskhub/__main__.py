from __future__ import annotations

import argparse
import sys

from .config import load_settings
from .db import init_db
from .errors import ValidationFailed
from .logging_setup import setup_logging
from .repositories import TenantRepository


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="TaskHub API - tarefas multi-empresa")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Sobe a API HTTP")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    create = sub.add_parser("create-tenant", help="Cria empresa + ADMIN inicial + listas padrao")
    create.add_argument("--slug", required=True)
    create.add_argument("--name", required=True)
    create.add_argument("--admin-email", required=True)
    create.add_argument("--admin-password", required=True)
    create.add_argument("--admin-nome", default="Administrador")
    create.add_argument("--timezone", default=None)

    args = parser.parse_args(argv)
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_dir or None)

    if args.command == "create-tenant":
        if len(args.admin_password) < 8:
            print("Senha do admin deve ter no minimo 8 caracteres.", file=sys.stderr)
            return 2
        init_db(settings.db_path)
        try:
            tenant = TenantRepository(settings.db_path).create_with_admin(
                slug=args.slug,
                name=args.name,
                admin_email=args.admin_email,
                admin_password=args.admin_password,
                admin_nome=args.admin_nome,
                timezone_name=args.timezone or settings.default_timezone,
            )
        except (ValueError, ValidationFailed) as exc:
            print(str(exc), file=sys.stderr)
            return 2
        print(f"Tenant criado: {tenant.slug} ({tenant.id})")
        return 0

    import uvicorn

    host = getattr(args, "host", "127.0.0.1")
    port = getattr(args, "port", 8000)
    uvicorn.run(
        "taskhub.main:create_app",
        factory=True,
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

from __future__ import annotations

import logging
from typing import Mapping, Optional

from .errors import NoTenant, TenantMismatch, TenantNotFound
from .models import Tenant
from .repositories import TenantRepository


logger = logging.getLogger(__name__)

TENANT_HEADER = "x-tenant-slug"
TENANT_QUERY_PARAM = "tenant"


def resolve_tenant_slug(
    headers: Mapping[str, str],
    query: Mapping[str, str],
    *,
    allow_query: bool = True,
) -> Optional[str]:
    """Slug do tenant, em ordem: header, subdominio do Host, ?tenant= (fora de producao)."""
    header = str(headers.get(TENANT_HEADER) or "").strip().lower()
    if header:
        return header

    host = str(headers.get("host") or "").strip().lower()
    hostname = host.split(":", 1)[0]
    parts = hostname.split(".")
    is_ip = hostname.replace(".", "").isdigit()
    if len(parts) >= 3 and "localhost" not in hostname and not is_ip and parts[0]:
        return parts[0]

    if allow_query:
        q = str(query.get(TENANT_QUERY_PARAM) or "").strip().lower()
        if q:
            return q
    return None


class TenantResolver:
    def __init__(self, tenants: TenantRepository, *, allow_query: bool = True):
        self.tenants = tenants
        self.allow_query = allow_query

    def resolve(self, headers: Mapping[str, str], query: Mapping[str, str]) -> Tenant:
        slug = resolve_tenant_slug(headers, query, allow_query=self.allow_query)
        if not slug:
            raise NoTenant()
        tenant = self.tenants.get_active_by_slug(slug)
        if tenant is None:
            logger.info("Tenant %r inexistente ou inativo", slug)
            raise TenantNotFound()
        return tenant


def ensure_same_tenant(token_tenant_id: str, tenant: Tenant, *, email: str = "") -> None:
    """Token de um tenant nunca e aceito em requisicao de outro."""
    if str(token_tenant_id or "") != tenant.id:
        logger.warning(
            "Token do tenant %s usado em requisicao do tenant %s (%s)",
            token_tenant_id,
            tenant.id,
            email,
        )
        raise TenantMismatch()

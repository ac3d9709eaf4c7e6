from __future__ import annotations

from typing import List, Optional


class AppError(Exception):
    """Base das falhas de dominio; cada subclasse mapeia para um status HTTP."""

    code = "INTERNAL"
    status_code = 500
    default_message = "Erro interno."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class NotFound(AppError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Registro nao encontrado."


class Forbidden(AppError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Sem permissao."


class ValidationFailed(AppError):
    code = "VALIDATION"
    status_code = 400
    default_message = "Dados invalidos."


class RecurrenceNotAllowed(ValidationFailed):
    def __init__(self, recorrencia: str, allowed: List[str]):
        self.recorrencia = recorrencia
        self.allowed = list(allowed)
        permitidas = ", ".join(self.allowed) if self.allowed else "(nenhuma)"
        super().__init__(
            f'Recorrencia "{recorrencia}" nao permitida para sua area. Permitidas: {permitidas}'
        )

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["allowed"] = list(self.allowed)
        return out


class NoRuleConfigured(AppError):
    code = "NO_RULE"
    status_code = 400
    default_message = "Nenhuma regra configurada para sua area. Contate o ADMIN."

    def __init__(self, area: str):
        self.area = area
        super().__init__(f'Nenhuma regra configurada para a area "{area}". Contate o ADMIN.')


class Unauthorized(AppError):
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Autenticacao obrigatoria."


class NoTenant(AppError):
    code = "NO_TENANT"
    status_code = 400
    default_message = "Tenant nao identificado."


class TenantNotFound(AppError):
    code = "TENANT_NOT_FOUND"
    status_code = 404
    default_message = "Empresa nao encontrada ou inativa."


class TenantMismatch(AppError):
    code = "TENANT_MISMATCH"
    status_code = 403
    default_message = "Token nao pertence a esta empresa."


class Internal(AppError):
    code = "INTERNAL"
    status_code = 500
    default_message = "Erro interno."

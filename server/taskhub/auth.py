from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict

import jwt
from jwt import InvalidTokenError

from .errors import Unauthorized
from .models import User

JWT_ALGORITHM = "HS256"


def create_access_token(user: User, *, secret: str, expire_hours: int = 12) -> str:
    now = datetime.now(timezone.utc)
    payload: Dict[str, object] = {
        "sub": str(user.id),
        "email": user.email,
        "nome": user.nome,
        "role": user.role.value,
        "area": user.area,
        "can_delete": bool(user.can_delete),
        "tenant_id": user.tenant_id,
        "iat": int(now.timestamp()),
        "exp": now + timedelta(hours=expire_hours),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str, *, secret: str) -> Dict[str, object]:
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError as exc:
        raise Unauthorized("Token invalido ou expirado") from exc
    if "sub" not in payload or "tenant_id" not in payload:
        raise Unauthorized("Token invalido")
    return payload


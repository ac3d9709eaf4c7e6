from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ValidationFailed


STATUS_EM_ANDAMENTO = "Em Andamento"
STATUS_EM_ATRASO = "Em Atraso"
STATUS_CONCLUIDO = "Concluído"
STATUS_CONCLUIDO_ATRASO = "Concluído em Atraso"

STATUS_ORDER = [
    STATUS_EM_ANDAMENTO,
    STATUS_EM_ATRASO,
    STATUS_CONCLUIDO,
    STATUS_CONCLUIDO_ATRASO,
]

CLEAR = "CLEAR"


def evaluate_status(prazo: Optional[date], realizado: Optional[date], today: date) -> str:
    """Status derivado de (prazo, realizado, hoje), comparando datas de calendario.

    - realizado preenchido: "Concluído", ou "Concluído em Atraso" se realizado > prazo
    - sem prazo: nunca atrasa
    - com prazo: "Em Atraso" apenas depois do dia do prazo
    """
    if realizado is not None:
        if prazo is not None and realizado > prazo:
            return STATUS_CONCLUIDO_ATRASO
        return STATUS_CONCLUIDO
    if prazo is None:
        return STATUS_EM_ANDAMENTO
    if today > prazo:
        return STATUS_EM_ATRASO
    return STATUS_EM_ANDAMENTO


def is_done(status: str) -> bool:
    return status in {STATUS_CONCLUIDO, STATUS_CONCLUIDO_ATRASO}


def load_zone(timezone: str) -> ZoneInfo:
    name = str(timezone or "").strip()
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationFailed(f"Fuso horario invalido: {timezone}") from exc


def today_in(timezone: str) -> date:
    return datetime.now(load_zone(timezone)).date()


_YMD = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_DMY = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def parse_date(value: Union[str, date, None], label: str = "Data") -> Optional[date]:
    """Converte a entrada para date (sem hora). Vazio vira None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        m = _YMD.match(s)
        if m:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        m = _DMY.match(s)
        if m:
            return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        # ISO com hora: vale o dia do calendario informado, sem converter fuso
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValidationFailed(f"{label} invalida: {s}") from exc


def format_date(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


_YM_PATTERNS = [
    (re.compile(r"^(\d{4})-(\d{1,2})-\d{1,2}$"), 1, 2),
    (re.compile(r"^(\d{4})-(\d{1,2})$"), 1, 2),
    (re.compile(r"^(\d{4})/(\d{1,2})$"), 1, 2),
    (re.compile(r"^(\d{1,2})/(\d{4})$"), 2, 1),
    (re.compile(r"^(\d{4})(\d{2})$"), 1, 2),
]


def normalize_competencia(value: Optional[str]) -> str:
    """'03/2026', '2026/3', '202603', '2026-03-15' -> '2026-03'."""
    s = str(value or "").strip()
    if not s:
        raise ValidationFailed("Competência é obrigatória.")
    for pattern, y_group, m_group in _YM_PATTERNS:
        m = pattern.match(s)
        if not m:
            continue
        month = int(m.group(m_group))
        if not 1 <= month <= 12:
            break
        return f"{m.group(y_group)}-{month:02d}"
    raise ValidationFailed(f"Competência invalida: {s}")


class DateAction(Enum):
    KEEP = "keep"
    CLEAR = "clear"
    SET = "set"


@dataclass(frozen=True)
class DatePatch:
    """Alteracao de data em tres estados: manter, limpar ou definir."""

    action: DateAction = DateAction.KEEP
    value: Optional[date] = None

    @classmethod
    def keep(cls) -> "DatePatch":
        return cls(DateAction.KEEP, None)

    @classmethod
    def clear(cls) -> "DatePatch":
        return cls(DateAction.CLEAR, None)

    @classmethod
    def set(cls, value: date) -> "DatePatch":
        return cls(DateAction.SET, value)

    @classmethod
    def from_raw(cls, raw: Union[str, date, None], label: str = "Data") -> "DatePatch":
        # "" e None nao alteram nada; so o sentinela CLEAR apaga a data
        if raw is None:
            return cls.keep()
        if isinstance(raw, str):
            s = raw.strip()
            if not s:
                return cls.keep()
            if s.upper() == CLEAR:
                return cls.clear()
        parsed = parse_date(raw, label)
        if parsed is None:
            return cls.keep()
        return cls.set(parsed)

    @property
    def touches(self) -> bool:
        return self.action is not DateAction.KEEP

    def apply(self, current: Optional[date]) -> Optional[date]:
        if self.action is DateAction.KEEP:
            return current
        if self.action is DateAction.CLEAR:
            return None
        return self.value

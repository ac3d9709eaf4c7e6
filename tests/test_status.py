# tests/test_status.py

from __future__ import annotations

from datetime import date, timedelta

import pytest

from taskhub.errors import ValidationFailed
from taskhub.status import (
    STATUS_CONCLUIDO,
    STATUS_CONCLUIDO_ATRASO,
    STATUS_EM_ANDAMENTO,
    STATUS_EM_ATRASO,
    DateAction,
    DatePatch,
    evaluate_status,
    is_done,
    normalize_competencia,
    parse_date,
    today_in,
)


PRAZO = date(2025, 6, 10)


def test_same_day_completion_is_on_time() -> None:
    assert evaluate_status(PRAZO, date(2025, 6, 10), date(2025, 6, 20)) == STATUS_CONCLUIDO


def test_completion_after_deadline_is_late() -> None:
    assert evaluate_status(PRAZO, date(2025, 6, 12), date(2025, 6, 12)) == STATUS_CONCLUIDO_ATRASO


def test_open_task_past_deadline_is_overdue() -> None:
    assert evaluate_status(PRAZO, None, date(2025, 6, 15)) == STATUS_EM_ATRASO


def test_open_task_on_deadline_day_is_not_overdue() -> None:
    assert evaluate_status(PRAZO, None, PRAZO) == STATUS_EM_ANDAMENTO


@pytest.mark.parametrize("today", [date(2000, 1, 1), date(2025, 6, 15), date(2099, 12, 31)])
def test_no_deadline_is_never_overdue(today: date) -> None:
    assert evaluate_status(None, None, today) == STATUS_EM_ANDAMENTO


def test_completion_without_deadline_is_done() -> None:
    assert evaluate_status(None, date(2025, 1, 1), date(2025, 6, 15)) == STATUS_CONCLUIDO


def test_done_task_never_becomes_overdue_later() -> None:
    realizado = date(2025, 6, 9)
    for offset in range(0, 400, 37):
        status = evaluate_status(PRAZO, realizado, PRAZO + timedelta(days=offset))
        assert status == STATUS_CONCLUIDO
        assert is_done(status)


def test_evaluation_is_deterministic() -> None:
    args = (PRAZO, None, date(2025, 6, 11))
    assert {evaluate_status(*args) for _ in range(5)} == {STATUS_EM_ATRASO}


def test_is_done() -> None:
    assert is_done(STATUS_CONCLUIDO_ATRASO)
    assert not is_done(STATUS_EM_ATRASO)
    assert not is_done(STATUS_EM_ANDAMENTO)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2025-06-10", date(2025, 6, 10)),
        ("10/06/2025", date(2025, 6, 10)),
        ("2025-06-10T23:30:00-03:00", date(2025, 6, 10)),
        ("2025-06-10T02:00:00Z", date(2025, 6, 10)),
        ("", None),
        (None, None),
    ],
)
def test_parse_date(raw, expected) -> None:
    assert parse_date(raw) == expected


def test_parse_date_rejects_garbage() -> None:
    with pytest.raises(ValidationFailed):
        parse_date("amanha", "Prazo")
    with pytest.raises(ValidationFailed):
        parse_date("31/02/2025", "Prazo")


@pytest.mark.parametrize(
    "raw",
    ["2026-03", "2026-3", "2026-03-15", "2026/03", "03/2026", "3/2026", "202603"],
)
def test_normalize_competencia(raw: str) -> None:
    assert normalize_competencia(raw) == "2026-03"


@pytest.mark.parametrize("raw", ["", "  ", None])
def test_normalize_competencia_required(raw) -> None:
    with pytest.raises(ValidationFailed, match="obrigatória"):
        normalize_competencia(raw)


@pytest.mark.parametrize("raw", ["2026-13", "marco", "13/2026", "20261"])
def test_normalize_competencia_invalid(raw: str) -> None:
    with pytest.raises(ValidationFailed):
        normalize_competencia(raw)


def test_date_patch_from_raw_three_states() -> None:
    assert DatePatch.from_raw(None).action is DateAction.KEEP
    assert DatePatch.from_raw("").action is DateAction.KEEP
    assert DatePatch.from_raw("   ").action is DateAction.KEEP
    assert DatePatch.from_raw("CLEAR").action is DateAction.CLEAR
    assert DatePatch.from_raw("clear").action is DateAction.CLEAR

    patch = DatePatch.from_raw("2025-07-01")
    assert patch.action is DateAction.SET
    assert patch.value == date(2025, 7, 1)


def test_date_patch_apply() -> None:
    current = date(2025, 6, 10)
    assert DatePatch.keep().apply(current) == current
    assert DatePatch.clear().apply(current) is None
    assert DatePatch.set(date(2025, 1, 2)).apply(current) == date(2025, 1, 2)
    assert not DatePatch.keep().touches
    assert DatePatch.clear().touches


def test_date_patch_rejects_invalid_date() -> None:
    with pytest.raises(ValidationFailed, match="Prazo"):
        DatePatch.from_raw("99/99/2025", "Prazo")


def test_today_in_valid_and_invalid_zone() -> None:
    assert isinstance(today_in("America/Sao_Paulo"), date)
    with pytest.raises(ValidationFailed):
        today_in("Nao/Existe")

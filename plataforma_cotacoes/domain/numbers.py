"""Conversao de numeros digitados em formato pt-BR (ou en-US) para float."""

from __future__ import annotations

import math
import re
from numbers import Number


_WHITESPACE = re.compile(r"\s+")
# Ponto seguido de exatamente tres digitos e depois virgula ou fim: separador de milhar.
_THOUSANDS_DOT = re.compile(r"\.(?=\d{3}(?:,|$))")
_DECIMAL_LITERAL = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def parse_decimal_ptbr(value) -> float:
    """Normaliza ``value`` para float; retorna ``math.nan`` quando nao for numero.

    Aceita "1.234,56", "1234.56", "2,5", numeros nativos, vazio e None.
    """
    if value is None or isinstance(value, bool):
        return math.nan
    if isinstance(value, Number):
        number = float(value)
        return number if math.isfinite(number) else math.nan

    text = str(value).strip()
    if not text:
        return math.nan

    normalized = _WHITESPACE.sub("", text)
    normalized = _THOUSANDS_DOT.sub("", normalized)
    normalized = normalized.replace(",", ".", 1)
    if not _DECIMAL_LITERAL.fullmatch(normalized):
        return math.nan
    number = float(normalized)
    return number if math.isfinite(number) else math.nan


def is_number(value: float) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def number_or_zero(value) -> float:
    parsed = parse_decimal_ptbr(value)
    return parsed if is_number(parsed) else 0.0


def number_or_none(value) -> float | None:
    parsed = parse_decimal_ptbr(value)
    return parsed if is_number(parsed) else None


def format_decimal_ptbr(value, places: int = 2) -> str:
    number = number_or_none(value)
    if number is None:
        return "-"
    if places == 0 or float(number).is_integer():
        rendered = f"{number:,.0f}"
    else:
        rendered = f"{number:,.{places}f}"
    return rendered.replace(",", "_").replace(".", ",").replace("_", ".")

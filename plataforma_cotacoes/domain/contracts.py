from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

from plataforma_cotacoes.domain.numbers import is_number, parse_decimal_ptbr
from plataforma_cotacoes.domain.quotation import (
    F_BILLED_COMPANY,
    F_PAYMENT_CONDITION,
    F_PRODUCT,
    F_SUPPLIER,
    ItemKey,
    ItemPatch,
)
from plataforma_cotacoes.errors import ValidationError


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


def require_quotation_id(value) -> str:
    quotation_id = str(value if value is not None else "").strip()
    if not quotation_id:
        raise ValidationError(code="quotation_id_required")
    return quotation_id


def _optional_number(value) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    parsed = parse_decimal_ptbr(value)
    return parsed if is_number(parsed) else None


@dataclass(frozen=True)
class CellEditInput:
    key: ItemKey
    column: str
    value: Any

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CellEditInput":
        column = str(payload.get("colunaAlterada") or "").strip()
        if not isinstance(payload.get("identificadoresLinha"), Mapping) or not column or "novoValor" not in payload:
            raise ValidationError(code="insufficient_data")
        return cls(key=ItemKey.from_payload(payload["identificadoresLinha"]), column=column, value=payload.get("novoValor"))


@dataclass(frozen=True)
class ItemDetailsInput:
    key: ItemKey
    patch: ItemPatch

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ItemDetailsInput":
        if not isinstance(payload.get("identificadoresLinha"), Mapping):
            raise ValidationError(code="insufficient_data")
        return cls(
            key=ItemKey.from_payload(payload["identificadoresLinha"]),
            patch=ItemPatch.from_payload(payload.get("alteracoes")),
        )


@dataclass(frozen=True)
class StocktakingEntry:
    product: str
    current_stock: float | None = None
    buy_suggestion: float | None = None
    min_stock: float | None = None

    @classmethod
    def list_from_payload(cls, entries) -> List["StocktakingEntry"]:
        if not isinstance(entries, list) or not entries:
            raise ValidationError(code="stocktaking_data_required")
        parsed: List[StocktakingEntry] = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            product = str(entry.get("produto") or entry.get(F_PRODUCT) or "").strip()
            if not product:
                continue
            parsed.append(
                cls(
                    product=product,
                    current_stock=_optional_number(entry.get("estoqueAtual")),
                    buy_suggestion=_optional_number(entry.get("sugestaoCompra")),
                    min_stock=_optional_number(entry.get("estoqueMinimo")),
                )
            )
        if not parsed:
            raise ValidationError(code="stocktaking_data_required")
        return parsed


@dataclass(frozen=True)
class ItemAssignment:
    """Atribuicao em lote de empresa faturada e/ou condicao de pagamento."""

    key: ItemKey
    billed_company: str | None = None
    payment_condition: str | None = None

    @classmethod
    def list_from_payload(cls, entries, *, require: str, error_code: str) -> List["ItemAssignment"]:
        if not isinstance(entries, list) or not entries:
            raise ValidationError(code=error_code)
        parsed: List[ItemAssignment] = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                raise ValidationError(code=error_code)
            key = ItemKey.from_payload(
                {
                    F_PRODUCT: entry.get(F_PRODUCT, entry.get("produto")),
                    "SubProdutoChave": entry.get("SubProdutoChave", entry.get("SubProduto", entry.get("subProduto"))),
                    F_SUPPLIER: entry.get(F_SUPPLIER, entry.get("fornecedor")),
                }
            )
            billed_company = entry.get(F_BILLED_COMPANY, entry.get("empresaFaturada"))
            payment_condition = entry.get(F_PAYMENT_CONDITION, entry.get("condicaoPagamento"))
            assignment = cls(
                key=key,
                billed_company=str(billed_company).strip() if billed_company is not None else None,
                payment_condition=str(payment_condition).strip() if payment_condition is not None else None,
            )
            if getattr(assignment, require) is None:
                raise ValidationError(code=error_code, payload={"identificadoresLinha": key.to_payload()})
            parsed.append(assignment)
        return parsed

"""Projecoes de leitura: demanda media, estoque minimo e agrupamento de impressao."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping

from plataforma_cotacoes.domain.numbers import is_number, number_or_zero, parse_decimal_ptbr
from plataforma_cotacoes.domain.quotation import (
    F_BILLED_COMPANY,
    F_GROUPS,
    F_ITEMS,
    F_OPENED_AT,
    F_PAYMENT_CONDITION,
    F_PRODUCT,
    F_QUANTITY,
    F_SUPPLIER,
    Quotation,
)
from plataforma_cotacoes.infrastructure.repositories.catalog_repository import P_MIN_STOCK, P_NAME


DEMAND_WINDOW = 3
NO_COMPANY_LABEL = "Sem Empresa"


def parse_opened_at(value) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    raw = str(value or "").strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_opened_at(value) -> str:
    parsed = parse_opened_at(value)
    if parsed is None:
        return "N/A"
    return parsed.strftime("%d/%m/%Y")


def _sort_key(document: Mapping[str, Any]) -> datetime:
    return parse_opened_at(document.get(F_OPENED_AT)) or datetime.min.replace(tzinfo=timezone.utc)


def newest_first(documents: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    return sorted(documents, key=_sort_key, reverse=True)


def newest_quotations_first(quotations: Iterable[Quotation]) -> List[Quotation]:
    oldest = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(quotations, key=lambda quotation: parse_opened_at(quotation.opened_at) or oldest, reverse=True)


def average_demand_map(quotation_documents: Iterable[Mapping[str, Any]]) -> Dict[str, float]:
    """Media das ate 3 compras mais recentes e nao nulas de cada produto.

    A quantidade de um produto numa cotacao e a soma de ``Comprar`` em todos
    os itens do grupo. Documentos no formato antigo (sem ``produtos``) sao
    ignorados.
    """
    purchases: Dict[str, List[float]] = {}
    for document in newest_first(quotation_documents):
        groups = document.get(F_GROUPS)
        if not isinstance(groups, list):
            continue
        for group in groups:
            if not isinstance(group, Mapping):
                continue
            product = str(group.get(F_PRODUCT) or "").strip()
            if not product:
                continue
            history = purchases.setdefault(product, [])
            if len(history) >= DEMAND_WINDOW:
                continue
            total = 0.0
            for item in group.get(F_ITEMS) or []:
                if isinstance(item, Mapping):
                    total += number_or_zero(item.get(F_QUANTITY))
            if total > 0:
                history.append(total)
    return {product: sum(values) / len(values) for product, values in purchases.items() if values}


def min_stock_map(product_documents: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    registry: Dict[str, Any] = {}
    for product in product_documents:
        name = str(product.get(P_NAME) or "").strip()
        if name:
            registry[name] = product.get(P_MIN_STOCK)
    return registry


def print_grouping(quotation: Quotation, tax_ids: Mapping[str, str | None]) -> Dict[str, Any]:
    """Agrupa itens com ``Comprar`` > 0 por fornecedor e empresa faturada.

    Condicoes de pagamento diferentes dentro do mesmo grupo aparecem todas em
    ``condicoesPagamento``; ``condicaoPagamento`` so e preenchida quando ha uma unica.
    """
    by_supplier: Dict[str, Dict[str, Any]] = {}
    for group, item in quotation.iter_items():
        quantity = parse_decimal_ptbr(item.quantity)
        if not is_number(quantity) or quantity <= 0:
            continue
        supplier = item.supplier or ""
        company = str(item.billed_company or "").strip() or NO_COMPANY_LABEL
        companies = by_supplier.setdefault(supplier, {})
        bucket = companies.get(company)
        if bucket is None:
            bucket = {
                "fornecedor": supplier,
                "empresaFaturada": company,
                "cnpj": tax_ids.get(company),
                "condicaoPagamento": None,
                "condicoesPagamento": [],
                "itens": [],
                "valorTotal": 0.0,
            }
            companies[company] = bucket
        condition = str(item.payment_condition or "").strip()
        if condition and condition not in bucket["condicoesPagamento"]:
            bucket["condicoesPagamento"].append(condition)
        bucket["condicaoPagamento"] = bucket["condicoesPagamento"][0] if len(bucket["condicoesPagamento"]) == 1 else None
        line_total = number_or_zero(item.total_value) or number_or_zero(item.price) * quantity
        bucket["valorTotal"] += line_total
        bucket["itens"].append(
            {
                F_PRODUCT: group.product,
                "SubProduto": item.sub_product,
                "UN": item.unit,
                "Tamanho": item.size,
                F_QUANTITY: quantity,
                "Preço": number_or_zero(item.price),
                "Valor Total": line_total,
                F_BILLED_COMPANY: company,
                F_PAYMENT_CONDITION: condition or None,
                F_SUPPLIER: supplier,
            }
        )
    return {supplier: list(companies.values()) for supplier, companies in by_supplier.items()}

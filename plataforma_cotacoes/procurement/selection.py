"""Filtro de subprodutos pelas opcoes de criacao de cotacao."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping

from plataforma_cotacoes.domain.quotation import ProductGroup, QuotationItem
from plataforma_cotacoes.errors import ValidationError
from plataforma_cotacoes.infrastructure.repositories.catalog_repository import (
    P_ABC,
    P_CATEGORY,
    P_MIN_STOCK,
    P_NAME,
    SP_LINKED_PRODUCT,
    SP_NAME,
    SP_SUPPLIER,
)


SELECTION_BY_CATEGORY = "categoria"
SELECTION_BY_SUPPLIER = "fornecedor"
SELECTION_BY_ABC = "curvaABC"
SELECTION_BY_PRODUCT = "produtoEspecifico"

SELECTION_TYPES = (SELECTION_BY_CATEGORY, SELECTION_BY_SUPPLIER, SELECTION_BY_ABC, SELECTION_BY_PRODUCT)


def _lower(value) -> str:
    return str(value).strip().lower() if value is not None else ""


@dataclass(frozen=True)
class SelectionCriteria:
    kind: str
    selections: tuple

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "SelectionCriteria":
        data = payload if isinstance(payload, Mapping) else {}
        kind = str(data.get("tipo") or "").strip()
        selections = data.get("selecoes")
        if not kind or not isinstance(selections, list) or not selections:
            raise ValidationError(code="creation_options_invalid")
        if kind not in SELECTION_TYPES:
            raise ValidationError(
                code="selection_type_invalid",
                payload={"tipo": kind, "tiposPermitidos": list(SELECTION_TYPES)},
            )
        return cls(kind=kind, selections=tuple(str(item) for item in selections if item is not None))

    def lowered(self) -> set:
        return {_lower(item) for item in self.selections if _lower(item)}


def _product_names_where(products: Iterable[Mapping[str, Any]], field_name: str, wanted: set) -> set:
    return {
        _lower(product.get(P_NAME))
        for product in products
        if _lower(product.get(field_name)) in wanted
    }


def filter_subproducts(
    criteria: SelectionCriteria,
    subproducts: Iterable[Mapping[str, Any]],
    products: Iterable[Mapping[str, Any]],
) -> List[Mapping[str, Any]]:
    wanted = criteria.lowered()
    products = list(products)
    if criteria.kind == SELECTION_BY_SUPPLIER:
        return [sp for sp in subproducts if _lower(sp.get(SP_SUPPLIER)) in wanted]
    if criteria.kind == SELECTION_BY_PRODUCT:
        return [sp for sp in subproducts if _lower(sp.get(SP_LINKED_PRODUCT)) in wanted]
    field_name = P_CATEGORY if criteria.kind == SELECTION_BY_CATEGORY else P_ABC
    product_names = _product_names_where(products, field_name, wanted)
    return [sp for sp in subproducts if _lower(sp.get(SP_LINKED_PRODUCT)) in product_names]


def _text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def item_from_subproduct(subproduct: Mapping[str, Any], product: Mapping[str, Any] | None) -> QuotationItem:
    category = product.get(P_CATEGORY) if product else None
    if not category:
        category = subproduct.get(P_CATEGORY)
    factor = subproduct.get("Fator")
    return QuotationItem(
        sub_product=_text(subproduct.get(SP_NAME)),
        supplier=_text(subproduct.get(SP_SUPPLIER)),
        category=_text(category),
        size=_text(subproduct.get("Tamanho")),
        unit=_text(subproduct.get("UN")),
        factor=factor if factor not in ("", None) else None,
        ncm=_text(subproduct.get("NCM")),
        cst=_text(subproduct.get("CST")),
        cfop=_text(subproduct.get("CFOP")),
    )


def build_groups(
    subproducts: Iterable[Mapping[str, Any]],
    products_by_name: Mapping[str, Mapping[str, Any]],
    existing: List[ProductGroup] | None = None,
) -> Dict[str, Any]:
    """Mescla subprodutos em grupos por Produto sem repetir a chave composta.

    Retorna ``{"groups": [...], "added": n}``; ``existing`` e alterada no lugar
    quando informada.
    """
    groups: List[ProductGroup] = existing if existing is not None else []
    by_product: Dict[str, ProductGroup] = {}
    for group in groups:
        by_product.setdefault(group.product, group)
    seen = {
        (group.product, item.sub_product, item.supplier)
        for group in groups
        for item in group.items
    }

    added = 0
    for subproduct in subproducts:
        product_name = _text(subproduct.get(SP_LINKED_PRODUCT))
        product = products_by_name.get(product_name)
        item = item_from_subproduct(subproduct, product)
        key = (product_name, item.sub_product, item.supplier)
        if key in seen:
            continue
        group = by_product.get(product_name)
        if group is None:
            min_stock = product.get(P_MIN_STOCK) if product else None
            group = ProductGroup(product=product_name, min_stock=min_stock if min_stock != "" else None)
            by_product[product_name] = group
            groups.append(group)
        group.items.append(item)
        seen.add(key)
        added += 1
    return {"groups": groups, "added": added}

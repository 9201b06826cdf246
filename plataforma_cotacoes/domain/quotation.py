"""Modelo do documento de cotacao: cotacao -> grupos de produto -> itens.

O documento persistido usa os nomes de campo da planilha de origem
("Preço", "Comprar", "Empresa Faturada"...). As classes abaixo fazem a
conversao sem perda: campos desconhecidos ficam em ``extras`` e voltam
intactos para o documento.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from plataforma_cotacoes.domain.numbers import is_number, number_or_zero, parse_decimal_ptbr
from plataforma_cotacoes.errors import ValidationError


F_ID = "ID da Cotação"
F_OPENED_AT = "Data Abertura"
F_STATUS = "Status da Cotação"
F_GROUPS = "produtos"
F_ITEMS = "itens"

F_PRODUCT = "Produto"
F_SUBPRODUCT = "SubProduto"
F_SUBPRODUCT_LEGACY = "Subproduto"
F_SUPPLIER = "Fornecedor"
F_CURRENT_STOCK = "Estoque Atual"
F_MIN_STOCK = "Estoque Mínimo"
F_AVG_DEMAND = "Demanda Média"
F_PRICE = "Preço"
F_PRICE_PER_FACTOR = "Preço por Fator"
F_QUANTITY = "Comprar"
F_TOTAL_VALUE = "Valor Total"
F_FACTOR = "Fator"
F_BILLED_COMPANY = "Empresa Faturada"
F_PAYMENT_CONDITION = "Condição de Pagamento"

# atributo -> campo do documento
ITEM_FIELD_MAP: Dict[str, str] = {
    "sub_product": F_SUBPRODUCT,
    "supplier": F_SUPPLIER,
    "category": "Categoria",
    "size": "Tamanho",
    "unit": "UN",
    "factor": F_FACTOR,
    "ncm": "NCM",
    "cst": "CST",
    "cfop": "CFOP",
    "price": F_PRICE,
    "price_per_factor": F_PRICE_PER_FACTOR,
    "quantity": F_QUANTITY,
    "total_value": F_TOTAL_VALUE,
    "savings": "Economia em Cotação",
    "billed_company": F_BILLED_COMPANY,
    "payment_condition": F_PAYMENT_CONDITION,
}
ITEM_ATTR_BY_FIELD: Dict[str, str] = {column: attr for attr, column in ITEM_FIELD_MAP.items()}

NUMERIC_ITEM_FIELDS = frozenset({F_FACTOR, F_PRICE, F_PRICE_PER_FACTOR, F_QUANTITY, F_TOTAL_VALUE, "Economia em Cotação"})
TRIGGER_FIELDS = frozenset({F_PRICE, F_QUANTITY, F_FACTOR})
SYNCABLE_FIELDS = frozenset({F_SUBPRODUCT, "Tamanho", "UN", F_FACTOR})
DERIVED_FIELDS = frozenset({F_PRICE_PER_FACTOR, F_TOTAL_VALUE})
EDITABLE_FIELDS = frozenset(set(ITEM_FIELD_MAP.values()) - DERIVED_FIELDS - {F_SUPPLIER})


@dataclass(frozen=True)
class DerivedValues:
    total_value: float
    price_per_factor: float

    def to_payload(self) -> Dict[str, float]:
        return {"valorTotal": self.total_value, "precoPorFator": self.price_per_factor}


def calculate_derived(price, quantity, factor) -> DerivedValues:
    price_value = number_or_zero(price)
    quantity_value = number_or_zero(quantity)
    factor_value = number_or_zero(factor)
    return DerivedValues(
        total_value=price_value * quantity_value,
        price_per_factor=(price_value / factor_value) if factor_value != 0 else 0.0,
    )


@dataclass(frozen=True)
class ItemKey:
    product: str
    sub_product: str
    supplier: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "ItemKey":
        data = payload if isinstance(payload, Mapping) else {}
        sub_product = data.get("SubProdutoChave")
        if sub_product is None:
            sub_product = data.get(F_SUBPRODUCT, data.get(F_SUBPRODUCT_LEGACY))
        key = cls(
            product=_clean_text(data.get(F_PRODUCT)),
            sub_product=_clean_text(sub_product),
            supplier=_clean_text(data.get(F_SUPPLIER)),
        )
        if not key.product or not key.sub_product or not key.supplier:
            raise ValidationError(code="item_key_required", payload={"identificadoresLinha": key.to_payload()})
        return key

    def as_tuple(self) -> Tuple[str, str, str]:
        return (self.product, self.sub_product, self.supplier)

    def to_payload(self) -> Dict[str, str]:
        return {F_PRODUCT: self.product, "SubProdutoChave": self.sub_product, F_SUPPLIER: self.supplier}


def _clean_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass
class QuotationItem:
    sub_product: str = ""
    supplier: str = ""
    category: str = ""
    size: str = ""
    unit: str = ""
    factor: Any = None
    ncm: str = ""
    cst: str = ""
    cfop: str = ""
    price: Any = None
    price_per_factor: Any = None
    quantity: Any = None
    total_value: Any = None
    savings: Any = None
    billed_company: Any = None
    payment_condition: Any = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "QuotationItem":
        raw = dict(data or {})
        if F_SUBPRODUCT not in raw and F_SUBPRODUCT_LEGACY in raw:
            raw[F_SUBPRODUCT] = raw.pop(F_SUBPRODUCT_LEGACY)
        else:
            raw.pop(F_SUBPRODUCT_LEGACY, None)
        values: Dict[str, Any] = {}
        for attr, column in ITEM_FIELD_MAP.items():
            if column in raw:
                values[attr] = raw.pop(column)
        for attr in ("sub_product", "supplier"):
            values[attr] = _clean_text(values.get(attr))
        raw.pop(F_PRODUCT, None)
        return cls(**values, extras=raw)

    def to_document(self) -> Dict[str, Any]:
        document = dict(self.extras)
        for attr, column in ITEM_FIELD_MAP.items():
            document[column] = getattr(self, attr)
        return document

    def get_field(self, column: str):
        return getattr(self, ITEM_ATTR_BY_FIELD[column])

    def set_field(self, column: str, value) -> None:
        setattr(self, ITEM_ATTR_BY_FIELD[column], value)

    def recalculate(self) -> DerivedValues:
        derived = calculate_derived(self.price, self.quantity, self.factor)
        self.total_value = derived.total_value
        self.price_per_factor = derived.price_per_factor
        return derived

    def quantity_value(self) -> float:
        return number_or_zero(self.quantity)

    def key_for(self, product: str) -> ItemKey:
        return ItemKey(product=product, sub_product=self.sub_product, supplier=self.supplier)


@dataclass
class ProductGroup:
    product: str
    items: List[QuotationItem] = field(default_factory=list)
    current_stock: Any = None
    min_stock: Any = None
    avg_demand: Any = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "ProductGroup":
        raw = dict(data or {})
        items = raw.pop(F_ITEMS, None) or []
        return cls(
            product=_clean_text(raw.pop(F_PRODUCT, "")),
            items=[QuotationItem.from_document(item) for item in items if isinstance(item, Mapping)],
            current_stock=raw.pop(F_CURRENT_STOCK, None),
            min_stock=raw.pop(F_MIN_STOCK, None),
            avg_demand=raw.pop(F_AVG_DEMAND, None),
            extras=raw,
        )

    def to_document(self) -> Dict[str, Any]:
        document = dict(self.extras)
        document[F_PRODUCT] = self.product
        document[F_CURRENT_STOCK] = self.current_stock
        document[F_MIN_STOCK] = self.min_stock
        document[F_AVG_DEMAND] = self.avg_demand
        document[F_ITEMS] = [item.to_document() for item in self.items]
        return document


@dataclass
class Quotation:
    quotation_id: Any
    opened_at: Any = None
    status: str | None = None
    groups: List[ProductGroup] = field(default_factory=list)
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, data: Mapping[str, Any], doc_id: Any = None) -> "Quotation":
        raw = dict(data or {})
        raw.pop("idCotacao", None)
        quotation_id = raw.pop(F_ID, None)
        if quotation_id in (None, ""):
            quotation_id = doc_id
        if F_GROUPS in raw:
            groups = [ProductGroup.from_document(group) for group in raw.pop(F_GROUPS) or [] if isinstance(group, Mapping)]
            raw.pop(F_ITEMS, None)
        else:
            groups = group_flat_items(raw.pop(F_ITEMS, None) or [])
        return cls(
            quotation_id=quotation_id,
            opened_at=raw.pop(F_OPENED_AT, None),
            status=raw.pop(F_STATUS, None),
            groups=groups,
            extras=raw,
        )

    def to_document(self) -> Dict[str, Any]:
        document = dict(self.extras)
        document[F_ID] = self.quotation_id
        document[F_OPENED_AT] = self.opened_at
        document[F_STATUS] = self.status
        document[F_GROUPS] = [group.to_document() for group in self.groups]
        return document

    def find_group(self, product: str) -> ProductGroup | None:
        for group in self.groups:
            if group.product == product:
                return group
        return None

    def find_item(self, key: ItemKey) -> QuotationItem | None:
        location = locate_item(self.groups, key)
        if location is None:
            return None
        group_index, item_index = location
        return self.groups[group_index].items[item_index]

    def iter_items(self) -> Iterable[Tuple[ProductGroup, QuotationItem]]:
        for group in self.groups:
            for item in group.items:
                yield group, item

    def item_count(self) -> int:
        return sum(len(group.items) for group in self.groups)

    def drop_empty_groups(self) -> int:
        before = len(self.groups)
        self.groups = [group for group in self.groups if group.items]
        return before - len(self.groups)


def group_flat_items(items: Sequence[Any]) -> List[ProductGroup]:
    """Agrupa o esquema antigo (lista plana ``itens``) por Produto, preservando a ordem."""
    groups: List[ProductGroup] = []
    by_product: Dict[str, ProductGroup] = {}
    for raw_item in items:
        if not isinstance(raw_item, Mapping):
            continue
        product = _clean_text(raw_item.get(F_PRODUCT))
        group = by_product.get(product)
        if group is None:
            group = ProductGroup(product=product)
            by_product[product] = group
            groups.append(group)
        group.items.append(QuotationItem.from_document(raw_item))
    return groups


def _group_product(group) -> str:
    if isinstance(group, Mapping):
        return group.get(F_PRODUCT)
    return group.product


def _group_items(group) -> Sequence[Any]:
    if isinstance(group, Mapping):
        items = group.get(F_ITEMS)
        return items if isinstance(items, list) else []
    return group.items


def _item_identity(item) -> Tuple[Any, Any]:
    if isinstance(item, Mapping):
        sub_product = item.get(F_SUBPRODUCT)
        if sub_product is None:
            sub_product = item.get(F_SUBPRODUCT_LEGACY)
        return sub_product, item.get(F_SUPPLIER)
    return item.sub_product, item.supplier


def locate_item(groups: Sequence[Any], key: ItemKey) -> Tuple[int, int] | None:
    """Retorna (indice do grupo, indice do item) ou None.

    Aceita grupos do modelo ou dicionarios crus do documento. Se o mesmo
    Produto aparecer em mais de um grupo, apenas o primeiro e considerado.
    """
    for group_index, group in enumerate(groups or ()):
        if _group_product(group) != key.product:
            continue
        for item_index, item in enumerate(_group_items(group)):
            sub_product, supplier = _item_identity(item)
            if sub_product == key.sub_product and supplier == key.supplier:
                return group_index, item_index
        return None
    return None


_UNSET = object()


def normalize_field_value(column: str, value):
    """Valor pronto para gravar: numeros normalizados, texto aparado."""
    if column in NUMERIC_ITEM_FIELDS:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        parsed = parse_decimal_ptbr(value)
        if not is_number(parsed):
            raise ValidationError(
                code="numeric_value_invalid",
                payload={"coluna": column, "valor": value},
            )
        return parsed
    if value is None:
        return None
    return str(value).strip()


@dataclass
class ItemPatch:
    """Atualizacao parcial de um item; campos nao informados ficam intactos."""

    sub_product: Any = _UNSET
    category: Any = _UNSET
    size: Any = _UNSET
    unit: Any = _UNSET
    factor: Any = _UNSET
    ncm: Any = _UNSET
    cst: Any = _UNSET
    cfop: Any = _UNSET
    price: Any = _UNSET
    quantity: Any = _UNSET
    savings: Any = _UNSET
    billed_company: Any = _UNSET
    payment_condition: Any = _UNSET

    @classmethod
    def from_payload(cls, changes: Mapping[str, Any] | None) -> "ItemPatch":
        if not isinstance(changes, Mapping) or not changes:
            raise ValidationError(code="no_changes")
        values: Dict[str, Any] = {}
        for column, value in changes.items():
            canonical = F_SUBPRODUCT if column == F_SUBPRODUCT_LEGACY else column
            if canonical not in EDITABLE_FIELDS:
                raise ValidationError(code="column_not_editable", payload={"coluna": column})
            values[ITEM_ATTR_BY_FIELD[canonical]] = normalize_field_value(canonical, value)
        if "sub_product" in values and not values["sub_product"]:
            raise ValidationError(code="item_key_required", payload={"coluna": F_SUBPRODUCT})
        return cls(**values)

    def changed_fields(self) -> Dict[str, Any]:
        changed: Dict[str, Any] = {}
        for field_def in fields(self):
            value = getattr(self, field_def.name)
            if value is not _UNSET:
                changed[ITEM_FIELD_MAP[field_def.name]] = value
        return changed

    def apply(self, item: QuotationItem) -> Dict[str, Any]:
        changed = self.changed_fields()
        for column, value in changed.items():
            item.set_field(column, value)
        return changed

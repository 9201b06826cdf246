from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping

from flask import current_app

from plataforma_cotacoes.domain.contracts import (
    CellEditInput,
    ItemAssignment,
    ItemDetailsInput,
    ServiceOutput,
    StocktakingEntry,
)
from plataforma_cotacoes.domain.numbers import format_decimal_ptbr, number_or_zero
from plataforma_cotacoes.domain.quotation import (
    EDITABLE_FIELDS,
    F_BILLED_COMPANY,
    F_PAYMENT_CONDITION,
    F_PRODUCT,
    F_QUANTITY,
    F_SUBPRODUCT,
    F_SUBPRODUCT_LEGACY,
    F_SUPPLIER,
    F_TOTAL_VALUE,
    SYNCABLE_FIELDS,
    TRIGGER_FIELDS,
    ItemKey,
    Quotation,
    QuotationItem,
    locate_item,
    normalize_field_value,
)
from plataforma_cotacoes.errors import ConflictError, ValidationError, item_not_found
from plataforma_cotacoes.infrastructure.document_store import DocumentStore, DocumentTransaction
from plataforma_cotacoes.infrastructure.repositories.catalog_repository import (
    C_NAME,
    C_TAX_ID,
    P_ABC,
    P_CATEGORY,
    P_MIN_STOCK,
    P_NAME,
    S_NAME,
    CompanyRepository,
    ProductRepository,
    SubProductRepository,
    SupplierRepository,
)
from plataforma_cotacoes.infrastructure.repositories.quotation_repository import QuotationRepository
from plataforma_cotacoes.observability import current_request_id, observe_tx_conflict
from plataforma_cotacoes.procurement.flow_policy import (
    STATUS_NEW,
    STATUS_PAYMENT_TERMS,
    STATUS_STOCKTAKING,
    allowed_transitions,
    frontend_bundle,
    validate_transition,
)
from plataforma_cotacoes.procurement.projections import (
    average_demand_map,
    format_opened_at,
    min_stock_map,
    newest_quotations_first,
    print_grouping,
)
from plataforma_cotacoes.procurement.selection import SelectionCriteria, build_groups, filter_subproducts
from plataforma_cotacoes.procurement.subproduct_sync import (
    build_sync_payload,
    drain_after_commit,
    stage_subproduct_sync,
)
from plataforma_cotacoes.ui_strings import DETAIL_HEADERS, PAYMENT_CONDITIONS, success_message


def _iso_utc(value: datetime) -> str:
    return value.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _log_conflict(collection: str, doc_id: str, attempt: int) -> None:
    observe_tx_conflict()
    current_app.logger.info(
        "documento_conflito_retry",
        extra={"collection": collection, "doc_id": doc_id, "attempt": attempt},
    )


def build_document_store(db) -> DocumentStore:
    return DocumentStore(
        db,
        max_attempts=int(current_app.config.get("DOCUMENT_TX_MAX_ATTEMPTS", 5) or 5),
        retry_delay_ms=int(current_app.config.get("DOCUMENT_TX_RETRY_DELAY_MS", 20) or 0),
        on_conflict=_log_conflict,
    )


def _status_free_form() -> bool:
    return bool(current_app.config.get("COTACAO_STATUS_LIVRE", False))


def _ensure_unique_key(quotation: Quotation, group_index: int, item: QuotationItem, new_sub_product: str) -> None:
    group = quotation.groups[group_index]
    for other in group.items:
        if other is item:
            continue
        if other.sub_product == new_sub_product and other.supplier == item.supplier:
            raise ConflictError(
                code="item_key_conflict",
                payload={"identificadoresLinha": other.key_for(group.product).to_payload()},
            )


def _locate_or_raise(quotation: Quotation, key: ItemKey):
    location = locate_item(quotation.groups, key)
    if location is None:
        raise item_not_found(key)
    group_index, item_index = location
    return group_index, quotation.groups[group_index].items[item_index]


def _stock_summary(entry: StocktakingEntry) -> str:
    parts = []
    if entry.current_stock is not None:
        parts.append(f"Atual: {format_decimal_ptbr(entry.current_stock)}")
    if entry.min_stock is not None:
        parts.append(f"Minimo: {format_decimal_ptbr(entry.min_stock)}")
    if entry.buy_suggestion is not None:
        parts.append(f"Sugestao: {format_decimal_ptbr(entry.buy_suggestion)}")
    return " | ".join(parts)


class QuotationService:
    def create_quotation(self, db, *, criteria: SelectionCriteria) -> ServiceOutput:
        store = build_document_store(db)
        products = ProductRepository(store).list_documents()
        matched = filter_subproducts(criteria, SubProductRepository(store).list_documents(), products)
        products_by_name = _products_by_name(products)
        opened_at = _iso_utc(datetime.now(timezone.utc))

        def _build(quotation_id: int) -> Quotation:
            built = build_groups(matched, products_by_name)
            return Quotation(quotation_id=quotation_id, opened_at=opened_at, status=STATUS_NEW, groups=built["groups"])

        quotation = QuotationRepository(store).create_with_next_id(_build)
        item_count = quotation.item_count()
        current_app.logger.info(
            "cotacao_criada",
            extra={
                "request_id": current_request_id(),
                "quotation_id": quotation.quotation_id,
                "criteria_type": criteria.kind,
                "items": item_count,
            },
        )
        if not item_count:
            return ServiceOutput(
                payload={
                    "success": True,
                    "idCotacao": quotation.quotation_id,
                    "numItens": 0,
                    "message": success_message("quotation_created_empty"),
                }
            )
        return ServiceOutput(
            payload={
                "success": True,
                "idCotacao": quotation.quotation_id,
                "numItens": item_count,
                "message": success_message("quotation_created"),
            },
            status_code=201,
        )

    def append_items(self, db, *, quotation_id: str, criteria: SelectionCriteria) -> ServiceOutput:
        store = build_document_store(db)
        products = ProductRepository(store).list_documents()
        matched = filter_subproducts(criteria, SubProductRepository(store).list_documents(), products)
        products_by_name = _products_by_name(products)

        def _append(quotation: Quotation, _tx: DocumentTransaction) -> int:
            return build_groups(matched, products_by_name, existing=quotation.groups)["added"]

        added = QuotationRepository(store).mutate(quotation_id, _append)
        current_app.logger.info(
            "cotacao_itens_acrescentados",
            extra={"request_id": current_request_id(), "quotation_id": quotation_id, "added": added},
        )
        return ServiceOutput(
            payload={
                "success": True,
                "numItens": added,
                "message": success_message("items_appended" if added else "no_new_items"),
            }
        )

    def edit_cell(self, db, *, quotation_id: str, edit: CellEditInput) -> ServiceOutput:
        column = F_SUBPRODUCT if edit.column == F_SUBPRODUCT_LEGACY else edit.column
        if column not in EDITABLE_FIELDS:
            raise ValidationError(code="column_not_editable", payload={"coluna": edit.column})
        value = normalize_field_value(column, edit.value)
        if column == F_SUBPRODUCT and not value:
            raise ValidationError(code="item_key_required", payload={"coluna": F_SUBPRODUCT})
        request_id = current_request_id()
        store = build_document_store(db)

        def _edit(quotation: Quotation, tx: DocumentTransaction) -> Dict[str, Any]:
            group_index, item = _locate_or_raise(quotation, edit.key)
            previous_sub_product = item.sub_product
            renamed = column == F_SUBPRODUCT and value != previous_sub_product
            if renamed:
                _ensure_unique_key(quotation, group_index, item, value)
            item.set_field(column, value)
            derived = item.recalculate() if (column in TRIGGER_FIELDS or renamed) else None
            if column in SYNCABLE_FIELDS:
                stage_subproduct_sync(
                    tx,
                    quotation.quotation_id,
                    build_sync_payload(
                        product=edit.key.product,
                        previous_sub_product=previous_sub_product,
                        supplier=item.supplier,
                        changes={column: value},
                        request_id=request_id,
                    ),
                )
            return {"derived": derived, "renamed": renamed}

        outcome = QuotationRepository(store).mutate(quotation_id, _edit)
        if column in SYNCABLE_FIELDS:
            drain_after_commit(db, store, quotation_id)
        current_app.logger.info(
            "cotacao_celula_salva",
            extra={
                "request_id": request_id,
                "quotation_id": quotation_id,
                "coluna": column,
                "item": list(edit.key.as_tuple()),
            },
        )
        derived = outcome["derived"]
        payload: Dict[str, Any] = {
            "success": True,
            "message": f"{success_message('cell_saved')} ({column})",
            "valoresCalculados": derived.to_payload() if derived else {},
        }
        if column == F_SUBPRODUCT:
            payload["novoSubProdutoNomeSeAlterado"] = value
        return ServiceOutput(payload=payload)

    def edit_item_details(self, db, *, quotation_id: str, details: ItemDetailsInput) -> ServiceOutput:
        changed_fields = details.patch.changed_fields()
        store = build_document_store(db)

        def _apply(quotation: Quotation, _tx: DocumentTransaction) -> None:
            group_index, item = _locate_or_raise(quotation, details.key)
            new_name = changed_fields.get(F_SUBPRODUCT)
            if new_name is not None and new_name != item.sub_product:
                _ensure_unique_key(quotation, group_index, item, new_name)
            details.patch.apply(item)

        QuotationRepository(store).mutate(quotation_id, _apply)
        current_app.logger.info(
            "cotacao_item_detalhes_salvos",
            extra={
                "request_id": current_request_id(),
                "quotation_id": quotation_id,
                "campos": sorted(changed_fields),
                "item": list(details.key.as_tuple()),
            },
        )
        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("item_details_saved"),
                "novoSubProdutoNomeSeAlterado": changed_fields.get(F_SUBPRODUCT),
            }
        )

    def save_stocktaking(self, db, *, quotation_id: str, entries: List[StocktakingEntry]) -> ServiceOutput:
        store = build_document_store(db)
        by_product = {entry.product: entry for entry in entries}
        free_form = _status_free_form()

        def _apply(quotation: Quotation, _tx: DocumentTransaction) -> int:
            quotation.status = validate_transition(quotation.status, STATUS_STOCKTAKING, free_form=free_form)
            touched = 0
            for group in quotation.groups:
                entry = by_product.get(group.product)
                if entry is None:
                    continue
                touched += 1
                group.current_stock = _stock_summary(entry)
                if entry.min_stock is not None:
                    group.min_stock = entry.min_stock
                if entry.buy_suggestion is not None:
                    for item in group.items:
                        item.quantity = entry.buy_suggestion
                        item.recalculate()
            return touched

        touched = QuotationRepository(store).mutate(quotation_id, _apply)
        write_back = self._write_back_min_stock(store, entries)
        current_app.logger.info(
            "cotacao_contagem_salva",
            extra={
                "request_id": current_request_id(),
                "quotation_id": quotation_id,
                "groups_touched": touched,
                "entries": len(entries),
            },
        )
        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("stocktaking_saved"),
                "produtosNaoEncontrados": write_back["missing"],
                "estoqueMinimoNaoGravado": write_back["failed"],
            }
        )

    def _write_back_min_stock(self, store: DocumentStore, entries: List[StocktakingEntry]) -> Dict[str, List[str]]:
        """Grava o estoque minimo nos produtos depois do commit da cotacao.

        Falhas aqui nao desfazem a contagem: sao registradas em log e
        devolvidas em ``failed`` para o chamador.
        """
        outcome: Dict[str, List[str]] = {"missing": [], "failed": []}
        with_min_stock = [entry for entry in entries if entry.min_stock is not None]
        if not with_min_stock:
            return outcome
        products = ProductRepository(store)
        ids_by_name = products.ids_by_name()
        updates = []
        for entry in with_min_stock:
            product_id = ids_by_name.get(entry.product)
            if product_id is None:
                outcome["missing"].append(entry.product)
                continue
            updates.append((product_id, {P_MIN_STOCK: entry.min_stock}))
        if outcome["missing"]:
            current_app.logger.warning(
                "estoque_minimo_produto_nao_encontrado",
                extra={"request_id": current_request_id(), "produtos": outcome["missing"]},
            )
        if not updates:
            return outcome
        try:
            products.write_many(
                updates,
                batch_size=int(current_app.config.get("STOCK_WRITE_BATCH_SIZE", 50) or 50),
                merge=True,
                only_existing=True,
            )
        except Exception:
            outcome["failed"] = [entry.product for entry in with_min_stock if entry.product not in outcome["missing"]]
            current_app.logger.warning(
                "estoque_minimo_gravacao_falhou",
                exc_info=True,
                extra={"request_id": current_request_id(), "produtos": outcome["failed"]},
            )
        return outcome

    def remove_products(self, db, *, quotation_id: str, product_names: List[str]) -> ServiceOutput:
        names = {str(name).strip() for name in product_names if str(name or "").strip()}
        if not names:
            raise ValidationError(code="product_names_required")
        store = build_document_store(db)

        def _apply(quotation: Quotation, _tx: DocumentTransaction) -> int:
            before = len(quotation.groups)
            quotation.groups = [group for group in quotation.groups if group.product not in names]
            return before - len(quotation.groups)

        removed = QuotationRepository(store).mutate(quotation_id, _apply)
        current_app.logger.info(
            "cotacao_produtos_retirados",
            extra={"request_id": current_request_id(), "quotation_id": quotation_id, "removed": removed},
        )
        return ServiceOutput(
            payload={"success": True, "message": success_message("products_removed"), "removidos": removed}
        )

    def remove_subproducts(self, db, *, quotation_id: str, keys: List[ItemKey]) -> ServiceOutput:
        if not keys:
            raise ValidationError(code="subproducts_required")
        wanted = {key.as_tuple() for key in keys}
        store = build_document_store(db)

        def _apply(quotation: Quotation, _tx: DocumentTransaction) -> int:
            removed = 0
            for group in quotation.groups:
                kept = [item for item in group.items if item.key_for(group.product).as_tuple() not in wanted]
                removed += len(group.items) - len(kept)
                group.items = kept
            quotation.drop_empty_groups()
            return removed

        removed = QuotationRepository(store).mutate(quotation_id, _apply)
        current_app.logger.info(
            "cotacao_subprodutos_retirados",
            extra={"request_id": current_request_id(), "quotation_id": quotation_id, "removed": removed},
        )
        return ServiceOutput(
            payload={"success": True, "message": success_message("subproducts_removed"), "removidos": removed}
        )

    def update_status(self, db, *, quotation_id: str, new_status: str) -> ServiceOutput:
        store = build_document_store(db)
        free_form = _status_free_form()

        def _apply(quotation: Quotation, _tx: DocumentTransaction) -> Dict[str, Any]:
            previous = quotation.status
            quotation.status = validate_transition(previous, new_status, free_form=free_form)
            return {"from": previous, "to": quotation.status}

        change = QuotationRepository(store).mutate(quotation_id, _apply)
        current_app.logger.info(
            "cotacao_status_atualizado",
            extra={
                "request_id": current_request_id(),
                "quotation_id": quotation_id,
                "from_status": change["from"],
                "to_status": change["to"],
                "free_form": free_form,
            },
        )
        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("status_updated"),
                "status": change["to"],
                "statusPermitidos": allowed_transitions(change["to"]),
            }
        )

    def save_billing(self, db, *, quotation_id: str, assignments: List[ItemAssignment]) -> ServiceOutput:
        store = build_document_store(db)

        def _apply(quotation: Quotation, _tx: DocumentTransaction) -> int:
            for assignment in assignments:
                _group_index, item = _locate_or_raise(quotation, assignment.key)
                item.billed_company = assignment.billed_company or None
            return len(assignments)

        updated = QuotationRepository(store).mutate(quotation_id, _apply)
        current_app.logger.info(
            "cotacao_faturamento_salvo",
            extra={"request_id": current_request_id(), "quotation_id": quotation_id, "items": updated},
        )
        return ServiceOutput(
            payload={"success": True, "message": success_message("billing_saved"), "atualizados": updated}
        )

    def save_payment_conditions(self, db, *, quotation_id: str, assignments: List[ItemAssignment]) -> ServiceOutput:
        store = build_document_store(db)
        free_form = _status_free_form()

        def _apply(quotation: Quotation, _tx: DocumentTransaction) -> int:
            for assignment in assignments:
                _group_index, item = _locate_or_raise(quotation, assignment.key)
                item.payment_condition = assignment.payment_condition or None
                if assignment.billed_company is not None:
                    item.billed_company = assignment.billed_company or None
            quotation.status = validate_transition(quotation.status, STATUS_PAYMENT_TERMS, free_form=free_form)
            return len(assignments)

        updated = QuotationRepository(store).mutate(quotation_id, _apply)
        current_app.logger.info(
            "cotacao_condicoes_salvas",
            extra={"request_id": current_request_id(), "quotation_id": quotation_id, "items": updated},
        )
        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("payment_conditions_saved"),
                "atualizados": updated,
                "status": STATUS_PAYMENT_TERMS,
            }
        )

    def fetch_details(self, db, *, quotation_id: str) -> ServiceOutput:
        store = build_document_store(db)
        quotation = QuotationRepository(store).require(quotation_id)
        min_stock = min_stock_map(ProductRepository(store).list_documents())
        demand = average_demand_map(QuotationRepository(store).list_documents())

        groups = []
        for group in quotation.groups:
            if not group.items:
                continue
            document = group.to_document()
            document["EstoqueMinimoProdutoPrincipal"] = min_stock.get(group.product)
            document["DemandaMediaProdutoPrincipal"] = demand.get(group.product)
            for item_document, item in zip(document["itens"], group.items):
                item_document["_subProdutoOriginalPersistido"] = item.sub_product or None
            groups.append(document)

        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("details_loaded"),
                "idCotacao": quotation.quotation_id,
                "status": quotation.status,
                "statusPermitidos": allowed_transitions(quotation.status),
                "dataAbertura": format_opened_at(quotation.opened_at),
                "cabecalhos": list(DETAIL_HEADERS),
                "dados": groups,
            }
        )

    def fetch_print_data(self, db, *, quotation_id: str) -> ServiceOutput:
        store = build_document_store(db)
        quotation = QuotationRepository(store).require(quotation_id)
        tax_ids = CompanyRepository(store).tax_ids_by_name()
        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("print_data_loaded"),
                "idCotacao": quotation.quotation_id,
                "dataAbertura": format_opened_at(quotation.opened_at),
                "status": quotation.status,
                "dados": print_grouping(quotation, tax_ids),
            }
        )

    def fetch_billing_data(self, db, *, quotation_id: str) -> ServiceOutput:
        store = build_document_store(db)
        quotation = QuotationRepository(store).require(quotation_id)
        companies = [
            {C_NAME: name, C_TAX_ID: tax_id}
            for name, tax_id in sorted(CompanyRepository(store).tax_ids_by_name().items())
        ]
        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("details_loaded"),
                "idCotacao": quotation.quotation_id,
                "status": quotation.status,
                "dados": {
                    "itens": _assignment_rows(quotation, F_BILLED_COMPANY),
                    "empresas": companies,
                },
            }
        )

    def fetch_payment_data(self, db, *, quotation_id: str) -> ServiceOutput:
        store = build_document_store(db)
        quotation = QuotationRepository(store).require(quotation_id)
        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("details_loaded"),
                "idCotacao": quotation.quotation_id,
                "status": quotation.status,
                "dados": {
                    "itens": _assignment_rows(quotation, F_BILLED_COMPANY, F_PAYMENT_CONDITION),
                    "condicoes": list(PAYMENT_CONDITIONS),
                },
            }
        )

    def list_summaries(self, db) -> ServiceOutput:
        store = build_document_store(db)
        quotations = newest_quotations_first(QuotationRepository(store).list_quotations())
        if not quotations:
            return ServiceOutput(payload={"success": True, "dados": [], "message": success_message("no_quotations")})
        summaries = []
        for quotation in quotations:
            categories: List[str] = []
            for _group, item in quotation.iter_items():
                if item.category and item.category not in categories:
                    categories.append(item.category)
            summaries.append(
                {
                    "ID_da_Cotacao": quotation.quotation_id,
                    "Data_Abertura_Formatada": format_opened_at(quotation.opened_at),
                    "Status_da_Cotacao": quotation.status or "Status Desconhecido",
                    "Categorias_Unicas_String": ", ".join(categories),
                    "numItens": quotation.item_count(),
                }
            )
        return ServiceOutput(payload={"success": True, "dados": summaries})

    def creation_options(self, db) -> ServiceOutput:
        store = build_document_store(db)
        products = ProductRepository(store).list_documents()
        suppliers = SupplierRepository(store).list_documents()
        categories = sorted({str(p.get(P_CATEGORY)).strip() for p in products if str(p.get(P_CATEGORY) or "").strip()})
        abc_classes = sorted({str(p.get(P_ABC)).strip() for p in products if str(p.get(P_ABC) or "").strip()})
        return ServiceOutput(
            payload={
                "success": True,
                "dados": {
                    "categorias": categories,
                    "curvasABC": abc_classes,
                    "fornecedores": _named_options(suppliers, S_NAME),
                    "produtos": _named_options(products, P_NAME),
                    "fluxoStatus": frontend_bundle(),
                },
            }
        )


def _products_by_name(products: List[Mapping[str, Any]]) -> Dict[str, Mapping[str, Any]]:
    by_name: Dict[str, Mapping[str, Any]] = {}
    for product in products:
        name = str(product.get(P_NAME) or "").strip()
        if name and name not in by_name:
            by_name[name] = product
    return by_name


def _named_options(documents: List[Mapping[str, Any]], field_name: str) -> List[Dict[str, Any]]:
    options = [
        {"id": document.get("_id"), "nome": str(document.get(field_name) or "").strip()}
        for document in documents
        if str(document.get(field_name) or "").strip()
    ]
    return sorted(options, key=lambda option: option["nome"].lower())


def _assignment_rows(quotation: Quotation, *columns: str) -> List[Dict[str, Any]]:
    rows = []
    for group, item in quotation.iter_items():
        row = {
            F_PRODUCT: group.product,
            "SubProdutoChave": item.sub_product,
            F_SUBPRODUCT: item.sub_product,
            F_SUPPLIER: item.supplier,
            F_QUANTITY: item.quantity,
            F_TOTAL_VALUE: number_or_zero(item.total_value),
        }
        for column in columns:
            row[column] = item.get_field(column)
        rows.append(row)
    return rows

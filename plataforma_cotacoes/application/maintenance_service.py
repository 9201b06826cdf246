from __future__ import annotations

from typing import Dict

from flask import current_app

from plataforma_cotacoes.application.quotation_service import build_document_store
from plataforma_cotacoes.domain.quotation import F_GROUPS, F_ITEMS, F_SUBPRODUCT_LEGACY, Quotation
from plataforma_cotacoes.infrastructure.document_store import DocumentTransaction
from plataforma_cotacoes.infrastructure.repositories.catalog_repository import (
    SP_NAME,
    SP_NAME_LEGACY,
    SubProductRepository,
)
from plataforma_cotacoes.infrastructure.repositories.quotation_repository import QuotationRepository


def _needs_rewrite(data: Dict) -> bool:
    if F_GROUPS not in data:
        return bool(data.get(F_ITEMS)) or "idCotacao" in data
    for group in data.get(F_GROUPS) or []:
        for item in (group or {}).get(F_ITEMS) or []:
            if isinstance(item, dict) and F_SUBPRODUCT_LEGACY in item:
                return True
    return False


def _rewrite_quotation(tx: DocumentTransaction) -> None:
    tx.data = Quotation.from_document(tx.data, doc_id=tx.doc_id).to_document()


def _rewrite_subproduct(tx: DocumentTransaction) -> None:
    legacy = tx.data.pop(SP_NAME_LEGACY, None)
    if SP_NAME not in tx.data:
        tx.data[SP_NAME] = legacy


def normalize_documents(db) -> Dict[str, int]:
    """Reescreve documentos antigos: ``Subproduto`` -> ``SubProduto`` e ``itens`` planos em grupos."""
    store = build_document_store(db)
    quotations = QuotationRepository(store)
    subproducts = SubProductRepository(store)
    summary = {"cotacoes": 0, "subprodutos": 0}

    for snapshot in quotations.list_snapshots():
        if _needs_rewrite(snapshot.data):
            store.run_transaction(quotations.collection, snapshot.doc_id, _rewrite_quotation)
            summary["cotacoes"] += 1

    for snapshot in subproducts.list_snapshots():
        if SP_NAME_LEGACY in snapshot.data:
            store.run_transaction(subproducts.collection, snapshot.doc_id, _rewrite_subproduct)
            summary["subprodutos"] += 1

    current_app.logger.info("documentos_normalizados", extra=summary)
    return summary

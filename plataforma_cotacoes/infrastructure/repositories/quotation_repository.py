from __future__ import annotations

from typing import Any, Callable, List

from plataforma_cotacoes.domain.numbers import number_or_none
from plataforma_cotacoes.domain.quotation import F_ID, Quotation
from plataforma_cotacoes.errors import ConflictError, quotation_not_found
from plataforma_cotacoes.infrastructure.document_store import (
    DocumentAlreadyExists,
    DocumentConflict,
    DocumentNotFound,
    DocumentTransaction,
)
from plataforma_cotacoes.infrastructure.repositories.base import DocumentRepository


QUOTATIONS_COLLECTION = "cotacoes"


class QuotationRepository(DocumentRepository):
    collection = QUOTATIONS_COLLECTION

    def get_quotation(self, quotation_id) -> Quotation | None:
        snapshot = self.store.get(self.collection, quotation_id)
        if snapshot is None:
            return None
        return Quotation.from_document(snapshot.data, doc_id=snapshot.doc_id)

    def require(self, quotation_id) -> Quotation:
        quotation = self.get_quotation(quotation_id)
        if quotation is None:
            raise quotation_not_found(quotation_id)
        return quotation

    def list_quotations(self) -> List[Quotation]:
        return [Quotation.from_document(snapshot.data, doc_id=snapshot.doc_id) for snapshot in self.list_snapshots()]

    def max_id(self) -> int:
        highest = 0
        for snapshot in self.list_snapshots():
            candidate = number_or_none(snapshot.data.get(F_ID))
            if candidate is None:
                candidate = number_or_none(snapshot.doc_id)
            if candidate is not None and candidate > highest:
                highest = int(candidate)
        return highest

    def create_with_next_id(self, build_fn: Callable[[int], Quotation], max_attempts: int = 5) -> Quotation:
        """Cria com id = maior existente + 1; se outro criador pegar o id, tenta o seguinte."""
        next_id = self.max_id() + 1
        for _ in range(max(1, max_attempts)):
            quotation = build_fn(next_id)
            try:
                self.store.create(self.collection, next_id, quotation.to_document())
                return quotation
            except DocumentAlreadyExists:
                next_id = max(next_id + 1, self.max_id() + 1)
        raise ConflictError(code="concurrency_exhausted", details="id de cotacao disputado")

    def mutate(self, quotation_id, mutate_fn: Callable[[Quotation, DocumentTransaction], Any]):
        """Aplica ``mutate_fn`` sobre a cotacao dentro de uma transacao otimista."""

        def _apply(tx: DocumentTransaction):
            quotation = Quotation.from_document(tx.data, doc_id=tx.doc_id)
            result = mutate_fn(quotation, tx)
            tx.data = quotation.to_document()
            return result

        try:
            return self.store.run_transaction(self.collection, quotation_id, _apply)
        except DocumentNotFound as exc:
            raise quotation_not_found(quotation_id) from exc
        except DocumentConflict as exc:
            raise ConflictError(code="concurrency_exhausted", details=str(exc)) from exc

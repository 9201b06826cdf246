from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping

from flask import current_app

from plataforma_cotacoes.application.quotation_service import build_document_store
from plataforma_cotacoes.domain.contracts import ServiceOutput
from plataforma_cotacoes.errors import ConflictError, NotFoundError, ValidationError
from plataforma_cotacoes.infrastructure.document_store import DocumentConflict, DocumentNotFound, DocumentTransaction
from plataforma_cotacoes.infrastructure.repositories.catalog_repository import (
    S_NAME,
    SP_SUPPLIER,
    SubProductRepository,
    SupplierRepository,
)
from plataforma_cotacoes.observability import current_request_id
from plataforma_cotacoes.ui_strings import success_message


SUPPLIER_FIELDS = (
    "Fornecedor",
    "CNPJ",
    "Categoria",
    "Vendedor",
    "Telefone",
    "Email",
    "Dias de Pedido",
    "Dia de Faturamento",
    "Dias de Entrega",
    "Pedido Mínimo (R$)",
    "Condições de Pagamento",
    "Regime Tributário",
    "Contato Financeiro",
)


def _text(value) -> str:
    return str(value).strip() if value is not None else ""


def supplier_not_found(supplier_id) -> NotFoundError:
    return NotFoundError(
        code="supplier_not_found",
        details=f"fornecedor {supplier_id} inexistente",
        payload={"idFornecedor": supplier_id},
    )


def _without_id(document: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in document.items() if key != "_id"}


class SupplierService:
    def create_supplier(self, db, *, data: Mapping[str, Any]) -> ServiceOutput:
        if not _text(data.get(S_NAME)):
            raise ValidationError(code="supplier_name_required")
        supplier_id = uuid.uuid4().hex
        document = {field_name: _text(data.get(field_name)) for field_name in SUPPLIER_FIELDS}
        document["ID"] = supplier_id
        document["Data de Cadastro"] = datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")

        repository = SupplierRepository(build_document_store(db))
        repository.store.create(repository.collection, supplier_id, document)
        current_app.logger.info(
            "fornecedor_criado",
            extra={"request_id": current_request_id(), "fornecedor_id": supplier_id, "fornecedor": document[S_NAME]},
        )
        return ServiceOutput(
            payload={"success": True, "message": success_message("supplier_created"), "novoId": supplier_id},
            status_code=201,
        )

    def update_supplier(self, db, *, supplier_id: str, changes: Mapping[str, Any]) -> ServiceOutput:
        supplier_id = _text(supplier_id)
        if not supplier_id:
            raise ValidationError(code="supplier_id_required")
        fields = {key: value for key, value in changes.items() if key not in ("ID", "_id")}
        if S_NAME in fields and not _text(fields[S_NAME]):
            raise ValidationError(code="supplier_name_required")

        repository = SupplierRepository(build_document_store(db))

        def _merge(tx: DocumentTransaction) -> None:
            tx.data.update(fields)

        try:
            repository.store.run_transaction(repository.collection, supplier_id, _merge)
        except DocumentNotFound as exc:
            raise supplier_not_found(supplier_id) from exc
        except DocumentConflict as exc:
            raise ConflictError(code="concurrency_exhausted", details=str(exc)) from exc
        current_app.logger.info(
            "fornecedor_atualizado",
            extra={"request_id": current_request_id(), "fornecedor_id": supplier_id, "campos": sorted(fields)},
        )
        return ServiceOutput(payload={"success": True, "message": success_message("supplier_updated")})

    def delete_supplier(
        self,
        db,
        *,
        supplier_id: str,
        supplier_name: str | None = None,
        delete_linked: bool = False,
        reassignments: List[Mapping[str, Any]] | None = None,
    ) -> ServiceOutput:
        """Exclui o fornecedor e trata os subprodutos dele no mesmo commit.

        Com ``delete_linked`` os subprodutos vinculados sao excluidos; caso
        contrario os listados em ``reassignments`` passam para o novo
        fornecedor e os demais ficam como estao.
        """
        supplier_id = _text(supplier_id)
        if not supplier_id:
            raise ValidationError(code="supplier_id_required")
        store = build_document_store(db)
        supplier = SupplierRepository(store).find(supplier_id)
        if supplier is None:
            raise supplier_not_found(supplier_id)
        name = _text(supplier_name) or _text(supplier.get(S_NAME))
        subproducts = SubProductRepository(store)
        linked = subproducts.by_supplier(name)

        new_supplier_by_id: Dict[str, str] = {}
        if not delete_linked:
            for entry in reassignments or []:
                new_supplier = _text(entry.get("novoFornecedorNome"))
                if not new_supplier or new_supplier == name:
                    raise ValidationError(
                        code="supplier_reassignment_invalid",
                        payload={"subProdutoId": entry.get("subProdutoId"), "novoFornecedorNome": new_supplier or None},
                    )
                new_supplier_by_id[_text(entry.get("subProdutoId"))] = new_supplier

        deletes = [(SupplierRepository.collection, supplier_id)]
        upserts = []
        untouched: List[str] = []
        for document in linked:
            if delete_linked:
                deletes.append((subproducts.collection, document["_id"]))
                continue
            new_supplier = new_supplier_by_id.get(document["_id"])
            if new_supplier is None:
                untouched.append(document["_id"])
                continue
            upserts.append((subproducts.collection, document["_id"], {**_without_id(document), SP_SUPPLIER: new_supplier}))

        store.commit_batch(upserts=upserts, deletes=deletes)
        removed = len(deletes) - 1
        current_app.logger.info(
            "fornecedor_excluido",
            extra={
                "request_id": current_request_id(),
                "fornecedor_id": supplier_id,
                "fornecedor": name,
                "subprodutos_excluidos": removed,
                "subprodutos_realocados": len(upserts),
            },
        )
        if untouched:
            current_app.logger.warning(
                "fornecedor_excluido_subprodutos_sem_destino",
                extra={"request_id": current_request_id(), "fornecedor": name, "subprodutos": untouched},
            )
        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("supplier_deleted"),
                "subprodutosExcluidos": removed,
                "subprodutosRealocados": len(upserts),
                "subprodutosSemFornecedor": untouched,
            }
        )

    def supplier_subproducts(self, db, *, supplier_name: str) -> ServiceOutput:
        name = _text(supplier_name)
        if not name:
            raise ValidationError(code="supplier_name_required")
        documents = SubProductRepository(build_document_store(db)).by_supplier(name)
        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("supplier_subproducts_loaded"),
                "dados": [{"id": document["_id"], **_without_id(document)} for document in documents],
            }
        )

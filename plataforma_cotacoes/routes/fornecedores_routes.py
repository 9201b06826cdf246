from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from plataforma_cotacoes.application.supplier_service import SupplierService
from plataforma_cotacoes.db import get_db
from plataforma_cotacoes.errors import ValidationError
from plataforma_cotacoes.observability import current_request_id


fornecedores_bp = Blueprint("fornecedores", __name__, url_prefix="/fornecedores")

_SUPPLIER_SERVICE = SupplierService()


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


@fornecedores_bp.post("/create")
def criar_fornecedor():
    result = _SUPPLIER_SERVICE.create_supplier(get_db(), data=_json_body())
    return jsonify(result.payload), result.status_code


@fornecedores_bp.post("/update")
def atualizar_fornecedor():
    payload = _json_body()
    result = _SUPPLIER_SERVICE.update_supplier(get_db(), supplier_id=payload.get("ID"), changes=payload)
    return jsonify(result.payload), result.status_code


@fornecedores_bp.post("/delete")
def excluir_fornecedor():
    payload = _json_body()
    reassignments = payload.get("realocacoesSubprodutos") or []
    if not isinstance(reassignments, list) or not all(isinstance(entry, dict) for entry in reassignments):
        raise ValidationError(code="supplier_reassignment_invalid")
    current_app.logger.info(
        "fornecedor_exclusao_recebida",
        extra={
            "request_id": current_request_id(),
            "fornecedor_id": payload.get("idFornecedor"),
            "deletar_subprodutos": bool(payload.get("deletarSubprodutosVinculados")),
            "realocacoes": len(reassignments),
        },
    )
    result = _SUPPLIER_SERVICE.delete_supplier(
        get_db(),
        supplier_id=payload.get("idFornecedor"),
        supplier_name=payload.get("nomeFornecedorOriginal"),
        delete_linked=bool(payload.get("deletarSubprodutosVinculados")),
        reassignments=reassignments,
    )
    return jsonify(result.payload), result.status_code


@fornecedores_bp.post("/getSubprodutos")
def subprodutos_do_fornecedor():
    result = _SUPPLIER_SERVICE.supplier_subproducts(get_db(), supplier_name=_json_body().get("nomeFornecedor"))
    return jsonify(result.payload), result.status_code

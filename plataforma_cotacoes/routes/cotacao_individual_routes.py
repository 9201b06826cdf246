from __future__ import annotations

from typing import Any, Dict, List

from flask import Blueprint, current_app, jsonify, request

from plataforma_cotacoes.application.quotation_service import QuotationService
from plataforma_cotacoes.db import get_db
from plataforma_cotacoes.domain.contracts import (
    CellEditInput,
    ItemAssignment,
    ItemDetailsInput,
    StocktakingEntry,
    require_quotation_id,
)
from plataforma_cotacoes.domain.quotation import ItemKey
from plataforma_cotacoes.errors import ValidationError
from plataforma_cotacoes.observability import current_request_id
from plataforma_cotacoes.procurement.selection import SelectionCriteria


cotacao_individual_bp = Blueprint("cotacao_individual", __name__, url_prefix="/cotacaoindividual")

_QUOTATION_SERVICE = QuotationService()


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _respond(result):
    return jsonify(result.payload), result.status_code


def _log_received(event: str, quotation_id: str, **fields) -> None:
    current_app.logger.info(
        event,
        extra={"request_id": current_request_id(), "quotation_id": quotation_id, **fields},
    )


@cotacao_individual_bp.post("/detalhes")
def detalhes():
    quotation_id = require_quotation_id(_json_body().get("idCotacao"))
    return _respond(_QUOTATION_SERVICE.fetch_details(get_db(), quotation_id=quotation_id))


@cotacao_individual_bp.post("/salvar-celula")
def salvar_celula():
    payload = _json_body()
    quotation_id = require_quotation_id(payload.get("idCotacao"))
    edit = CellEditInput.from_payload(payload)
    _log_received("cotacao_celula_recebida", quotation_id, coluna=edit.column)
    return _respond(_QUOTATION_SERVICE.edit_cell(get_db(), quotation_id=quotation_id, edit=edit))


@cotacao_individual_bp.post("/salvar-detalhes-item")
def salvar_detalhes_item():
    payload = _json_body()
    quotation_id = require_quotation_id(payload.get("idCotacao"))
    details = ItemDetailsInput.from_payload(payload)
    return _respond(_QUOTATION_SERVICE.edit_item_details(get_db(), quotation_id=quotation_id, details=details))


@cotacao_individual_bp.post("/acrescentar-itens")
def acrescentar_itens():
    payload = _json_body()
    quotation_id = require_quotation_id(payload.get("idCotacao"))
    criteria = SelectionCriteria.from_payload(payload.get("opcoesCriacao"))
    _log_received("cotacao_acrescentar_recebida", quotation_id, criteria_type=criteria.kind)
    return _respond(_QUOTATION_SERVICE.append_items(get_db(), quotation_id=quotation_id, criteria=criteria))


@cotacao_individual_bp.post("/salvar-contagem")
def salvar_contagem():
    payload = _json_body()
    quotation_id = require_quotation_id(payload.get("idCotacao"))
    entries = StocktakingEntry.list_from_payload(payload.get("dadosContagem"))
    return _respond(_QUOTATION_SERVICE.save_stocktaking(get_db(), quotation_id=quotation_id, entries=entries))


@cotacao_individual_bp.post("/retirar-produtos")
def retirar_produtos():
    payload = _json_body()
    quotation_id = require_quotation_id(payload.get("idCotacao"))
    names = payload.get("nomesProdutosPrincipaisParaExcluir")
    if not isinstance(names, list) or not names:
        raise ValidationError(code="product_names_required")
    return _respond(_QUOTATION_SERVICE.remove_products(get_db(), quotation_id=quotation_id, product_names=names))


@cotacao_individual_bp.post("/retirar-subprodutos")
def retirar_subprodutos():
    payload = _json_body()
    quotation_id = require_quotation_id(payload.get("idCotacao"))
    entries = payload.get("subprodutosParaExcluir")
    if not isinstance(entries, list) or not entries:
        raise ValidationError(code="subproducts_required")
    keys: List[ItemKey] = [ItemKey.from_payload(entry) for entry in entries]
    return _respond(_QUOTATION_SERVICE.remove_subproducts(get_db(), quotation_id=quotation_id, keys=keys))


@cotacao_individual_bp.post("/atualizar-status")
def atualizar_status():
    payload = _json_body()
    quotation_id = require_quotation_id(payload.get("idCotacao"))
    new_status = str(payload.get("novoStatus") or "").strip()
    if not new_status:
        raise ValidationError(code="status_required")
    return _respond(_QUOTATION_SERVICE.update_status(get_db(), quotation_id=quotation_id, new_status=new_status))


@cotacao_individual_bp.get("/dados-faturamento")
def dados_faturamento():
    quotation_id = require_quotation_id(request.args.get("idCotacao"))
    return _respond(_QUOTATION_SERVICE.fetch_billing_data(get_db(), quotation_id=quotation_id))


@cotacao_individual_bp.post("/salvar-faturamento")
def salvar_faturamento():
    payload = _json_body()
    quotation_id = require_quotation_id(payload.get("idCotacao"))
    assignments = ItemAssignment.list_from_payload(
        payload.get("dadosFaturamento"),
        require="billed_company",
        error_code="billing_data_required",
    )
    return _respond(_QUOTATION_SERVICE.save_billing(get_db(), quotation_id=quotation_id, assignments=assignments))


@cotacao_individual_bp.get("/dados-condicoes")
def dados_condicoes():
    quotation_id = require_quotation_id(request.args.get("idCotacao"))
    return _respond(_QUOTATION_SERVICE.fetch_payment_data(get_db(), quotation_id=quotation_id))


@cotacao_individual_bp.post("/salvar-condicoes")
def salvar_condicoes():
    payload = _json_body()
    quotation_id = require_quotation_id(payload.get("idCotacao"))
    assignments = ItemAssignment.list_from_payload(
        payload.get("dadosCondicoes"),
        require="payment_condition",
        error_code="payment_data_required",
    )
    return _respond(
        _QUOTATION_SERVICE.save_payment_conditions(get_db(), quotation_id=quotation_id, assignments=assignments)
    )


@cotacao_individual_bp.get("/dados-impressao/<id_cotacao>")
def dados_impressao(id_cotacao: str):
    quotation_id = require_quotation_id(id_cotacao)
    return _respond(_QUOTATION_SERVICE.fetch_print_data(get_db(), quotation_id=quotation_id))

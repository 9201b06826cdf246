from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from plataforma_cotacoes.application.import_service import (
    CsvSheetSource,
    ImportService,
    JsonRowsSource,
    SheetSource,
)
from plataforma_cotacoes.application.quotation_service import QuotationService
from plataforma_cotacoes.db import get_db
from plataforma_cotacoes.errors import ValidationError
from plataforma_cotacoes.observability import current_request_id
from plataforma_cotacoes.procurement.selection import SelectionCriteria


cotacoes_bp = Blueprint("cotacoes", __name__)

_QUOTATION_SERVICE = QuotationService()
_IMPORT_SERVICE = ImportService()


def _sheet_source(default_path: str | None = None) -> SheetSource:
    delimiter = str(current_app.config.get("IMPORT_CSV_DELIMITER") or ";")
    upload = request.files.get("arquivo")
    if upload is not None and upload.filename:
        return CsvSheetSource.from_bytes(upload.read(), delimiter=delimiter, name=upload.filename)
    payload = request.get_json(silent=True)
    if isinstance(payload, dict) and isinstance(payload.get("linhas"), list):
        return JsonRowsSource(payload["linhas"])
    if default_path:
        return CsvSheetSource.from_path(default_path, delimiter=delimiter)
    raise ValidationError(code="import_source_missing")


@cotacoes_bp.post("/cotacoes/import")
def importar_cotacoes():
    source = _sheet_source(current_app.config.get("COTACOES_IMPORT_CSV"))
    current_app.logger.info(
        "importacao_cotacoes_iniciada",
        extra={"request_id": current_request_id(), "source": source.name},
    )
    result = _IMPORT_SERVICE.import_quotations(get_db(), source=source)
    return jsonify(result.payload), result.status_code


@cotacoes_bp.post("/catalogo/<colecao>/import")
def importar_catalogo(colecao: str):
    source = _sheet_source()
    result = _IMPORT_SERVICE.import_catalog(get_db(), collection=colecao, source=source)
    return jsonify(result.payload), result.status_code


@cotacoes_bp.get("/cotacoes/resumos")
def resumos():
    result = _QUOTATION_SERVICE.list_summaries(get_db())
    return jsonify(result.payload), result.status_code


@cotacoes_bp.get("/cotacoes/opcoes-nova-cotacao")
def opcoes_nova_cotacao():
    result = _QUOTATION_SERVICE.creation_options(get_db())
    return jsonify(result.payload), result.status_code


@cotacoes_bp.post("/cotacoes/criar")
def criar():
    payload = request.get_json(silent=True)
    criteria = SelectionCriteria.from_payload(payload if isinstance(payload, dict) else {})
    current_app.logger.info(
        "cotacao_criacao_recebida",
        extra={"request_id": current_request_id(), "criteria_type": criteria.kind, "selecoes": list(criteria.selections)},
    )
    result = _QUOTATION_SERVICE.create_quotation(get_db(), criteria=criteria)
    return jsonify(result.payload), result.status_code

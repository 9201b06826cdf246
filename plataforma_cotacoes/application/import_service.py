"""Carga de planilhas (CSV ou linhas JSON) para as colecoes de documentos.

Linhas sao lidas em blocos; documentos sao gravados em lotes pequenos com
merge por id, de modo que uma importacao interrompida pode ser repetida.
"""

from __future__ import annotations

import csv
import io
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence

from flask import current_app

from plataforma_cotacoes.application.quotation_service import build_document_store
from plataforma_cotacoes.domain.contracts import ServiceOutput
from plataforma_cotacoes.domain.numbers import number_or_none
from plataforma_cotacoes.domain.quotation import (
    F_AVG_DEMAND,
    F_CURRENT_STOCK,
    F_ID,
    F_MIN_STOCK,
    F_OPENED_AT,
    F_PRODUCT,
    F_STATUS,
    F_SUBPRODUCT,
    F_SUBPRODUCT_LEGACY,
    ProductGroup,
    Quotation,
    QuotationItem,
)
from plataforma_cotacoes.errors import ValidationError
from plataforma_cotacoes.infrastructure.repositories.catalog_repository import (
    C_NAME,
    CATALOG_REPOSITORIES,
    COMPANIES_COLLECTION,
    P_MIN_STOCK,
    P_NAME,
    PRODUCTS_COLLECTION,
    S_NAME,
    SP_LINKED_PRODUCT,
    SP_SUPPLIER,
    SUBPRODUCTS_COLLECTION,
    SUPPLIERS_COLLECTION,
)
from plataforma_cotacoes.infrastructure.repositories.quotation_repository import QuotationRepository
from plataforma_cotacoes.observability import current_request_id
from plataforma_cotacoes.ui_strings import success_message


QUOTATION_NUMERIC_COLUMNS = frozenset(
    {
        "Preço",
        "Preço por Fator",
        "Valor Total",
        "Economia em Cotação",
        "Comprar",
        "Estoque Mínimo",
        "Fator",
        "Estoque Atual",
        "Demanda Média",
        "Quantidade Recebida",
        "Divergencia da Nota",
        "Quantidade na Nota",
        "Preço da Nota",
    }
)
QUOTATION_LEVEL_COLUMNS = frozenset({F_ID, F_OPENED_AT, F_STATUS})
GROUP_LEVEL_COLUMNS = frozenset({F_CURRENT_STOCK, F_MIN_STOCK, F_AVG_DEMAND})

CATALOG_NUMERIC_COLUMNS: Dict[str, frozenset] = {
    PRODUCTS_COLLECTION: frozenset({P_MIN_STOCK}),
    SUBPRODUCTS_COLLECTION: frozenset({"Fator"}),
    SUPPLIERS_COLLECTION: frozenset(),
    COMPANIES_COLLECTION: frozenset(),
}
CATALOG_NATURAL_KEYS: Dict[str, Sequence[str]] = {
    PRODUCTS_COLLECTION: (P_NAME,),
    SUBPRODUCTS_COLLECTION: (SP_LINKED_PRODUCT, F_SUBPRODUCT, SP_SUPPLIER),
    SUPPLIERS_COLLECTION: (S_NAME,),
    COMPANIES_COLLECTION: (C_NAME,),
}


class SheetSource:
    """Fonte de linhas de planilha como dicionarios cabecalho -> valor."""

    name = "planilha"

    def iter_rows(self) -> Iterator[Dict[str, Any]]:
        raise NotImplementedError


class CsvSheetSource(SheetSource):
    def __init__(self, stream: Iterable[str], *, delimiter: str = ";", name: str = "csv") -> None:
        self._stream = stream
        self.delimiter = delimiter or ";"
        self.name = name

    @classmethod
    def from_bytes(cls, raw: bytes, *, delimiter: str = ";", name: str = "upload") -> "CsvSheetSource":
        text = raw.decode("utf-8-sig", errors="ignore")
        return cls(io.StringIO(text, newline=""), delimiter=delimiter, name=name)

    @classmethod
    def from_path(cls, path: str | Path, *, delimiter: str = ";") -> "CsvSheetSource":
        return _CsvPathSource(Path(path), delimiter=delimiter)

    def iter_rows(self) -> Iterator[Dict[str, Any]]:
        reader = csv.reader(self._stream, delimiter=self.delimiter)
        yield from _rows_with_header(reader)


class _CsvPathSource(CsvSheetSource):
    def __init__(self, path: Path, *, delimiter: str = ";") -> None:
        super().__init__((), delimiter=delimiter, name=path.name)
        self.path = path

    def iter_rows(self) -> Iterator[Dict[str, Any]]:
        if not self.path.exists():
            raise ValidationError(code="import_source_missing", payload={"arquivo": str(self.path)})
        with self.path.open("r", encoding="utf-8-sig", errors="ignore", newline="") as handle:
            reader = csv.reader(handle, delimiter=self.delimiter)
            yield from _rows_with_header(reader)


class JsonRowsSource(SheetSource):
    """Aceita lista de objetos ou lista de listas com cabecalho na primeira linha."""

    name = "json"

    def __init__(self, rows: Sequence[Any]) -> None:
        self.rows = list(rows or [])

    def iter_rows(self) -> Iterator[Dict[str, Any]]:
        if self.rows and all(isinstance(row, Mapping) for row in self.rows):
            for row in self.rows:
                yield {str(key).strip(): value for key, value in row.items()}
            return
        yield from _rows_with_header(row for row in self.rows if isinstance(row, (list, tuple)))


def _rows_with_header(rows: Iterable[Sequence[Any]]) -> Iterator[Dict[str, Any]]:
    header: List[str] | None = None
    for row in rows:
        if not row or all(str(cell or "").strip() == "" for cell in row):
            continue
        if header is None:
            header = [str(cell or "").strip() for cell in row]
            continue
        yield {name: (row[index] if index < len(row) else "") for index, name in enumerate(header) if name}


def iter_chunks(rows: Iterable[Dict[str, Any]], size: int) -> Iterator[List[Dict[str, Any]]]:
    size = max(1, int(size))
    chunk: List[Dict[str, Any]] = []
    for row in rows:
        chunk.append(row)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def parse_sheet_datetime(value) -> str | None:
    """'DD/MM/AAAA [HH:mm[:ss]]' -> ISO UTC; ano com 4 digitos obrigatorio."""
    if isinstance(value, datetime):
        return value.replace(microsecond=0).isoformat() + ("" if value.tzinfo else "Z")
    raw = str(value or "").strip()
    if not raw:
        return None
    parts = raw.split()
    date_parts = parts[0].split("/")
    if len(date_parts) != 3 or len(date_parts[2]) != 4:
        return None
    time_parts = parts[1].split(":") if len(parts) > 1 else []
    try:
        day, month, year = (int(piece) for piece in date_parts)
        hour, minute, second = (int(piece) for piece in (time_parts + ["0", "0", "0"])[:3])
        parsed = datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None
    return parsed.isoformat() + "Z"


def _normalize_id(value):
    raw = str(value if value is not None else "").strip()
    if not raw:
        return None
    number = number_or_none(raw)
    if number is not None and float(number).is_integer():
        return int(number)
    return raw


def _clean_cell(value):
    if isinstance(value, str):
        value = value.strip()
        if value.upper() == "NULL":
            return ""
    return value


def _numeric_cell(value):
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return number_or_none(value)


def group_quotation_rows(rows: Iterable[Dict[str, Any]], grouped: Dict[Any, Quotation] | None = None) -> Dict[str, int]:
    """Acumula linhas em ``grouped`` (id -> Quotation), agrupando itens por Produto."""
    stats = {"rows": 0, "skipped": 0}
    grouped = grouped if grouped is not None else {}
    for raw_row in rows:
        stats["rows"] += 1
        row: Dict[str, Any] = {}
        for column, value in raw_row.items():
            column = F_SUBPRODUCT if column == F_SUBPRODUCT_LEGACY else column
            value = _clean_cell(value)
            if column in QUOTATION_NUMERIC_COLUMNS:
                value = _numeric_cell(value)
            row[column] = value
        quotation_id = _normalize_id(row.get(F_ID))
        if quotation_id is None:
            stats["skipped"] += 1
            continue

        quotation = grouped.get(quotation_id)
        if quotation is None:
            quotation = Quotation(
                quotation_id=quotation_id,
                opened_at=parse_sheet_datetime(row.get(F_OPENED_AT)),
                status=str(row.get(F_STATUS) or "").strip() or None,
            )
            grouped[quotation_id] = quotation

        product = str(row.get(F_PRODUCT) or "").strip()
        group = quotation.find_group(product)
        if group is None:
            group = ProductGroup(
                product=product,
                current_stock=row.get(F_CURRENT_STOCK),
                min_stock=row.get(F_MIN_STOCK),
                avg_demand=row.get(F_AVG_DEMAND),
            )
            quotation.groups.append(group)

        item_fields = {
            column: value
            for column, value in row.items()
            if column not in QUOTATION_LEVEL_COLUMNS and column not in GROUP_LEVEL_COLUMNS and column != F_PRODUCT
        }
        group.items.append(QuotationItem.from_document(item_fields))
    return stats


def _catalog_document(collection: str, row: Dict[str, Any]) -> Dict[str, Any]:
    numeric_columns = CATALOG_NUMERIC_COLUMNS.get(collection, frozenset())
    document: Dict[str, Any] = {}
    for column, value in row.items():
        if column == "ID":
            continue
        column = F_SUBPRODUCT if column == F_SUBPRODUCT_LEGACY else column
        value = _clean_cell(value)
        document[column] = _numeric_cell(value) if column in numeric_columns else value
    return document


def _catalog_doc_id(collection: str, row: Dict[str, Any], document: Dict[str, Any]) -> str | None:
    explicit = str(row.get("ID") or "").strip()
    if explicit:
        return explicit
    parts = [str(document.get(column) or "").strip() for column in CATALOG_NATURAL_KEYS[collection]]
    if not all(parts):
        return None
    return "|".join(parts)


class ImportService:
    def _log_batch(self, kind: str, source_name: str):
        def _on_batch(batch_number: int, size: int) -> None:
            current_app.logger.info(
                "importacao_lote_gravado",
                extra={
                    "request_id": current_request_id(),
                    "kind": kind,
                    "source": source_name,
                    "batch": batch_number,
                    "documents": size,
                },
            )

        return _on_batch

    def import_quotations(self, db, *, source: SheetSource) -> ServiceOutput:
        chunk_rows = int(current_app.config.get("IMPORT_CHUNK_ROWS", 5000) or 5000)
        batch_size = int(current_app.config.get("IMPORT_BATCH_SIZE", 20) or 20)
        grouped: Dict[Any, Quotation] = {}
        totals = {"rows": 0, "skipped": 0}
        for chunk in iter_chunks(source.iter_rows(), chunk_rows):
            stats = group_quotation_rows(chunk, grouped)
            totals["rows"] += stats["rows"]
            totals["skipped"] += stats["skipped"]
        if not grouped:
            raise ValidationError(code="import_empty", payload={"linhas": totals["rows"]})

        store = build_document_store(db)
        result = QuotationRepository(store).write_many(
            ((quotation_id, quotation.to_document()) for quotation_id, quotation in grouped.items()),
            batch_size=batch_size,
            merge=True,
            on_batch=self._log_batch("cotacoes", source.name),
        )
        current_app.logger.info(
            "importacao_cotacoes_concluida",
            extra={
                "request_id": current_request_id(),
                "source": source.name,
                "rows": totals["rows"],
                "rows_skipped": totals["skipped"],
                "quotations": result["written"],
            },
        )
        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("import_completed"),
                "cotacoes": result["written"],
                "linhas": totals["rows"],
                "linhasIgnoradas": totals["skipped"],
            }
        )

    def import_catalog(self, db, *, collection: str, source: SheetSource) -> ServiceOutput:
        repository_cls = CATALOG_REPOSITORIES.get(collection)
        if repository_cls is None:
            raise ValidationError(
                code="collection_invalid",
                payload={"colecao": collection, "colecoesPermitidas": sorted(CATALOG_REPOSITORIES)},
            )
        chunk_rows = int(current_app.config.get("IMPORT_CHUNK_ROWS", 5000) or 5000)
        batch_size = int(current_app.config.get("IMPORT_BATCH_SIZE", 20) or 20)
        repository = repository_cls(build_document_store(db))
        on_batch = self._log_batch(collection, source.name)

        rows = 0
        skipped = 0
        written = 0
        for chunk in iter_chunks(source.iter_rows(), chunk_rows):
            documents = []
            for row in chunk:
                rows += 1
                document = _catalog_document(collection, row)
                doc_id = _catalog_doc_id(collection, row, document)
                if doc_id is None:
                    skipped += 1
                    continue
                documents.append((doc_id, document))
            if documents:
                written += repository.write_many(documents, batch_size=batch_size, merge=True, on_batch=on_batch)["written"]
        if rows == 0:
            raise ValidationError(code="import_empty")

        current_app.logger.info(
            "importacao_catalogo_concluida",
            extra={
                "request_id": current_request_id(),
                "collection": collection,
                "source": source.name,
                "rows": rows,
                "rows_skipped": skipped,
                "documents": written,
            },
        )
        return ServiceOutput(
            payload={
                "success": True,
                "message": success_message("import_completed"),
                "colecao": collection,
                "documentos": written,
                "linhas": rows,
                "linhasIgnoradas": skipped,
            }
        )

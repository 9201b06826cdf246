"""Fila (outbox) de sincronizacao de itens de cotacao com a colecao ``subprodutos``.

A linha da fila e gravada no mesmo commit da cotacao; o processamento
acontece depois do commit (inline ou pelo worker) e nunca desfaz a edicao
original.
"""

from __future__ import annotations

import json
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List

from flask import current_app

from plataforma_cotacoes.domain.numbers import is_number, parse_decimal_ptbr
from plataforma_cotacoes.domain.quotation import F_FACTOR, F_SUBPRODUCT
from plataforma_cotacoes.infrastructure.document_store import DocumentStore, DocumentTransaction
from plataforma_cotacoes.infrastructure.repositories.catalog_repository import (
    SP_NAME,
    SP_NAME_LEGACY,
    SubProductRepository,
)
from plataforma_cotacoes.observability import observe_sync_result, set_log_request_id


SYNC_STATUS_QUEUED = "queued"
SYNC_STATUS_RUNNING = "running"
SYNC_STATUS_SUCCEEDED = "succeeded"
SYNC_STATUS_FAILED = "failed"
SYNC_STATUS_SKIPPED = "skipped"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso_utc(value: datetime) -> str:
    return value.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _parse_iso_utc(value: str | None) -> datetime | None:
    raw = str(value or "").strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _json_loads(value: str | None) -> Dict[str, object]:
    raw = str(value or "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _json_dumps(value: Dict[str, object]) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _row_to_dict(row) -> Dict[str, object]:
    if row is None:
        return {}
    if isinstance(row, dict):
        return dict(row)
    keys = getattr(row, "keys", None)
    if callable(keys):
        return {key: row[key] for key in row.keys()}
    return dict(row)


def _next_backoff_seconds(attempt: int) -> float:
    base = max(1, int(current_app.config.get("SUBPRODUTO_SYNC_BACKOFF_SECONDS", 30) or 30))
    max_seconds = max(base, int(current_app.config.get("SUBPRODUTO_SYNC_MAX_BACKOFF_SECONDS", 600) or 600))
    exponent = max(0, int(attempt) - 1)
    raw_backoff = float(min(max_seconds, base * (2**exponent)))
    jitter_window = raw_backoff * 0.25
    jitter = random.uniform(-jitter_window, jitter_window) if jitter_window > 0 else 0.0
    return max(1.0, min(float(max_seconds), raw_backoff + jitter))


def _max_attempts() -> int:
    return max(1, int(current_app.config.get("SUBPRODUTO_SYNC_MAX_ATTEMPTS", 4) or 4))


def build_sync_payload(
    *,
    product: str,
    previous_sub_product: str,
    supplier: str,
    changes: Dict[str, object],
    request_id: str | None = None,
) -> Dict[str, object]:
    return {
        "produto": product,
        "subProdutoAnterior": previous_sub_product,
        "fornecedor": supplier,
        "alteracoes": dict(changes),
        "request_id": str(request_id or "").strip() or None,
    }


def stage_subproduct_sync(tx: DocumentTransaction, quotation_id, payload: Dict[str, object]) -> None:
    """Agenda a linha da fila para o mesmo commit da transacao da cotacao."""

    def _insert(db) -> None:
        db.execute(
            """
            INSERT INTO subproduto_sync_outbox (quotation_id, payload, status, attempt)
            VALUES (?, ?, ?, 0)
            """,
            (str(quotation_id), _json_dumps(payload), SYNC_STATUS_QUEUED),
        )

    tx.stage(_insert)


def _item_key(row: Dict[str, object]) -> tuple:
    payload = row.get("payload") or {}
    return (
        str(row.get("quotation_id") or ""),
        str(payload.get("produto") or "").strip(),
        str(payload.get("fornecedor") or "").strip(),
    )


def _select_due(db, limit: int, quotation_id=None) -> List[Dict[str, object]]:
    """Linhas prontas em ordem de id; um item so avanca depois das linhas anteriores dele."""
    quotation_clause = ""
    params: List[object] = []
    if quotation_id is not None:
        quotation_clause = "AND quotation_id = ?"
        params.append(str(quotation_id))
    rows = db.execute(
        f"""
        SELECT id, quotation_id, payload, status, attempt, next_attempt_at
        FROM subproduto_sync_outbox
        WHERE status IN (?, ?)
          {quotation_clause}
        ORDER BY id ASC
        LIMIT ?
        """,
        (SYNC_STATUS_QUEUED, SYNC_STATUS_RUNNING, *params, max(1, int(limit) * 4)),
    ).fetchall()

    now = _utcnow()
    blocked = set()
    due: List[Dict[str, object]] = []
    for raw_row in rows:
        row = _row_to_dict(raw_row)
        row["payload"] = _json_loads(str(row.get("payload") or ""))
        key = _item_key(row)
        if key in blocked:
            continue
        if row.get("status") != SYNC_STATUS_QUEUED:
            blocked.add(key)
            continue
        next_attempt_at = _parse_iso_utc(str(row.get("next_attempt_at") or ""))
        if next_attempt_at and next_attempt_at > now:
            blocked.add(key)
            continue
        due.append(row)
        if len(due) >= limit:
            break
    return due


def _mark_running(db, row_id: int) -> bool:
    cursor = db.execute(
        """
        UPDATE subproduto_sync_outbox
        SET status = ?, attempt = COALESCE(attempt, 0) + 1, updated_at = CURRENT_TIMESTAMP
        WHERE id = ? AND status = ?
        """,
        (SYNC_STATUS_RUNNING, row_id, SYNC_STATUS_QUEUED),
    )
    db.commit()
    return int(getattr(cursor, "rowcount", 0) or 0) > 0


def _finish(db, row_id: int, status: str, error: str | None = None) -> None:
    db.execute(
        """
        UPDATE subproduto_sync_outbox
        SET status = ?, last_error = ?, updated_at = CURRENT_TIMESTAMP
        WHERE id = ?
        """,
        (status, error, row_id),
    )
    db.commit()


def _requeue(db, row_id: int, next_attempt_at: datetime, error: str) -> None:
    db.execute(
        """
        UPDATE subproduto_sync_outbox
        SET status = ?, next_attempt_at = ?, last_error = ?, updated_at = CURRENT_TIMESTAMP
        WHERE id = ?
        """,
        (SYNC_STATUS_QUEUED, _iso_utc(next_attempt_at), error, row_id),
    )
    db.commit()


def _subproduct_fields(changes: Dict[str, object]) -> Dict[str, object]:
    fields: Dict[str, object] = {}
    for column, value in changes.items():
        if column == F_FACTOR:
            parsed = parse_decimal_ptbr(value)
            fields[column] = parsed if is_number(parsed) else None
        else:
            fields[column] = value
    return fields


def apply_subproduct_sync(store: DocumentStore, payload: Dict[str, object]) -> str | None:
    """Atualiza o subproduto correspondente; retorna o id ou None se nao existir."""
    repository = SubProductRepository(store)
    target_id = repository.find_id(
        product=str(payload.get("produto") or "").strip(),
        sub_product=str(payload.get("subProdutoAnterior") or "").strip(),
        supplier=str(payload.get("fornecedor") or "").strip(),
    )
    if target_id is None:
        return None
    fields = _subproduct_fields(dict(payload.get("alteracoes") or {}))

    def _merge(tx: DocumentTransaction) -> None:
        if F_SUBPRODUCT in fields:
            tx.data.pop(SP_NAME_LEGACY, None)
        tx.data.update(fields)
        if SP_NAME not in tx.data and SP_NAME_LEGACY in tx.data:
            tx.data[SP_NAME] = tx.data.pop(SP_NAME_LEGACY)

    store.run_transaction(repository.collection, target_id, _merge)
    return target_id


def process_subproduct_sync_outbox(
    db,
    store: DocumentStore,
    *,
    limit: int = 50,
    quotation_id=None,
    worker_request_id: str | None = None,
) -> Dict[str, int]:
    candidates = _select_due(db, max(1, int(limit)), quotation_id=quotation_id)
    summary = {"processed": 0, "succeeded": 0, "skipped": 0, "requeued": 0, "failed": 0}
    held_items = set()

    for candidate in candidates:
        row_id = int(candidate["id"])
        item_key = _item_key(candidate)
        if item_key in held_items:
            continue
        payload = candidate.get("payload") or {}
        request_id = str(payload.get("request_id") or "").strip() or None
        effective_request_id = request_id or str(worker_request_id or "").strip() or "n/a"
        set_log_request_id(effective_request_id)
        if not _mark_running(db, row_id):
            continue
        attempt = int(candidate.get("attempt") or 0) + 1
        summary["processed"] += 1
        log_fields = {
            "request_id": effective_request_id,
            "sync_id": row_id,
            "quotation_id": candidate.get("quotation_id"),
            "produto": payload.get("produto"),
            "subproduto": payload.get("subProdutoAnterior"),
            "fornecedor": payload.get("fornecedor"),
            "attempt": attempt,
        }
        started = time.perf_counter()
        try:
            target_id = apply_subproduct_sync(store, payload)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            if attempt >= _max_attempts():
                _finish(db, row_id, SYNC_STATUS_FAILED, error)
                summary["failed"] += 1
                observe_sync_result(SYNC_STATUS_FAILED)
                current_app.logger.error(
                    "subproduto_sync_falhou",
                    exc_info=True,
                    extra={**log_fields, "error": error},
                )
                continue
            backoff = _next_backoff_seconds(attempt)
            _requeue(db, row_id, _utcnow() + timedelta(seconds=backoff), error)
            held_items.add(item_key)
            summary["requeued"] += 1
            observe_sync_result("requeued")
            current_app.logger.warning(
                "subproduto_sync_reagendado",
                extra={**log_fields, "error": error, "next_backoff_seconds": round(backoff, 3)},
            )
            continue

        duration_ms = round((time.perf_counter() - started) * 1000.0, 3)
        if target_id is None:
            _finish(db, row_id, SYNC_STATUS_SKIPPED, "subproduto_nao_encontrado")
            summary["skipped"] += 1
            observe_sync_result(SYNC_STATUS_SKIPPED)
            current_app.logger.warning("subproduto_sync_alvo_nao_encontrado", extra=log_fields)
            continue

        _finish(db, row_id, SYNC_STATUS_SUCCEEDED)
        summary["succeeded"] += 1
        observe_sync_result(SYNC_STATUS_SUCCEEDED)
        current_app.logger.info(
            "subproduto_sync_aplicado",
            extra={**log_fields, "subproduto_id": target_id, "duration_ms": duration_ms},
        )
    return summary


def drain_after_commit(db, store: DocumentStore, quotation_id) -> Dict[str, int] | None:
    """Processa as linhas recem-gravadas de uma cotacao sem propagar falhas."""
    if not current_app.config.get("SUBPRODUTO_SYNC_INLINE", True):
        return None
    try:
        return process_subproduct_sync_outbox(
            db,
            store,
            limit=int(current_app.config.get("SUBPRODUTO_SYNC_WORKER_BATCH_SIZE", 50) or 50),
            quotation_id=quotation_id,
        )
    except Exception:
        db.rollback()
        current_app.logger.exception(
            "subproduto_sync_inline_falhou",
            extra={"quotation_id": str(quotation_id)},
        )
        return None


def outbox_rows(db, quotation_id=None) -> List[Dict[str, object]]:
    quotation_clause = ""
    params: List[object] = []
    if quotation_id is not None:
        quotation_clause = "WHERE quotation_id = ?"
        params.append(str(quotation_id))
    rows = db.execute(
        f"""
        SELECT id, quotation_id, payload, status, attempt, next_attempt_at, last_error
        FROM subproduto_sync_outbox
        {quotation_clause}
        ORDER BY id ASC
        """,
        tuple(params),
    ).fetchall()
    result = []
    for raw_row in rows:
        row = _row_to_dict(raw_row)
        row["payload"] = _json_loads(str(row.get("payload") or ""))
        result.append(row)
    return result


def outbox_health(db) -> Dict[str, object]:
    rows = db.execute(
        """
        SELECT status, COUNT(*) AS total
        FROM subproduto_sync_outbox
        GROUP BY status
        """
    ).fetchall()
    counts = {
        status: 0
        for status in (
            SYNC_STATUS_QUEUED,
            SYNC_STATUS_RUNNING,
            SYNC_STATUS_SUCCEEDED,
            SYNC_STATUS_FAILED,
            SYNC_STATUS_SKIPPED,
        )
    }
    for raw_row in rows:
        row = _row_to_dict(raw_row)
        counts[str(row.get("status"))] = int(row.get("total") or 0)
    return {"queue": counts}

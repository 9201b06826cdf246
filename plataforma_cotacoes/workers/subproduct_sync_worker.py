from __future__ import annotations

import argparse
import os
import time
import uuid

from plataforma_cotacoes import create_app
from plataforma_cotacoes.application.quotation_service import build_document_store
from plataforma_cotacoes.db import close_db, get_db
from plataforma_cotacoes.procurement.subproduct_sync import process_subproduct_sync_outbox


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Worker da fila de sincronizacao de subprodutos (outbox).")
    parser.add_argument("--once", action="store_true", help="Processa um lote unico e encerra.")
    parser.add_argument("--limit", type=int, default=0, help="Quantidade maxima por lote.")
    parser.add_argument("--interval", type=int, default=0, help="Intervalo em segundos entre lotes.")
    return parser


def _run_once(app, limit: int, run_request_id: str) -> dict:
    with app.app_context():
        db = get_db()
        try:
            return process_subproduct_sync_outbox(
                db,
                build_document_store(db),
                limit=limit,
                worker_request_id=run_request_id,
            )
        finally:
            close_db()


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)

    os.environ.setdefault("DB_AUTO_INIT", "false")
    app = create_app()

    configured_limit = int(app.config.get("SUBPRODUTO_SYNC_WORKER_BATCH_SIZE", 50) or 50)
    configured_interval = int(app.config.get("SUBPRODUTO_SYNC_WORKER_INTERVAL_SECONDS", 5) or 5)
    limit = max(1, int(args.limit or configured_limit))
    interval_seconds = max(1, int(args.interval or configured_interval))

    while True:
        run_request_id = f"worker-{uuid.uuid4().hex[:12]}"
        summary = _run_once(app, limit=limit, run_request_id=run_request_id)
        app.logger.info(
            "subproduto_sync_worker_lote_concluido",
            extra={
                "request_id": run_request_id,
                "processed": summary.get("processed", 0),
                "succeeded": summary.get("succeeded", 0),
                "skipped": summary.get("skipped", 0),
                "requeued": summary.get("requeued", 0),
                "failed": summary.get("failed", 0),
            },
        )
        if args.once:
            break
        time.sleep(interval_seconds)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())

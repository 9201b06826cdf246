from __future__ import annotations

from pathlib import Path

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _normalize_postgres_url(url: str) -> str:
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://") :]
    return url


def to_sqlalchemy_url(raw_db_path: str) -> str:
    raw = (raw_db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH indefinido para migrations.")

    normalized = _normalize_postgres_url(raw)
    if normalized.startswith(("postgresql://", "postgresql+")):
        return normalized
    if normalized.startswith(("sqlite://", "sqlite+pysqlite://")):
        return normalized

    sqlite_path = Path(normalized).expanduser().resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


def build_alembic_config(app: Flask) -> AlembicConfig:
    root = _project_root()
    alembic_ini = root / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError("alembic.ini nao encontrado na raiz do projeto.")

    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", str((root / "migrations").as_posix()))
    alembic_cfg.set_main_option("sqlalchemy.url", to_sqlalchemy_url(app.config["DB_PATH"]))
    return alembic_cfg


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Comandos de migration (Alembic)."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        cfg = build_alembic_config(app)
        command.upgrade(cfg, revision)
        click.echo(f"Migration aplicada ate {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        cfg = build_alembic_config(app)
        command.downgrade(cfg, revision)
        click.echo(f"Rollback aplicado ate {revision}.")

    @db_group.command("current")
    def db_current() -> None:
        cfg = build_alembic_config(app)
        command.current(cfg, verbose=True)

    @db_group.command("init")
    def db_init() -> None:
        """Cria as tabelas sem Alembic (ambiente local)."""
        from plataforma_cotacoes.db import init_db

        init_db()
        click.echo("Banco inicializado.")


def register_maintenance_cli(app: Flask) -> None:
    @app.cli.group("cotacoes")
    def cotacoes_group() -> None:
        """Manutencao dos documentos de cotacao."""

    @cotacoes_group.command("normalizar-documentos")
    def normalizar_documentos() -> None:
        from plataforma_cotacoes.application.maintenance_service import normalize_documents
        from plataforma_cotacoes.db import get_db

        summary = normalize_documents(get_db())
        click.echo(
            f"Documentos normalizados: {summary['cotacoes']} cotacao(oes), {summary['subprodutos']} subproduto(s)."
        )

    @cotacoes_group.command("processar-sincronizacao")
    @click.option("--limit", type=int, default=0, help="Quantidade maxima de linhas da fila.")
    def processar_sincronizacao(limit: int) -> None:
        from plataforma_cotacoes.application.quotation_service import build_document_store
        from plataforma_cotacoes.db import get_db
        from plataforma_cotacoes.procurement.subproduct_sync import process_subproduct_sync_outbox

        db = get_db()
        batch = int(limit or app.config.get("SUBPRODUTO_SYNC_WORKER_BATCH_SIZE", 50) or 50)
        summary = process_subproduct_sync_outbox(db, build_document_store(db), limit=batch)
        click.echo(
            "Fila processada: "
            f"{summary['succeeded']} aplicada(s), {summary['skipped']} ignorada(s), "
            f"{summary['requeued']} reagendada(s), {summary['failed']} com falha."
        )

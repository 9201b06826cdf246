import unittest
from unittest.mock import patch

from plataforma_cotacoes.application.quotation_service import build_document_store
from plataforma_cotacoes.db import close_db, get_db
from plataforma_cotacoes.procurement.subproduct_sync import outbox_rows, process_subproduct_sync_outbox
from tests.helpers.app_factory import build_temp_app, read_document, seed_catalog, seed_documents
from tests.helpers.temp_db import TempDbSandbox


ARROZ_ACME = {"Produto": "Arroz", "SubProdutoChave": "Arroz 5kg", "Fornecedor": "Acme"}


class _SyncCase(unittest.TestCase):
    overrides = {}

    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="subproduct_sync")
        self.app = build_temp_app(self._temp_db, **self.overrides)
        self.client = self.app.test_client()
        seed_catalog(self.app)
        created = self.client.post("/cotacoes/criar", json={"tipo": "fornecedor", "selecoes": ["Acme"]})
        self.quotation_id = str(created.get_json()["idCotacao"])

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def _save_cell(self, key, column, value, quotation_id=None):
        return self.client.post(
            "/cotacaoindividual/salvar-celula",
            json={
                "idCotacao": quotation_id or self.quotation_id,
                "identificadoresLinha": key,
                "colunaAlterada": column,
                "novoValor": value,
            },
        )

    def _rows(self):
        with self.app.app_context():
            return outbox_rows(get_db())

    def _process(self, limit=10):
        with self.app.app_context():
            db = get_db()
            return process_subproduct_sync_outbox(db, build_document_store(db), limit=limit)


class InlineSyncTest(_SyncCase):
    def test_rename_updates_catalog_subproduct(self) -> None:
        response = self._save_cell(ARROZ_ACME, "SubProduto", "Arroz 5kg Tipo 1")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["novoSubProdutoNomeSeAlterado"], "Arroz 5kg Tipo 1")
        self.assertEqual(read_document(self.app, "subprodutos", "sp-1")["SubProduto"], "Arroz 5kg Tipo 1")
        rows = self._rows()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["status"], "succeeded")
        self.assertEqual(rows[0]["payload"]["subProdutoAnterior"], "Arroz 5kg")
        self.assertEqual(rows[0]["payload"]["alteracoes"], {"SubProduto": "Arroz 5kg Tipo 1"})

    def test_factor_is_synced_as_number_and_recalculates(self) -> None:
        self._save_cell(ARROZ_ACME, "Preço", "10")
        response = self._save_cell(ARROZ_ACME, "Fator", "2,5")

        self.assertEqual(response.get_json()["valoresCalculados"]["precoPorFator"], 4.0)
        self.assertEqual(read_document(self.app, "subprodutos", "sp-1")["Fator"], 2.5)

    def test_legacy_catalog_spelling_is_matched(self) -> None:
        key = {"Produto": "Feijao", "SubProdutoChave": "Feijao 1kg", "Fornecedor": "Acme"}
        self._save_cell(key, "UN", "CX")

        subproduct = read_document(self.app, "subprodutos", "sp-2")
        self.assertEqual(subproduct["UN"], "CX")
        self.assertEqual(subproduct["SubProduto"], "Feijao 1kg")

    def test_missing_catalog_target_is_skipped(self) -> None:
        seed_documents(
            self.app,
            "cotacoes",
            [("50", {"ID da Cotação": 50, "produtos": [{"Produto": "Arroz", "itens": [{"SubProduto": "Arroz Avulso", "Fornecedor": "Acme"}]}]})],
        )

        response = self._save_cell({"Produto": "Arroz", "SubProdutoChave": "Arroz Avulso", "Fornecedor": "Acme"}, "Tamanho", "G", quotation_id="50")

        self.assertEqual(response.status_code, 200)
        rows = self._rows()
        self.assertEqual(rows[-1]["status"], "skipped")
        self.assertEqual(rows[-1]["last_error"], "subproduto_nao_encontrado")

    def test_non_syncable_column_enqueues_nothing(self) -> None:
        self._save_cell(ARROZ_ACME, "Comprar", "2")
        self.assertEqual(self._rows(), [])

    def test_inline_failure_does_not_fail_the_edit(self) -> None:
        with patch(
            "plataforma_cotacoes.procurement.subproduct_sync.process_subproduct_sync_outbox",
            side_effect=RuntimeError("fila indisponivel"),
        ):
            response = self._save_cell(ARROZ_ACME, "UN", "SC")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self._rows()[0]["status"], "queued")
        self.assertEqual(read_document(self.app, "subprodutos", "sp-1")["UN"], "PCT")


class DeferredSyncTest(_SyncCase):
    overrides = {"SUBPRODUTO_SYNC_INLINE": False, "SUBPRODUTO_SYNC_MAX_ATTEMPTS": 2}

    def test_row_waits_for_worker(self) -> None:
        self._save_cell(ARROZ_ACME, "Tamanho", "6kg")
        self.assertEqual(self._rows()[0]["status"], "queued")
        self.assertEqual(read_document(self.app, "subprodutos", "sp-1")["Tamanho"], "5kg")

        summary = self._process()

        self.assertEqual(summary["succeeded"], 1)
        self.assertEqual(read_document(self.app, "subprodutos", "sp-1")["Tamanho"], "6kg")
        self.assertEqual(self._rows()[0]["attempt"], 1)

    def test_failure_is_requeued_with_backoff_then_failed(self) -> None:
        self._save_cell(ARROZ_ACME, "Tamanho", "6kg")

        with patch(
            "plataforma_cotacoes.procurement.subproduct_sync.apply_subproduct_sync",
            side_effect=RuntimeError("timeout"),
        ):
            first = self._process()
            row = self._rows()[0]
            self.assertEqual(first["requeued"], 1)
            self.assertEqual(row["status"], "queued")
            self.assertTrue(row["next_attempt_at"])
            self.assertIn("timeout", row["last_error"])

            self.assertEqual(self._process()["processed"], 0)

            with self.app.app_context():
                db = get_db()
                db.execute("UPDATE subproduto_sync_outbox SET next_attempt_at = NULL")
                db.commit()
            second = self._process()

        self.assertEqual(second["failed"], 1)
        row = self._rows()[0]
        self.assertEqual(row["status"], "failed")
        self.assertEqual(row["attempt"], 2)

    def test_later_edits_wait_for_requeued_row_of_same_item(self) -> None:
        self._save_cell(ARROZ_ACME, "SubProduto", "Arroz Tio 5kg")
        self._save_cell({**ARROZ_ACME, "SubProdutoChave": "Arroz Tio 5kg"}, "Tamanho", "6kg")

        with patch(
            "plataforma_cotacoes.procurement.subproduct_sync.apply_subproduct_sync",
            side_effect=RuntimeError("timeout"),
        ):
            first = self._process()
        self.assertEqual(first["processed"], 1)
        self.assertEqual(first["requeued"], 1)
        self.assertEqual([row["status"] for row in self._rows()], ["queued", "queued"])

        self.assertEqual(self._process()["processed"], 0)

        with self.app.app_context():
            db = get_db()
            db.execute("UPDATE subproduto_sync_outbox SET next_attempt_at = NULL")
            db.commit()
        second = self._process()

        self.assertEqual(second["succeeded"], 2)
        self.assertEqual([row["status"] for row in self._rows()], ["succeeded", "succeeded"])
        subproduct = read_document(self.app, "subprodutos", "sp-1")
        self.assertEqual(subproduct["SubProduto"], "Arroz Tio 5kg")
        self.assertEqual(subproduct["Tamanho"], "6kg")

    def test_cli_processes_queue(self) -> None:
        self._save_cell(ARROZ_ACME, "UN", "FD")

        result = self.app.test_cli_runner().invoke(args=["cotacoes", "processar-sincronizacao", "--limit", "5"])

        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertIn("1 aplicada(s)", result.output)
        self.assertEqual(read_document(self.app, "subprodutos", "sp-1")["UN"], "FD")

    def test_health_reports_queue(self) -> None:
        self._save_cell(ARROZ_ACME, "UN", "FD")

        payload = self.client.get("/health").get_json()

        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["db"], "sqlite")
        self.assertEqual(payload["subproduto_sync"]["queue"]["queued"], 1)


if __name__ == "__main__":
    unittest.main()

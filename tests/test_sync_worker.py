import unittest
from unittest.mock import patch

from plataforma_cotacoes.db import close_db, get_db
from plataforma_cotacoes.procurement.subproduct_sync import outbox_rows
from plataforma_cotacoes.workers import subproduct_sync_worker
from tests.helpers.app_factory import build_temp_app, read_document, seed_catalog
from tests.helpers.temp_db import TempDbSandbox


class SubProductSyncWorkerTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="sync_worker")
        self.app = build_temp_app(self._temp_db, SUBPRODUTO_SYNC_INLINE=False)
        self.client = self.app.test_client()
        seed_catalog(self.app)
        created = self.client.post("/cotacoes/criar", json={"tipo": "fornecedor", "selecoes": ["Beta"]})
        self.quotation_id = str(created.get_json()["idCotacao"])

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_once_drains_queue_and_exits(self) -> None:
        self.client.post(
            "/cotacaoindividual/salvar-celula",
            json={
                "idCotacao": self.quotation_id,
                "identificadoresLinha": {"Produto": "Arroz", "SubProdutoChave": "Arroz 1kg", "Fornecedor": "Beta"},
                "colunaAlterada": "UN",
                "novoValor": "PCT",
            },
        )

        with patch.object(subproduct_sync_worker, "create_app", return_value=self.app):
            exit_code = subproduct_sync_worker.main(["--once", "--limit", "5"])

        self.assertEqual(exit_code, 0)
        self.assertEqual(read_document(self.app, "subprodutos", "sp-3")["UN"], "PCT")
        with self.app.app_context():
            rows = outbox_rows(get_db(), quotation_id=self.quotation_id)
        self.assertEqual([row["status"] for row in rows], ["succeeded"])


if __name__ == "__main__":
    unittest.main()

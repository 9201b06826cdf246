import unittest
from unittest.mock import patch

from plataforma_cotacoes.db import close_db
from plataforma_cotacoes.infrastructure.document_store import DocumentStore
from tests.helpers.app_factory import build_temp_app, read_document, seed_catalog
from tests.helpers.temp_db import TempDbSandbox


class FornecedoresRoutesTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="fornecedores")
        self.app = build_temp_app(self._temp_db)
        self.client = self.app.test_client()
        seed_catalog(self.app)

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_create_supplier(self) -> None:
        response = self.client.post("/fornecedores/create", json={"Fornecedor": " Delta ", "Telefone": "1199", "Extra": "x"})

        self.assertEqual(response.status_code, 201)
        new_id = response.get_json()["novoId"]
        document = read_document(self.app, "fornecedores", new_id)
        self.assertEqual(document["Fornecedor"], "Delta")
        self.assertEqual(document["Telefone"], "1199")
        self.assertEqual(document["ID"], new_id)
        self.assertNotIn("Extra", document)
        self.assertTrue(document["Data de Cadastro"])

        missing_name = self.client.post("/fornecedores/create", json={"Telefone": "1199"})
        self.assertEqual(missing_name.status_code, 400)
        self.assertEqual(missing_name.get_json()["error"], "supplier_name_required")

    def test_update_supplier_merges_fields(self) -> None:
        response = self.client.post("/fornecedores/update", json={"ID": "f-acme", "Telefone": "3333"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(read_document(self.app, "fornecedores", "f-acme"), {"Fornecedor": "Acme", "Telefone": "3333"})

        missing = self.client.post("/fornecedores/update", json={"ID": "f-zeta", "Telefone": "1"})
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.get_json()["error"], "supplier_not_found")

        without_id = self.client.post("/fornecedores/update", json={"Telefone": "1"})
        self.assertEqual(without_id.status_code, 400)
        self.assertEqual(without_id.get_json()["error"], "supplier_id_required")

    def test_delete_supplier_with_linked_subproducts(self) -> None:
        response = self.client.post(
            "/fornecedores/delete",
            json={"idFornecedor": "f-acme", "nomeFornecedorOriginal": "Acme", "deletarSubprodutosVinculados": True},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["subprodutosExcluidos"], 2)
        self.assertIsNone(read_document(self.app, "fornecedores", "f-acme"))
        self.assertIsNone(read_document(self.app, "subprodutos", "sp-1"))
        self.assertIsNone(read_document(self.app, "subprodutos", "sp-2"))
        self.assertEqual(read_document(self.app, "subprodutos", "sp-3")["Fornecedor"], "Beta")

    def test_delete_supplier_reassigns_subproducts(self) -> None:
        response = self.client.post(
            "/fornecedores/delete",
            json={
                "idFornecedor": "f-acme",
                "realocacoesSubprodutos": [{"subProdutoId": "sp-1", "novoFornecedorNome": "Beta"}],
            },
        )

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["subprodutosRealocados"], 1)
        self.assertEqual(payload["subprodutosSemFornecedor"], ["sp-2"])
        self.assertIsNone(read_document(self.app, "fornecedores", "f-acme"))
        self.assertEqual(read_document(self.app, "subprodutos", "sp-1")["Fornecedor"], "Beta")
        self.assertEqual(read_document(self.app, "subprodutos", "sp-2")["Fornecedor"], "Acme")

    def test_delete_rejects_reassignment_to_same_supplier(self) -> None:
        response = self.client.post(
            "/fornecedores/delete",
            json={"idFornecedor": "f-acme", "realocacoesSubprodutos": [{"subProdutoId": "sp-1", "novoFornecedorNome": "Acme"}]},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "supplier_reassignment_invalid")
        self.assertIsNotNone(read_document(self.app, "fornecedores", "f-acme"))

    def test_delete_unknown_supplier(self) -> None:
        response = self.client.post("/fornecedores/delete", json={"idFornecedor": "f-zeta"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["error"], "supplier_not_found")

    def test_delete_is_all_or_nothing(self) -> None:
        original_upsert = DocumentStore._upsert
        calls = []

        def _fail_on_second(store, collection, key, data):
            calls.append(key)
            if len(calls) == 2:
                raise RuntimeError("disco cheio")
            return original_upsert(store, collection, key, data)

        with patch.object(DocumentStore, "_upsert", autospec=True, side_effect=_fail_on_second):
            response = self.client.post(
                "/fornecedores/delete",
                json={
                    "idFornecedor": "f-acme",
                    "realocacoesSubprodutos": [
                        {"subProdutoId": "sp-1", "novoFornecedorNome": "Beta"},
                        {"subProdutoId": "sp-2", "novoFornecedorNome": "Gama"},
                    ],
                },
            )

        self.assertEqual(response.status_code, 500)
        self.assertFalse(response.get_json()["success"])
        self.assertIsNotNone(read_document(self.app, "fornecedores", "f-acme"))
        self.assertEqual(read_document(self.app, "subprodutos", "sp-1")["Fornecedor"], "Acme")

    def test_supplier_subproducts(self) -> None:
        response = self.client.post("/fornecedores/getSubprodutos", json={"nomeFornecedor": "Acme"})

        self.assertEqual(response.status_code, 200)
        rows = response.get_json()["dados"]
        self.assertEqual([row["id"] for row in rows], ["sp-1", "sp-2"])
        self.assertEqual(rows[1]["SubProduto"], "Feijao 1kg")

        missing = self.client.post("/fornecedores/getSubprodutos", json={})
        self.assertEqual(missing.status_code, 400)


if __name__ == "__main__":
    unittest.main()

import unittest

from plataforma_cotacoes.db import connect_database, init_db
from plataforma_cotacoes.domain.quotation import Quotation
from plataforma_cotacoes.errors import ConflictError, NotFoundError
from plataforma_cotacoes.infrastructure.document_store import DocumentStore
from plataforma_cotacoes.infrastructure.repositories.base import CollectionRequiredError, DocumentRepository
from plataforma_cotacoes.infrastructure.repositories.catalog_repository import (
    CompanyRepository,
    ProductRepository,
    SubProductRepository,
)
from plataforma_cotacoes.infrastructure.repositories.quotation_repository import QuotationRepository
from tests.helpers.temp_db import TempDbSandbox


class RepositoriesTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="repositories")
        self.db = connect_database(self._temp_db.db_path)
        init_db(self.db)
        self.store = DocumentStore(self.db, max_attempts=2, retry_delay_ms=0)

    def tearDown(self) -> None:
        self.db.close()
        self._temp_db.cleanup()

    def test_repository_requires_collection(self) -> None:
        with self.assertRaises(CollectionRequiredError):
            DocumentRepository(self.store)

    def test_catalog_lookups(self) -> None:
        self.store.write_batches(
            "produtos",
            [("p1", {"Produto": "Arroz"}), ("p2", {"Produto": "Arroz"}), ("p3", {"Produto": "Sal"})],
        )
        self.store.write_batches(
            "subprodutos",
            [("s1", {"Produto Vinculado": "Arroz", "Subproduto": "Arroz 5kg", "Fornecedor": "Acme"})],
        )
        self.store.write_batches("empresas", [("e1", {"Empresa": "Loja", "CNPJ": " "})])

        self.assertEqual(ProductRepository(self.store).ids_by_name(), {"Arroz": "p1", "Sal": "p3"})
        subproducts = SubProductRepository(self.store)
        self.assertEqual(subproducts.list_documents()[0]["SubProduto"], "Arroz 5kg")
        self.assertEqual(subproducts.find_id(product="Arroz", sub_product="Arroz 5kg", supplier="Acme"), "s1")
        self.assertIsNone(subproducts.find_id(product="Arroz", sub_product="Arroz 5kg", supplier="Beta"))
        self.assertEqual(CompanyRepository(self.store).tax_ids_by_name(), {"Loja": None})

    def test_create_with_next_id_skips_taken_ids(self) -> None:
        repository = QuotationRepository(self.store)
        self.store.create("cotacoes", "4", {"ID da Cotação": 4})
        attempts = []

        def _build(quotation_id):
            attempts.append(quotation_id)
            if len(attempts) == 1:
                self.store.create("cotacoes", quotation_id, {"ID da Cotação": quotation_id})
            return Quotation(quotation_id=quotation_id, status="Nova Cotação")

        created = repository.create_with_next_id(_build)

        self.assertEqual(attempts, [5, 6])
        self.assertEqual(created.quotation_id, 6)
        self.assertEqual(repository.max_id(), 6)

    def test_create_with_next_id_gives_up(self) -> None:
        repository = QuotationRepository(self.store)

        def _always_taken(quotation_id):
            self.store.create("cotacoes", quotation_id, {"ID da Cotação": quotation_id})
            return Quotation(quotation_id=quotation_id)

        with self.assertRaises(ConflictError) as ctx:
            repository.create_with_next_id(_always_taken, max_attempts=2)
        self.assertEqual(ctx.exception.code, "concurrency_exhausted")

    def test_mutate_maps_store_errors(self) -> None:
        repository = QuotationRepository(self.store)
        with self.assertRaises(NotFoundError) as ctx:
            repository.mutate("77", lambda quotation, tx: None)
        self.assertEqual(ctx.exception.code, "quotation_not_found")

        self.store.create("cotacoes", "1", {"ID da Cotação": 1, "produtos": []})

        def _bump_status(quotation, tx):
            quotation.status = f"Status {tx.attempt}"
            self.store.write_batches("cotacoes", [("1", {"Concorrente": tx.attempt})])

        with self.assertRaises(ConflictError):
            repository.mutate("1", _bump_status)


if __name__ == "__main__":
    unittest.main()

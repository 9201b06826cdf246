import unittest

from plataforma_cotacoes.db import connect_database, init_db
from plataforma_cotacoes.infrastructure.document_store import (
    DocumentAlreadyExists,
    DocumentConflict,
    DocumentNotFound,
    DocumentStore,
)
from tests.helpers.temp_db import TempDbSandbox


COLLECTION = "cotacoes"


class DocumentStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="document_store")
        self.db = connect_database(self._temp_db.db_path)
        init_db(self.db)
        self.other_db = connect_database(self._temp_db.db_path)
        self.conflicts = []
        self.store = DocumentStore(
            self.db,
            max_attempts=3,
            retry_delay_ms=0,
            on_conflict=lambda collection, doc_id, attempt: self.conflicts.append(attempt),
        )
        self.other_store = DocumentStore(self.other_db, retry_delay_ms=0)

    def tearDown(self) -> None:
        self.db.close()
        self.other_db.close()
        self._temp_db.cleanup()

    def _outbox_count(self) -> int:
        return int(self.db.execute("SELECT COUNT(*) FROM subproduto_sync_outbox").fetchone()[0])

    def test_create_rejects_duplicate_id(self) -> None:
        self.store.create(COLLECTION, 1, {"a": 1})
        with self.assertRaises(DocumentAlreadyExists):
            self.store.create(COLLECTION, "1", {"a": 2})
        self.assertEqual(self.store.get(COLLECTION, 1).data, {"a": 1})

    def test_concurrent_write_is_retried_and_both_changes_survive(self) -> None:
        self.store.create(COLLECTION, "1", {"a": 1})
        attempts = []

        def _mutate(tx):
            attempts.append(tx.attempt)
            if tx.attempt == 1:
                self.other_store.run_transaction(COLLECTION, "1", lambda other_tx: other_tx.data.update({"b": 2}))
            tx.data["c"] = 3
            return "ok"

        result = self.store.run_transaction(COLLECTION, "1", _mutate)

        snapshot = self.store.get(COLLECTION, "1")
        self.assertEqual(result, "ok")
        self.assertEqual(attempts, [1, 2])
        self.assertEqual(self.conflicts, [1])
        self.assertEqual(snapshot.data, {"a": 1, "b": 2, "c": 3})
        self.assertEqual(snapshot.version, 3)

    def test_conflict_after_max_attempts(self) -> None:
        self.store.create(COLLECTION, "1", {"n": 0})

        def _always_loses(tx):
            self.other_store.run_transaction(
                COLLECTION, "1", lambda other_tx: other_tx.data.update({"n": other_tx.data["n"] + 1})
            )
            tx.data["mine"] = True

        with self.assertRaises(DocumentConflict) as ctx:
            self.store.run_transaction(COLLECTION, "1", _always_loses)

        self.assertEqual(ctx.exception.attempts, 3)
        self.assertEqual(self.conflicts, [1, 2, 3])
        self.assertNotIn("mine", self.store.get(COLLECTION, "1").data)

    def test_staged_writes_commit_with_document(self) -> None:
        self.store.create(COLLECTION, "1", {"a": 1})

        def _mutate(tx):
            tx.data["a"] = 2
            tx.stage(
                lambda db: db.execute(
                    "INSERT INTO subproduto_sync_outbox (quotation_id, payload) VALUES (?, ?)",
                    ("1", "{}"),
                )
            )

        self.store.run_transaction(COLLECTION, "1", _mutate)

        self.assertEqual(self.store.get(COLLECTION, "1").data, {"a": 2})
        self.assertEqual(self._outbox_count(), 1)

    def test_failed_mutation_writes_nothing(self) -> None:
        self.store.create(COLLECTION, "1", {"a": 1})

        def _mutate(tx):
            tx.data["a"] = 99
            tx.stage(lambda db: db.execute("INSERT INTO subproduto_sync_outbox (quotation_id, payload) VALUES ('1', '{}')"))
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            self.store.run_transaction(COLLECTION, "1", _mutate)

        self.assertEqual(self.store.get(COLLECTION, "1").data, {"a": 1})
        self.assertEqual(self._outbox_count(), 0)

    def test_unchanged_document_keeps_version(self) -> None:
        self.store.create(COLLECTION, "1", {"a": 1})
        self.store.run_transaction(COLLECTION, "1", lambda tx: None)
        self.assertEqual(self.store.get(COLLECTION, "1").version, 1)

    def test_missing_document(self) -> None:
        with self.assertRaises(DocumentNotFound):
            self.store.run_transaction(COLLECTION, "404", lambda tx: None)

    def test_write_batches_merge_and_only_existing(self) -> None:
        self.store.create("produtos", "arroz", {"Produto": "Arroz", "Categoria": "Graos"})
        batches = []

        result = self.store.write_batches(
            "produtos",
            [("arroz", {"Estoque Minimo": 8}), ("feijao", {"Estoque Minimo": 2}), ("sal", {"Estoque Minimo": 1})],
            batch_size=2,
            only_existing=True,
            on_batch=lambda number, size: batches.append((number, size)),
        )

        self.assertEqual(result, {"written": 1, "skipped": 2})
        self.assertEqual(batches, [(1, 2), (2, 1)])
        self.assertEqual(
            self.store.get("produtos", "arroz").data,
            {"Produto": "Arroz", "Categoria": "Graos", "Estoque Minimo": 8},
        )
        self.assertIsNone(self.store.get("produtos", "feijao"))

    def test_write_batches_without_merge_replaces(self) -> None:
        self.store.create("produtos", "arroz", {"Produto": "Arroz", "Categoria": "Graos"})
        self.store.write_batches("produtos", [("arroz", {"Produto": "Arroz"})], merge=False)
        self.assertEqual(self.store.get("produtos", "arroz").data, {"Produto": "Arroz"})
        self.assertEqual([snapshot.doc_id for snapshot in self.store.list("produtos")], ["arroz"])


if __name__ == "__main__":
    unittest.main()

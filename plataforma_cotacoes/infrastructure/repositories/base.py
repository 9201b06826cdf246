from __future__ import annotations

from typing import Any, Dict, Iterable, List

from plataforma_cotacoes.infrastructure.document_store import DocumentSnapshot, DocumentStore


class CollectionRequiredError(ValueError):
    """Raised when a repository is declared without a collection name."""


class DocumentRepository:
    collection: str = ""

    def __init__(self, store: DocumentStore) -> None:
        if not str(self.collection or "").strip():
            raise CollectionRequiredError(f"{type(self).__name__} sem colecao definida")
        self.store = store

    def list_snapshots(self) -> List[DocumentSnapshot]:
        return self.store.list(self.collection)

    def list_documents(self) -> List[Dict[str, Any]]:
        return self.snapshots_to_dicts(self.list_snapshots())

    def write_many(self, documents: Iterable[tuple], **kwargs) -> Dict[str, int]:
        return self.store.write_batches(self.collection, documents, **kwargs)

    @staticmethod
    def snapshots_to_dicts(snapshots: Iterable[DocumentSnapshot]) -> List[Dict[str, Any]]:
        return [{"_id": snapshot.doc_id, **snapshot.data} for snapshot in snapshots]

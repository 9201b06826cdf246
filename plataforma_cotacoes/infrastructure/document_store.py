"""Armazenamento de documentos JSON sobre a tabela ``documents``.

Cada documento carrega um ``version``. Transacoes leem corpo + versao,
aplicam a mutacao em memoria e gravam com ``UPDATE ... WHERE version = ?``;
zero linhas afetadas significa que outro escritor venceu, entao a leitura
e a mutacao sao refeitas.
"""

from __future__ import annotations

import copy
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Tuple


class DocumentStoreError(Exception):
    pass


class DocumentNotFound(DocumentStoreError):
    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} nao encontrado")
        self.collection = collection
        self.doc_id = doc_id


class DocumentAlreadyExists(DocumentStoreError):
    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} ja existe")
        self.collection = collection
        self.doc_id = doc_id


class DocumentConflict(DocumentStoreError):
    def __init__(self, collection: str, doc_id: str, attempts: int) -> None:
        super().__init__(f"{collection}/{doc_id} alterado concorrentemente ({attempts} tentativas)")
        self.collection = collection
        self.doc_id = doc_id
        self.attempts = attempts


@dataclass(frozen=True)
class DocumentSnapshot:
    collection: str
    doc_id: str
    data: Dict[str, Any]
    version: int


@dataclass
class DocumentTransaction:
    snapshot: DocumentSnapshot
    data: Dict[str, Any]
    attempt: int
    staged_writes: List[Callable[[Any], None]] = field(default_factory=list)

    @property
    def doc_id(self) -> str:
        return self.snapshot.doc_id

    def stage(self, write_fn: Callable[[Any], None]) -> None:
        """Escrita extra (ex.: outbox) gravada no mesmo commit do documento."""
        self.staged_writes.append(write_fn)


def _dumps(data: Dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=str)


def _loads(raw) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    loaded = json.loads(raw or "{}")
    return loaded if isinstance(loaded, dict) else {}


def _row_value(row, key: str, index: int):
    if isinstance(row, dict):
        return row[key]
    try:
        return row[key]
    except (IndexError, KeyError, TypeError):
        return row[index]


def _chunks(items: List[Any], size: int) -> Iterable[List[Any]]:
    size = max(1, int(size))
    for start in range(0, len(items), size):
        yield items[start : start + size]


class DocumentStore:
    def __init__(
        self,
        db,
        *,
        max_attempts: int = 5,
        retry_delay_ms: int = 20,
        on_conflict: Callable[[str, str, int], None] | None = None,
    ) -> None:
        self._db = db
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay_ms = max(0, int(retry_delay_ms))
        self._on_conflict = on_conflict

    @property
    def db(self):
        return self._db

    def get(self, collection: str, doc_id) -> DocumentSnapshot | None:
        rows = self._db.execute(
            """
            SELECT doc_id, body, version
            FROM documents
            WHERE collection = ? AND doc_id = ?
            """,
            (collection, str(doc_id)),
        ).fetchall()
        if not rows:
            return None
        return self._snapshot(collection, rows[0])

    def list(self, collection: str) -> List[DocumentSnapshot]:
        rows = self._db.execute(
            """
            SELECT doc_id, body, version
            FROM documents
            WHERE collection = ?
            ORDER BY doc_id
            """,
            (collection,),
        ).fetchall()
        return [self._snapshot(collection, row) for row in rows]

    def create(self, collection: str, doc_id, data: Dict[str, Any]) -> DocumentSnapshot:
        key = str(doc_id)
        try:
            cursor = self._db.execute(
                """
                INSERT INTO documents (collection, doc_id, body, version)
                VALUES (?, ?, ?, 1)
                ON CONFLICT (collection, doc_id) DO NOTHING
                """,
                (collection, key, _dumps(data)),
            )
            inserted = cursor.rowcount == 1
        except Exception:
            self._db.rollback()
            raise
        if not inserted:
            self._db.rollback()
            raise DocumentAlreadyExists(collection, key)
        self._db.commit()
        return DocumentSnapshot(collection=collection, doc_id=key, data=copy.deepcopy(data), version=1)

    def run_transaction(self, collection: str, doc_id, mutate_fn: Callable[[DocumentTransaction], Any]):
        """Executa ``mutate_fn`` em leitura-modificacao-escrita atomica.

        ``mutate_fn`` pode ser chamada mais de uma vez e deve depender apenas
        de ``tx.data``. Excecoes levantadas por ela abortam sem gravar nada.
        """
        key = str(doc_id)
        for attempt in range(1, self.max_attempts + 1):
            snapshot = self.get(collection, key)
            if snapshot is None:
                raise DocumentNotFound(collection, key)
            tx = DocumentTransaction(snapshot=snapshot, data=copy.deepcopy(snapshot.data), attempt=attempt)
            try:
                result = mutate_fn(tx)
            except Exception:
                self._db.rollback()
                raise
            if tx.data == snapshot.data and not tx.staged_writes:
                self._db.rollback()
                return result
            try:
                if self._compare_and_set(collection, key, snapshot.version, tx.data):
                    for write_fn in tx.staged_writes:
                        write_fn(self._db)
                    self._db.commit()
                    return result
                self._db.rollback()
            except Exception:
                self._db.rollback()
                raise
            if self._on_conflict is not None:
                self._on_conflict(collection, key, attempt)
            if attempt < self.max_attempts and self.retry_delay_ms:
                time.sleep(self.retry_delay_ms * attempt / 1000.0)
        raise DocumentConflict(collection, key, self.max_attempts)

    def write_batches(
        self,
        collection: str,
        documents: Iterable[Tuple[Any, Dict[str, Any]]],
        *,
        batch_size: int = 20,
        merge: bool = True,
        only_existing: bool = False,
        on_batch: Callable[[int, int], None] | None = None,
    ) -> Dict[str, int]:
        """Grava em lotes; cada lote e um commit independente.

        Lotes ja gravados permanecem se um lote posterior falhar. Com
        ``merge`` os campos existentes que nao vieram na entrada sao mantidos.
        """
        pending = [(str(doc_id), dict(data)) for doc_id, data in documents]
        written = 0
        skipped = 0
        for batch_number, batch in enumerate(_chunks(pending, batch_size), start=1):
            try:
                for key, data in batch:
                    current = self.get(collection, key)
                    if current is None and only_existing:
                        skipped += 1
                        continue
                    body = {**current.data, **data} if (current is not None and merge) else data
                    self._upsert(collection, key, body)
                    written += 1
                self._db.commit()
            except Exception:
                self._db.rollback()
                raise
            if on_batch is not None:
                on_batch(batch_number, len(batch))
        return {"written": written, "skipped": skipped}

    def commit_batch(
        self,
        *,
        upserts: Iterable[Tuple[str, Any, Dict[str, Any]]] = (),
        deletes: Iterable[Tuple[str, Any]] = (),
    ) -> Dict[str, int]:
        """Grava e remove documentos de colecoes diferentes num unico commit."""
        written = 0
        deleted = 0
        try:
            for collection, doc_id, data in upserts:
                self._upsert(collection, str(doc_id), dict(data))
                written += 1
            for collection, doc_id in deletes:
                cursor = self._db.execute(
                    "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                    (collection, str(doc_id)),
                )
                deleted += int(getattr(cursor, "rowcount", 0) or 0)
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise
        return {"written": written, "deleted": deleted}

    def _compare_and_set(self, collection: str, key: str, expected_version: int, data: Dict[str, Any]) -> bool:
        cursor = self._db.execute(
            """
            UPDATE documents
            SET body = ?, version = version + 1, updated_at = CURRENT_TIMESTAMP
            WHERE collection = ? AND doc_id = ? AND version = ?
            """,
            (_dumps(data), collection, key, int(expected_version)),
        )
        return cursor.rowcount == 1

    def _upsert(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        self._db.execute(
            """
            INSERT INTO documents (collection, doc_id, body, version)
            VALUES (?, ?, ?, 1)
            ON CONFLICT (collection, doc_id) DO UPDATE SET
                body = excluded.body,
                version = documents.version + 1,
                updated_at = CURRENT_TIMESTAMP
            """,
            (collection, key, _dumps(data)),
        )

    @staticmethod
    def _snapshot(collection: str, row) -> DocumentSnapshot:
        return DocumentSnapshot(
            collection=collection,
            doc_id=str(_row_value(row, "doc_id", 0)),
            data=_loads(_row_value(row, "body", 1)),
            version=int(_row_value(row, "version", 2)),
        )

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from plataforma_cotacoes.infrastructure.repositories.base import DocumentRepository


PRODUCTS_COLLECTION = "produtos"
SUBPRODUCTS_COLLECTION = "subprodutos"
SUPPLIERS_COLLECTION = "fornecedores"
COMPANIES_COLLECTION = "empresas"

P_NAME = "Produto"
P_CATEGORY = "Categoria"
P_ABC = "ABC"
P_MIN_STOCK = "Estoque Minimo"

SP_NAME = "SubProduto"
SP_NAME_LEGACY = "Subproduto"
SP_LINKED_PRODUCT = "Produto Vinculado"
SP_SUPPLIER = "Fornecedor"

S_NAME = "Fornecedor"

C_NAME = "Empresa"
C_TAX_ID = "CNPJ"


def _text(value) -> str:
    return str(value).strip() if value is not None else ""


class ProductRepository(DocumentRepository):
    collection = PRODUCTS_COLLECTION

    def by_name(self) -> Dict[str, Dict[str, Any]]:
        products: Dict[str, Dict[str, Any]] = {}
        for document in self.list_documents():
            name = _text(document.get(P_NAME))
            if name and name not in products:
                products[name] = document
        return products

    def ids_by_name(self) -> Dict[str, str]:
        return {name: document["_id"] for name, document in self.by_name().items()}


class SubProductRepository(DocumentRepository):
    collection = SUBPRODUCTS_COLLECTION

    def list_documents(self) -> List[Dict[str, Any]]:
        documents = super().list_documents()
        for document in documents:
            if SP_NAME not in document and SP_NAME_LEGACY in document:
                document[SP_NAME] = document.pop(SP_NAME_LEGACY)
        return documents

    def find_id(self, *, product: str, sub_product: str, supplier: str) -> str | None:
        wanted: Tuple[str, str, str] = (product, sub_product, supplier)
        for document in self.list_documents():
            candidate = (
                _text(document.get(SP_LINKED_PRODUCT)),
                _text(document.get(SP_NAME)),
                _text(document.get(SP_SUPPLIER)),
            )
            if candidate == wanted:
                return document["_id"]
        return None

    def by_supplier(self, supplier: str) -> List[Dict[str, Any]]:
        name = _text(supplier)
        return [document for document in self.list_documents() if _text(document.get(SP_SUPPLIER)) == name]


class SupplierRepository(DocumentRepository):
    collection = SUPPLIERS_COLLECTION

    def find(self, supplier_id) -> Dict[str, Any] | None:
        snapshot = self.store.get(self.collection, supplier_id)
        if snapshot is None:
            return None
        return {"_id": snapshot.doc_id, **snapshot.data}


class CompanyRepository(DocumentRepository):
    collection = COMPANIES_COLLECTION

    def tax_ids_by_name(self) -> Dict[str, str | None]:
        registry: Dict[str, str | None] = {}
        for document in self.list_documents():
            name = _text(document.get(C_NAME))
            if name:
                registry[name] = _text(document.get(C_TAX_ID)) or None
        return registry


CATALOG_REPOSITORIES = {
    PRODUCTS_COLLECTION: ProductRepository,
    SUBPRODUCTS_COLLECTION: SubProductRepository,
    SUPPLIERS_COLLECTION: SupplierRepository,
    COMPANIES_COLLECTION: CompanyRepository,
}

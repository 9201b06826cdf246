import unittest

from plataforma_cotacoes.domain.quotation import ProductGroup, QuotationItem
from plataforma_cotacoes.errors import ValidationError
from plataforma_cotacoes.procurement.selection import SelectionCriteria, build_groups, filter_subproducts


PRODUCTS = [
    {"Produto": "Arroz", "Categoria": "Graos", "ABC": "A", "Estoque Minimo": 10},
    {"Produto": "Feijao", "Categoria": "Graos", "ABC": "B"},
    {"Produto": "Detergente", "Categoria": "Limpeza", "ABC": "C"},
]

SUBPRODUCTS = [
    {"Produto Vinculado": "Arroz", "SubProduto": "Arroz 5kg", "Fornecedor": "Acme", "Fator": 5, "UN": "PCT"},
    {"Produto Vinculado": "Arroz", "SubProduto": "Arroz 1kg", "Fornecedor": "Beta"},
    {"Produto Vinculado": "Feijao", "SubProduto": "Feijao 1kg", "Fornecedor": "acme "},
    {"Produto Vinculado": "Detergente", "SubProduto": "Detergente 500ml", "Fornecedor": "Gama", "Categoria": "Outros"},
]


def _products_by_name():
    return {product["Produto"]: product for product in PRODUCTS}


class SelectionCriteriaTest(unittest.TestCase):
    def test_payload_validation(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            SelectionCriteria.from_payload({"tipo": "fornecedor", "selecoes": []})
        self.assertEqual(ctx.exception.code, "creation_options_invalid")

        with self.assertRaises(ValidationError) as ctx:
            SelectionCriteria.from_payload({"tipo": "marca", "selecoes": ["x"]})
        self.assertEqual(ctx.exception.code, "selection_type_invalid")

    def test_filter_by_supplier_is_case_insensitive(self) -> None:
        criteria = SelectionCriteria.from_payload({"tipo": "fornecedor", "selecoes": ["ACME"]})
        matched = filter_subproducts(criteria, SUBPRODUCTS, PRODUCTS)
        self.assertEqual([sp["SubProduto"] for sp in matched], ["Arroz 5kg", "Feijao 1kg"])

    def test_filter_by_category_and_abc_uses_products(self) -> None:
        by_category = SelectionCriteria.from_payload({"tipo": "categoria", "selecoes": ["graos"]})
        self.assertEqual(len(filter_subproducts(by_category, SUBPRODUCTS, PRODUCTS)), 3)

        by_abc = SelectionCriteria.from_payload({"tipo": "curvaABC", "selecoes": ["C"]})
        matched = filter_subproducts(by_abc, SUBPRODUCTS, PRODUCTS)
        self.assertEqual([sp["SubProduto"] for sp in matched], ["Detergente 500ml"])

    def test_filter_by_specific_product(self) -> None:
        criteria = SelectionCriteria.from_payload({"tipo": "produtoEspecifico", "selecoes": ["arroz"]})
        self.assertEqual(len(filter_subproducts(criteria, SUBPRODUCTS, PRODUCTS)), 2)


class BuildGroupsTest(unittest.TestCase):
    def test_groups_by_product_with_catalog_data(self) -> None:
        built = build_groups(SUBPRODUCTS, _products_by_name())
        groups = built["groups"]

        self.assertEqual(built["added"], 4)
        self.assertEqual([group.product for group in groups], ["Arroz", "Feijao", "Detergente"])
        self.assertEqual(groups[0].min_stock, 10)
        first = groups[0].items[0]
        self.assertEqual(first.category, "Graos")
        self.assertEqual(first.factor, 5)
        self.assertEqual(first.unit, "PCT")
        self.assertIsNone(first.quantity)
        self.assertEqual(groups[2].items[0].category, "Limpeza")

    def test_merge_skips_existing_keys(self) -> None:
        existing = [ProductGroup(product="Arroz", items=[QuotationItem(sub_product="Arroz 5kg", supplier="Acme")])]

        first = build_groups(SUBPRODUCTS[:2], _products_by_name(), existing=existing)
        second = build_groups(SUBPRODUCTS[:2], _products_by_name(), existing=existing)

        self.assertEqual(first["added"], 1)
        self.assertEqual(second["added"], 0)
        self.assertEqual(len(existing), 1)
        self.assertEqual([item.sub_product for item in existing[0].items], ["Arroz 5kg", "Arroz 1kg"])


if __name__ == "__main__":
    unittest.main()

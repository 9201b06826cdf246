import unittest

from plataforma_cotacoes.domain.quotation import Quotation
from plataforma_cotacoes.procurement.projections import (
    average_demand_map,
    format_opened_at,
    newest_first,
    print_grouping,
)


def _quotation_doc(opened_at, quantities):
    return {
        "Data Abertura": opened_at,
        "produtos": [
            {
                "Produto": "Arroz",
                "itens": [{"SubProduto": f"Arroz {index}", "Fornecedor": "Acme", "Comprar": qty} for index, qty in enumerate(quantities)],
            }
        ],
    }


class OpenedAtTest(unittest.TestCase):
    def test_format(self) -> None:
        self.assertEqual(format_opened_at("2026-03-05T13:00:00Z"), "05/03/2026")
        self.assertEqual(format_opened_at("2026-03-05T13:00:00"), "05/03/2026")
        self.assertEqual(format_opened_at(""), "N/A")
        self.assertEqual(format_opened_at("ontem"), "N/A")

    def test_newest_first_puts_undated_last(self) -> None:
        docs = [{"Data Abertura": None, "n": 0}, {"Data Abertura": "2026-01-01T00:00:00Z", "n": 1}, {"Data Abertura": "2026-02-01T00:00:00Z", "n": 2}]
        self.assertEqual([doc["n"] for doc in newest_first(docs)], [2, 1, 0])


class AverageDemandTest(unittest.TestCase):
    def test_uses_three_most_recent_positive_purchases(self) -> None:
        docs = [
            _quotation_doc("2026-01-01T00:00:00Z", [100]),
            _quotation_doc("2026-02-01T00:00:00Z", [2, 4]),
            _quotation_doc("2026-03-01T00:00:00Z", [0]),
            _quotation_doc("2026-04-01T00:00:00Z", ["3"]),
            _quotation_doc("2026-05-01T00:00:00Z", [9]),
        ]
        demand = average_demand_map(docs)
        self.assertAlmostEqual(demand["Arroz"], (9 + 3 + 6) / 3)

    def test_ignores_legacy_documents_and_products_without_purchases(self) -> None:
        docs = [
            {"Data Abertura": "2026-01-01T00:00:00Z", "itens": [{"Produto": "Arroz", "Comprar": 5}]},
            _quotation_doc("2026-02-01T00:00:00Z", [0]),
        ]
        self.assertEqual(average_demand_map(docs), {})


class PrintGroupingTest(unittest.TestCase):
    def test_groups_by_supplier_and_company(self) -> None:
        quotation = Quotation.from_document(
            {
                "ID da Cotação": 1,
                "produtos": [
                    {
                        "Produto": "Arroz",
                        "itens": [
                            {"SubProduto": "A1", "Fornecedor": "Acme", "Comprar": 2, "Preço": 10, "Valor Total": 20, "Empresa Faturada": "Loja 1", "Condição de Pagamento": "30 dias"},
                            {"SubProduto": "A2", "Fornecedor": "Acme", "Comprar": 1, "Preço": 5},
                            {"SubProduto": "A3", "Fornecedor": "Beta", "Comprar": 0, "Preço": 7},
                        ],
                    }
                ],
            }
        )

        grouped = print_grouping(quotation, {"Loja 1": "12.345.678/0001-90"})

        self.assertEqual(set(grouped), {"Acme"})
        buckets = {bucket["empresaFaturada"]: bucket for bucket in grouped["Acme"]}
        self.assertEqual(buckets["Loja 1"]["cnpj"], "12.345.678/0001-90")
        self.assertEqual(buckets["Loja 1"]["condicaoPagamento"], "30 dias")
        self.assertEqual(buckets["Loja 1"]["valorTotal"], 20.0)
        self.assertEqual(buckets["Sem Empresa"]["valorTotal"], 5.0)
        self.assertIsNone(buckets["Sem Empresa"]["cnpj"])

    def test_mixed_payment_conditions_are_all_listed(self) -> None:
        quotation = Quotation.from_document(
            {
                "ID da Cotação": 2,
                "produtos": [
                    {
                        "Produto": "Arroz",
                        "itens": [
                            {"SubProduto": "A1", "Fornecedor": "Acme", "Comprar": 1, "Preço": 4, "Empresa Faturada": "Loja 1", "Condição de Pagamento": "30 dias"},
                            {"SubProduto": "A2", "Fornecedor": "Acme", "Comprar": 1, "Preço": 6, "Empresa Faturada": "Loja 1", "Condição de Pagamento": "A vista"},
                            {"SubProduto": "A3", "Fornecedor": "Acme", "Comprar": 1, "Preço": 2, "Empresa Faturada": "Loja 1", "Condição de Pagamento": "30 dias"},
                        ],
                    }
                ],
            }
        )

        bucket = print_grouping(quotation, {})["Acme"][0]

        self.assertIsNone(bucket["condicaoPagamento"])
        self.assertEqual(bucket["condicoesPagamento"], ["30 dias", "A vista"])
        self.assertEqual([line["Condição de Pagamento"] for line in bucket["itens"]], ["30 dias", "A vista", "30 dias"])
        self.assertEqual(bucket["valorTotal"], 12.0)


if __name__ == "__main__":
    unittest.main()

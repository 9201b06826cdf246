from __future__ import annotations

from typing import Dict, List


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "Plataforma Cotacoes",
    "quotation": "Cotacao",
    "product": "Produto",
    "subproduct": "SubProduto",
    "supplier": "Fornecedor",
    "company": "Empresa faturada",
}


DETAIL_HEADERS: List[str] = [
    "SubProduto",
    "Fornecedor",
    "Tamanho",
    "UN",
    "Fator",
    "Preço",
    "Preço por Fator",
    "Comprar",
    "Valor Total",
    "Economia em Cotação",
    "Empresa Faturada",
    "Condição de Pagamento",
]


PAYMENT_CONDITIONS: List[str] = [
    "À vista",
    "7 dias",
    "14 dias",
    "21 dias",
    "28 dias",
    "30 dias",
    "30/60 dias",
    "30/60/90 dias",
    "Boleto 28 dias",
]


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "details_loaded": "Dados da cotacao carregados com sucesso.",
        "cell_saved": "Coluna atualizada.",
        "item_details_saved": "Detalhes do item atualizados com sucesso!",
        "items_appended": "Itens acrescentados com sucesso.",
        "no_new_items": "Nenhum novo item encontrado para os criterios selecionados.",
        "stocktaking_saved": "Contagem de estoque salva com sucesso.",
        "products_removed": "Produtos retirados da cotacao.",
        "subproducts_removed": "Subprodutos retirados da cotacao.",
        "status_updated": "Status da cotacao atualizado.",
        "billing_saved": "Empresas faturadas salvas com sucesso.",
        "payment_conditions_saved": "Condicoes de pagamento salvas com sucesso.",
        "print_data_loaded": "Dados de impressao carregados.",
        "quotation_created": "Nova cotacao criada.",
        "quotation_created_empty": "Nenhum subproduto encontrado para os criterios. Cotacao criada vazia.",
        "import_completed": "Importacao concluida com sucesso.",
        "no_quotations": "Nenhuma cotacao encontrada.",
        "supplier_created": "Fornecedor criado com sucesso!",
        "supplier_updated": "Fornecedor atualizado com sucesso!",
        "supplier_deleted": "Fornecedor excluido e subprodutos vinculados processados.",
        "supplier_subproducts_loaded": "Subprodutos do fornecedor carregados.",
    },
    "error": {
        "quotation_id_required": "ID da Cotacao nao fornecido.",
        "quotation_not_found": "Cotacao nao encontrada.",
        "item_not_found": "Item especifico nao encontrado na cotacao.",
        "item_key_required": "Identificadores da linha incompletos (Produto, SubProduto e Fornecedor).",
        "item_key_conflict": "Ja existe um item com este SubProduto e Fornecedor na cotacao.",
        "insufficient_data": "Dados insuficientes para salvar a alteracao.",
        "column_not_editable": "Coluna informada nao pode ser editada.",
        "numeric_value_invalid": "Valor numerico invalido.",
        "no_changes": "Nenhuma alteracao informada.",
        "creation_options_invalid": "Opcoes de criacao invalidas ou incompletas.",
        "selection_type_invalid": "Tipo de selecao invalido.",
        "stocktaking_data_required": "Informe os dados da contagem.",
        "product_names_required": "Informe os produtos a retirar.",
        "subproducts_required": "Informe os subprodutos a retirar.",
        "status_required": "Informe o novo status.",
        "status_invalid": "Status informado e invalido.",
        "status_transition_invalid": "Transicao de status nao permitida a partir do status atual.",
        "billing_data_required": "Informe as empresas faturadas.",
        "payment_data_required": "Informe as condicoes de pagamento.",
        "import_source_missing": "Nenhuma fonte de planilha informada para importacao.",
        "import_empty": "Nenhum dado encontrado na planilha.",
        "collection_invalid": "Colecao de catalogo invalida.",
        "supplier_name_required": "Nome do Fornecedor e obrigatorio.",
        "supplier_id_required": "ID do fornecedor e obrigatorio.",
        "supplier_not_found": "Fornecedor nao encontrado.",
        "supplier_reassignment_invalid": "Realocacao de subproduto para fornecedor invalido.",
        "concurrency_exhausted": "A cotacao foi alterada por outra operacao. Tente novamente.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
    },
}


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)

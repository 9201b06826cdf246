from __future__ import annotations

from typing import Dict, List

from plataforma_cotacoes.errors import ValidationError


STATUS_NEW = "Nova Cotação"
STATUS_STOCKTAKING = "Contagem de Estoque"
STATUS_QUOTING = "Em Cotação"
STATUS_BILLING = "Definindo Empresa Faturada"
STATUS_PAYMENT_TERMS = "Definindo Condições de Pagamento"
STATUS_AWAITING_PRINT = "Aguardando Impressão"
STATUS_CLOSED = "Fechada"


QUOTATION_STATUSES: List[str] = [
    STATUS_NEW,
    STATUS_STOCKTAKING,
    STATUS_QUOTING,
    STATUS_BILLING,
    STATUS_PAYMENT_TERMS,
    STATUS_AWAITING_PRINT,
    STATUS_CLOSED,
]


QUOTATION_TRANSITIONS: Dict[str, List[str]] = {
    STATUS_NEW: [STATUS_STOCKTAKING, STATUS_QUOTING, STATUS_BILLING, STATUS_PAYMENT_TERMS, STATUS_CLOSED],
    STATUS_STOCKTAKING: [STATUS_NEW, STATUS_QUOTING, STATUS_BILLING, STATUS_PAYMENT_TERMS, STATUS_CLOSED],
    STATUS_QUOTING: [STATUS_STOCKTAKING, STATUS_BILLING, STATUS_PAYMENT_TERMS, STATUS_CLOSED],
    STATUS_BILLING: [STATUS_QUOTING, STATUS_PAYMENT_TERMS, STATUS_CLOSED],
    STATUS_PAYMENT_TERMS: [STATUS_BILLING, STATUS_QUOTING, STATUS_AWAITING_PRINT, STATUS_CLOSED],
    STATUS_AWAITING_PRINT: [STATUS_PAYMENT_TERMS, STATUS_CLOSED],
    STATUS_CLOSED: [STATUS_QUOTING],
}


def normalize_status(status: str | None) -> str:
    return str(status or "").strip()


def is_known_status(status: str | None) -> bool:
    return normalize_status(status) in QUOTATION_TRANSITIONS


def allowed_transitions(current: str | None) -> List[str]:
    current_status = normalize_status(current)
    if current_status not in QUOTATION_TRANSITIONS:
        # status legado (fora da tabela) pode migrar para qualquer status conhecido
        return list(QUOTATION_STATUSES)
    return list(QUOTATION_TRANSITIONS[current_status])


def transition_allowed(current: str | None, target: str | None) -> bool:
    target_status = normalize_status(target)
    if not is_known_status(target_status):
        return False
    if normalize_status(current) == target_status:
        return True
    return target_status in allowed_transitions(current)


def validate_transition(current: str | None, target: str | None, *, free_form: bool = False) -> str:
    """Retorna o status de destino normalizado ou levanta ``ValidationError``."""
    target_status = normalize_status(target)
    if not target_status:
        raise ValidationError(code="status_required")
    if free_form:
        return target_status
    if not is_known_status(target_status):
        raise ValidationError(
            code="status_invalid",
            payload={"novoStatus": target_status, "statusPermitidos": list(QUOTATION_STATUSES)},
        )
    if not transition_allowed(current, target_status):
        raise ValidationError(
            code="status_transition_invalid",
            payload={
                "statusAtual": normalize_status(current) or None,
                "novoStatus": target_status,
                "statusPermitidos": allowed_transitions(current),
            },
        )
    return target_status


def frontend_bundle() -> Dict[str, object]:
    return {
        "statuses": list(QUOTATION_STATUSES),
        "transitions": {status: list(targets) for status, targets in QUOTATION_TRANSITIONS.items()},
    }

from __future__ import annotations

from typing import Any, Dict

from plataforma_cotacoes.ui_strings import error_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or code or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "Nao foi possivel concluir a operacao.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class ValidationError(AppError):
    default_code = "validation_error"
    default_message_key = "insufficient_data"
    default_http_status = 400
    default_critical = False


class NotFoundError(AppError):
    default_code = "not_found"
    default_message_key = "quotation_not_found"
    default_http_status = 404
    default_critical = False


class ConflictError(AppError):
    default_code = "conflict"
    default_message_key = "concurrency_exhausted"
    default_http_status = 409
    default_critical = False


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True


def quotation_not_found(quotation_id) -> NotFoundError:
    return NotFoundError(
        code="quotation_not_found",
        details=f"cotacao {quotation_id} inexistente",
        payload={"idCotacao": quotation_id},
    )


def item_not_found(key) -> NotFoundError:
    return NotFoundError(
        code="item_not_found",
        details=f"item {key.as_tuple()} inexistente",
        payload={"identificadoresLinha": key.to_payload()},
    )

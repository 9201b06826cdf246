import unittest

from plataforma_cotacoes.db import close_db
from plataforma_cotacoes.errors import ConflictError, NotFoundError, ValidationError
from plataforma_cotacoes.ui_strings import error_message
from tests.helpers.app_factory import build_temp_app
from tests.helpers.temp_db import TempDbSandbox


class ErrorPayloadTest(unittest.TestCase):
    def test_error_classes_map_to_http_status(self) -> None:
        self.assertEqual(ValidationError(code="insufficient_data").http_status, 400)
        self.assertEqual(NotFoundError(code="quotation_not_found").http_status, 404)
        self.assertEqual(ConflictError().http_status, 409)

    def test_payload_merges_extra_fields(self) -> None:
        error = ValidationError(code="status_invalid", payload={"novoStatus": "X"})
        payload = error.to_response_payload("req-1")
        self.assertEqual(payload["success"], False)
        self.assertEqual(payload["error"], "status_invalid")
        self.assertEqual(payload["message"], error_message("status_invalid"))
        self.assertEqual(payload["request_id"], "req-1")
        self.assertEqual(payload["novoStatus"], "X")

    def test_unknown_message_key_falls_back(self) -> None:
        error = ValidationError(code="codigo_sem_mensagem")
        self.assertEqual(error.user_message(), error_message("unexpected_error"))


class ErrorHandlingTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_handling")
        self.app = build_temp_app(self._temp_db, PROPAGATE_EXCEPTIONS=False)

        @self.app.get("/_falha")
        def _falha():
            raise RuntimeError("segredo interno")

        self.client = self.app.test_client()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_validation_error_is_json(self) -> None:
        response = self.client.post("/cotacaoindividual/detalhes", json={"idCotacao": " "})

        self.assertEqual(response.status_code, 400)
        payload = response.get_json()
        self.assertFalse(payload["success"])
        self.assertEqual(payload["error"], "quotation_id_required")
        self.assertEqual(payload["message"], error_message("quotation_id_required"))
        self.assertTrue(payload["request_id"])

    def test_not_found_quotation(self) -> None:
        response = self.client.post("/cotacaoindividual/detalhes", json={"idCotacao": "123"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["idCotacao"], "123")

    def test_unexpected_error_hides_details(self) -> None:
        response = self.client.get("/_falha")

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload["error"], "unexpected_error")
        self.assertEqual(payload["message"], error_message("unexpected_error"))
        self.assertNotIn("segredo interno", response.get_data(as_text=True))

    def test_http_errors_are_json(self) -> None:
        response = self.client.get("/rota-inexistente")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["error"], "not_found")

        response = self.client.get("/cotacoes/criar")
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.get_json()["error"], "method_not_allowed")

    def test_request_id_is_echoed(self) -> None:
        response = self.client.get("/cotacoes/resumos", headers={"X-Request-Id": "req-abc"})
        self.assertEqual(response.headers["X-Request-Id"], "req-abc")
        self.assertIn("X-Response-Time-Ms", response.headers)


if __name__ == "__main__":
    unittest.main()

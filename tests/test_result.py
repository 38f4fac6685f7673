from concierge.services.result import Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success([{"id": "s1", "name": "Corte feminino"}])
        assert result.ok is True
        assert result.value[0]["name"] == "Corte feminino"
        assert result.error is None

    def test_payload_wraps_data(self):
        assert Result.success({"slots": ["10:00"]}).to_payload() == {"ok": True, "data": {"slots": ["10:00"]}}


class TestResultFailure:
    def test_failure_creates_not_ok_result(self):
        result = Result.failure("horário indisponível", "invalid_request")
        assert result.ok is False
        assert result.error_code == "invalid_request"
        assert result.value is None

    def test_failure_default_code(self):
        assert Result.failure("erro").error_code == "unknown"

    def test_payload_exposes_error_and_code(self):
        payload = Result.failure("appointment not found", "not_found").to_payload()
        assert payload == {"ok": False, "error": "appointment not found", "code": "not_found"}


class TestResultUnwrapOr:
    def test_unwrap_or_returns_value_on_success(self):
        assert Result.success("ok").unwrap_or("default") == "ok"

    def test_unwrap_or_returns_default_on_failure(self):
        assert Result.failure("timeout", "timeout").unwrap_or([]) == []

"""Tests for the shared tool response builders."""

from outlook_mcp.tools.base import (
    build_error_response,
    build_success_response,
    error_response_from,
)
from outlook_mcp.utils.errors import ApiError, RateLimitExceeded


class TestResponseBuilders:
    """Tests for build_success_response and build_error_response."""

    def test_success_response(self) -> None:
        assert build_success_response({"a": 1}, message="ok") == {
            "status": "success",
            "data": {"a": 1},
            "message": "ok",
        }

    def test_success_response_without_message(self) -> None:
        assert "message" not in build_success_response([])

    def test_error_response_merges_details(self) -> None:
        response = build_error_response("failed", error_code="X", details={"hint": "retry"})
        assert response == {
            "status": "error",
            "error": "failed",
            "error_code": "X",
            "hint": "retry",
        }


class TestErrorResponseFrom:
    """Tests for error_response_from."""

    def test_uses_error_kind_as_code(self) -> None:
        response = error_response_from(ApiError("Not found", status_code=404))
        assert response["error_code"] == "ApiError"
        assert response["error"] == "Not found"

    def test_includes_retry_after(self) -> None:
        response = error_response_from(
            RateLimitExceeded("Slow down", retry_after_seconds=12, details={"key": "u"})
        )
        assert response["error_code"] == "RateLimitExceeded"
        assert response["retry_after_seconds"] == 12
        assert response["key"] == "u"

import pytest

from safeguard.utils.result import (
    ErrorType,
    Failure,
    Success,
    error_result,
)


class TestSuccess:
    def test_unwrap_and_to_dict(self):
        result = Success({"id": "abc"}, metadata={"attempts": 2})

        assert result.is_success() and not result.is_failure()
        assert bool(result) is True
        assert result.unwrap() == {"id": "abc"}
        assert result.to_dict() == {
            "success": True,
            "data": {"id": "abc"},
            "metadata": {"attempts": 2},
        }

    def test_map_captures_exceptions(self):
        assert Success(2).map(lambda v: v * 3).unwrap() == 6

        failed = Success(0).map(lambda v: 1 / v)
        assert isinstance(failed, Failure)
        assert failed.error_type == "ZeroDivisionError"


class TestFailure:
    def test_unwrap_raises(self):
        with pytest.raises(RuntimeError):
            Failure("boom").unwrap()

    def test_unwrap_or_and_map(self):
        failure = Failure("boom")
        assert failure.unwrap_or("fallback") == "fallback"
        assert failure.map(lambda v: v) is failure
        assert bool(failure) is False

    def test_to_dict_omits_empty_context_and_unrecoverable_flag(self):
        assert Failure("boom", "ConflictError").to_dict() == {
            "success": False,
            "error": "boom",
            "error_type": "ConflictError",
        }

    def test_to_dict_includes_context_and_recoverable(self):
        data = Failure("down", "NetworkError", {"kind": "network"}, recoverable=True).to_dict()
        assert data["context"] == {"kind": "network"}
        assert data["recoverable"] is True


class TestErrorResult:
    @pytest.mark.parametrize(
        "kind",
        [
            ErrorType.VALIDATION_ERROR,
            ErrorType.NOT_FOUND_ERROR,
            ErrorType.CONFLICT_ERROR,
            ErrorType.TRANSIENT_DATABASE_ERROR,
        ],
    )
    def test_follows_error_type_table(self, kind):
        failure = error_result(kind, "message", {"field": "service"})
        assert (failure.error_type, failure.status_code, failure.recoverable) == kind
        assert failure.context == {"field": "service"}

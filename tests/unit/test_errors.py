"""Tests for pm_common.errors and pm_common.response."""

from src.pm_common.errors import (
    AppError,
    ChainIdConflictError,
    DecisionError,
    LedgerError,
    LedgerRejectedError,
    LedgerTimeoutError,
    LedgerUnavailableError,
    MalformedDecisionError,
    MarketNotEligibleError,
    MarketNotFoundError,
    SweepInProgressError,
)
from src.pm_common.response import ApiResponse, error_response, success_response


class TestAppError:
    def test_base_error(self) -> None:
        err = AppError(code=9002, message="Internal error")
        assert err.code == 9002
        assert err.message == "Internal error"
        assert err.http_status == 500

    def test_is_exception(self) -> None:
        assert isinstance(AppError(code=1, message="x"), Exception)


class TestSpecificErrors:
    def test_market_not_found(self) -> None:
        err = MarketNotFoundError("m-1")
        assert err.code == 3001
        assert err.http_status == 404
        assert "m-1" in err.message

    def test_not_eligible_carries_reason(self) -> None:
        err = MarketNotEligibleError("m-1", "closing time not reached")
        assert err.http_status == 422
        assert "closing time not reached" in err.message

    def test_chain_id_conflict(self) -> None:
        err = ChainIdConflictError("m-1", 7)
        assert err.code == 3005
        assert err.http_status == 409

    def test_ledger_errors_share_a_base(self) -> None:
        for err in (
            LedgerUnavailableError("rpc down"),
            LedgerTimeoutError("0xabc", 120),
            LedgerRejectedError("reverted"),
        ):
            assert isinstance(err, LedgerError)
            assert 6000 <= err.code < 7000

    def test_timeout_mentions_tx(self) -> None:
        assert "0xabc" in LedgerTimeoutError("0xabc", 120).message

    def test_malformed_decision_is_decision_error(self) -> None:
        err = MalformedDecisionError("no JSON")
        assert isinstance(err, DecisionError)
        assert err.code == 7002
        assert err.http_status == 502

    def test_sweep_in_progress_is_conflict(self) -> None:
        err = SweepInProgressError("resolution sweep")
        assert err.code == 9001
        assert err.http_status == 409


class TestApiResponse:
    def test_success_response(self) -> None:
        resp = success_response({"id": "m-1"})
        assert resp.code == 0
        assert resp.message == "success"
        assert resp.data == {"id": "m-1"}
        assert resp.request_id.startswith("req_")

    def test_error_response(self) -> None:
        resp = error_response(3001, "Market not found")
        assert isinstance(resp, ApiResponse)
        assert resp.code == 3001
        assert resp.data is None

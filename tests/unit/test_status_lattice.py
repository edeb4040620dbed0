"""Tests for the market status lattice in pm_market.domain.models."""

import pytest

from src.pm_common.enums import MarketStatus
from src.pm_market.domain.models import (
    TERMINAL_STATUSES,
    can_advance,
    is_terminal,
)

A, C, R, I = (
    MarketStatus.ACTIVE,
    MarketStatus.CLOSED,
    MarketStatus.RESOLVED,
    MarketStatus.INVALID,
)


class TestCanAdvance:
    @pytest.mark.parametrize("current, target", [(A, C), (A, R), (A, I), (C, R), (C, I)])
    def test_forward_moves_allowed(self, current: MarketStatus, target: MarketStatus) -> None:
        assert can_advance(current, target)

    @pytest.mark.parametrize("current, target", [(C, A), (R, C), (I, C), (R, A)])
    def test_backward_moves_rejected(self, current: MarketStatus, target: MarketStatus) -> None:
        assert not can_advance(current, target)

    @pytest.mark.parametrize("status", [A, C, R, I])
    def test_same_status_is_not_an_advance(self, status: MarketStatus) -> None:
        assert not can_advance(status, status)

    def test_terminal_statuses_never_move(self) -> None:
        assert not can_advance(R, I)
        assert not can_advance(I, R)


class TestTerminal:
    def test_resolved_and_invalid_are_terminal(self) -> None:
        assert TERMINAL_STATUSES == {R, I}
        assert is_terminal(R) and is_terminal(I)
        assert not is_terminal(A) and not is_terminal(C)

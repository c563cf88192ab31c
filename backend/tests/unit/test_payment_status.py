# backend/tests/unit/test_payment_status.py
import pytest

from app.constants.payment_status import TransactionStatus, can_transition


class TestCanTransition:
    @pytest.mark.parametrize(
        "current,target",
        [
            ("pending", "completed"),
            ("pending", "failed"),
            ("pending", "canceled"),
            ("completed", "disputed"),
            ("completed", "refunded"),
            ("disputed", "completed"),
            ("disputed", "refunded"),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            ("completed", "failed"),
            ("completed", "pending"),
            ("failed", "completed"),
            ("canceled", "completed"),
            ("refunded", "completed"),
            ("refunded", "disputed"),
        ],
    )
    def test_regressions_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_missing_or_legacy_status_can_move_anywhere(self):
        assert can_transition(None, TransactionStatus.FAILED.value)
        assert can_transition("requires_capture", TransactionStatus.COMPLETED.value)

    def test_unknown_target_raises(self):
        with pytest.raises(ValueError):
            can_transition("pending", "settled")

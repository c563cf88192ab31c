# backend/tests/unit/test_retry_policy.py
from unittest.mock import Mock

import pytest

from app.services.retry_policy import RetryPolicy


class TestRetryPolicy:
    def test_returns_first_success_without_sleeping(self):
        sleeps = []
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleeper=sleeps.append)

        assert policy.run("op", lambda: "ok") == "ok"
        assert sleeps == []

    def test_linear_backoff_between_attempts(self):
        sleeps = []
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleeper=sleeps.append)
        func = Mock(side_effect=[RuntimeError("a"), RuntimeError("b"), "done"])

        assert policy.run("op", func) == "done"
        assert func.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_reraises_last_error_and_never_sleeps_after_final_attempt(self):
        sleeps = []
        policy = RetryPolicy(max_attempts=3, base_delay=0.5, sleeper=sleeps.append)
        func = Mock(side_effect=[RuntimeError("1"), RuntimeError("2"), RuntimeError("3")])

        with pytest.raises(RuntimeError, match="3"):
            policy.run("op", func)

        assert func.call_count == 3
        assert sleeps == [0.5, 1.0]

    def test_on_retry_called_for_each_retried_failure(self):
        seen = []
        policy = RetryPolicy(max_attempts=2, base_delay=0, sleeper=lambda _: None)
        func = Mock(side_effect=[ValueError("x"), "ok"])

        policy.run("op", func, on_retry=lambda attempt, exc: seen.append((attempt, str(exc))))

        assert seen == [(1, "x")]

    def test_errors_outside_retry_on_propagate_immediately(self):
        sleeps = []
        policy = RetryPolicy(max_attempts=3, retry_on=(ValueError,), sleeper=sleeps.append)
        func = Mock(side_effect=KeyError("boom"))

        with pytest.raises(KeyError):
            policy.run("op", func)

        assert func.call_count == 1
        assert sleeps == []

    def test_single_attempt_policy(self):
        policy = RetryPolicy(max_attempts=1, sleeper=lambda _: pytest.fail("must not sleep"))
        with pytest.raises(RuntimeError):
            policy.run("op", Mock(side_effect=RuntimeError("once")))

    @pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"base_delay": -1}])
    def test_invalid_configuration(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

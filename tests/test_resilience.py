import json
import logging

import pytest

from sageflow.core import RetryError, RetryPolicy, retry_call
from sageflow.core.exceptions import ConfigurationError, TransientBackendError
from sageflow.core.logging import JsonFormatter, correlation_scope, get_correlation_id, log_with_context
from sageflow.core.retry import make_linearized_delays


def test_retry_call_succeeds_after_transient_failures():
    attempts = {"count": 0}

    def flaky() -> str:
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise TransientBackendError("throttled")
        return "ok"

    result = retry_call(flaky, policy=RetryPolicy(max_attempts=5, base_delay=0.01))
    assert result == "ok"
    assert attempts["count"] == 3


def test_retry_call_gives_up():
    def always_throttled() -> None:
        raise TransientBackendError("throttled")

    with pytest.raises(RetryError) as excinfo:
        retry_call(always_throttled, policy=RetryPolicy(max_attempts=2, base_delay=0.01))
    assert excinfo.value.attempts == 2
    assert isinstance(excinfo.value.last_exception, TransientBackendError)


def test_fatal_errors_are_not_retried():
    calls = []

    def misconfigured() -> None:
        calls.append(1)
        raise ConfigurationError("pipeline missing")

    with pytest.raises(ConfigurationError):
        retry_call(misconfigured, policy=RetryPolicy(max_attempts=5, base_delay=0.01))
    assert calls == [1]


def test_retry_after_hint_raises_the_delay():
    delays = []

    def throttled_once(state={"first": True}):
        if state["first"]:
            state["first"] = False
            raise TransientBackendError("slow down", metadata={"retry_after": "2"})
        return "done"

    policy = RetryPolicy(max_attempts=2, base_delay=0.01, jitter=0)
    assert retry_call(throttled_once, policy=policy, on_retry=lambda _a, _e, delay: delays.append(delay)) == "done"
    assert delays == [2.0]


def test_backoff_is_exponential_and_capped():
    policy = RetryPolicy(base_delay=1.0, max_delay=4.0, jitter=0)
    assert list(make_linearized_delays(policy, 4)) == [1.0, 2.0, 4.0, 4.0]


def test_json_formatter_carries_context_and_correlation_id():
    record = logging.LogRecord("sageflow.test", logging.INFO, __file__, 1, "pipeline_started", None, None)
    record.extra_context = {"execution_id": "exec-1"}

    with correlation_scope("req-123"):
        payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "pipeline_started"
    assert payload["execution_id"] == "exec-1"
    assert payload["correlation_id"] == "req-123"


def test_correlation_scope_restores_previous_id():
    with correlation_scope("outer"):
        with correlation_scope("inner"):
            assert get_correlation_id() == "inner"
        assert get_correlation_id() == "outer"


def test_log_with_context_drops_empty_fields(caplog):
    logger = logging.getLogger("sageflow.test")
    with caplog.at_level(logging.INFO, logger="sageflow.test"):
        log_with_context(logger, "info", "deployment_skipped", job_name="job-abc", endpoint=None)

    [record] = caplog.records
    assert record.extra_context == {"job_name": "job-abc"}

"""
Unit tests for error classification and best-effort side effects.
"""

import pytest
from unittest.mock import Mock

pytest.importorskip("kubernetes")

from kubernetes.client.rest import ApiException

from devplatform.services.orchestration.errors import (
    ErrorKind,
    KubernetesError,
    ResourceConflictError,
    ResourceNotFoundError,
    TeardownError,
    TransientNotReadyError,
    best_effort,
    classify,
    status_code_of,
    translate_api_exception,
)


@pytest.mark.unit
class TestStatusCodeOf:
    """Status code extraction across error shapes."""

    def test_reads_status_attribute(self):
        assert status_code_of(ApiException(status=404)) == 404

    def test_reads_response_status(self):
        exc = Exception("boom")
        exc.response = Mock(spec=["status"], status=409)
        assert status_code_of(exc) == 409

    def test_reads_response_status_code(self):
        exc = Exception("boom")
        exc.response = Mock(spec=["status_code"], status_code=503)
        assert status_code_of(exc) == 503

    def test_reads_code_attribute(self):
        exc = Exception("boom")
        exc.code = "404"
        assert status_code_of(exc) == 404

    def test_no_status_returns_none(self):
        assert status_code_of(RuntimeError("boom")) is None


@pytest.mark.unit
class TestClassify:
    """Errors map onto the four kinds."""

    @pytest.mark.parametrize("status,kind", [
        (404, ErrorKind.NOT_FOUND),
        (409, ErrorKind.CONFLICT),
        (503, ErrorKind.TRANSIENT),
        (403, ErrorKind.FATAL),
        (500, ErrorKind.FATAL),
    ])
    def test_classify_api_exception(self, status, kind):
        assert classify(ApiException(status=status)) == kind

    def test_translate_keeps_context_and_cause(self):
        raw = ApiException(status=404, reason="Not Found")
        error = translate_api_exception(raw, "read service", namespace="group-acme", resource="workspace-a")

        assert isinstance(error, ResourceNotFoundError)
        assert error.namespace == "group-acme"
        assert error.resource == "workspace-a"
        assert error.cause is raw
        assert error.status_code == 404
        assert "group-acme/workspace-a" in str(error)

    @pytest.mark.parametrize("status,error_cls", [
        (409, ResourceConflictError),
        (429, TransientNotReadyError),
        (403, KubernetesError),
    ])
    def test_translate_picks_error_class(self, status, error_cls):
        assert isinstance(translate_api_exception(ApiException(status=status), "create"), error_cls)

    def test_teardown_error_carries_all_failures(self):
        first = KubernetesError("denied")
        second = KubernetesError("also denied")
        error = TeardownError("teardown failed", failures=[("a", first), ("b", second)], namespace="ns")

        assert error.resource == "a"
        assert error.cause is first
        assert len(error.failures) == 2


@pytest.mark.unit
class TestBestEffort:
    """Best-effort side effects never raise."""

    @pytest.mark.asyncio
    async def test_success_returns_true(self):
        async def ok():
            return "done"

        assert await best_effort(ok(), "ok") is True

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_returns_false(self, caplog):
        async def fail():
            raise RuntimeError("proxy restart failed")

        assert await best_effort(fail(), "restart proxy") is False
        assert "restart proxy" in caplog.text

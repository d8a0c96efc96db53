"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from mnemo.services.metrics import MetricsClient


class TestMetricsRecording:
    """Verify that record_success / record_failure buffer the right data."""

    def _make_client(self, *, enabled: bool = False) -> MetricsClient:
        with patch.dict("os.environ", {"METRICS_ENABLED": str(enabled).lower()}):
            return MetricsClient()

    def test_record_success_appends_two_data_points(self):
        client = self._make_client()
        client.record_success("google", "GET /calendar/v3/events", latency_ms=123.4)
        # RequestCount + Latency
        assert len(client._buffer) == 2
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"Provider/RequestCount", "Provider/Latency"}

    def test_record_failure_appends_count_and_error(self):
        client = self._make_client()
        client.record_failure("anthropic", "llm_invoke", error_type="timeout")
        assert len(client._buffer) == 2
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"Provider/RequestCount", "Provider/ErrorCount"}

    def test_record_failure_with_latency_appends_three_data_points(self):
        client = self._make_client()
        client.record_failure(
            "github", "GET /user/repos",
            error_type="HTTPStatusError", latency_ms=500.0,
        )
        assert len(client._buffer) == 3
        names = {m["MetricName"] for m in client._buffer}
        assert names == {
            "Provider/RequestCount",
            "Provider/ErrorCount",
            "Provider/Latency",
        }

    def test_success_dimensions_include_service_and_status(self):
        client = self._make_client()
        client.record_success("linkedin", "GET /v2/userinfo", latency_ms=50.0)
        count_metric = next(
            m for m in client._buffer
            if m["MetricName"] == "Provider/RequestCount"
        )
        dim_map = {d["Name"]: d["Value"] for d in count_metric["Dimensions"]}
        assert dim_map["Service"] == "linkedin"
        assert dim_map["Status"] == "success"

    def test_failure_dimensions_include_error_type(self):
        client = self._make_client()
        client.record_failure("anthropic", "llm_invoke", error_type="BadRequestError")
        error_metric = next(
            m for m in client._buffer
            if m["MetricName"] == "Provider/ErrorCount"
        )
        dim_map = {d["Name"]: d["Value"] for d in error_metric["Dimensions"]}
        assert dim_map["ErrorType"] == "BadRequestError"

    def test_record_degraded(self):
        client = self._make_client()
        client.record_degraded("memory.search")
        assert len(client._buffer) == 1
        metric = client._buffer[0]
        assert metric["MetricName"] == "Memory/DegradedCount"
        assert metric["Dimensions"] == [{"Name": "Operation", "Value": "memory.search"}]


@pytest.mark.asyncio
class TestTrack:
    async def test_success_is_recorded(self):
        client = MetricsClient(enabled=False)
        async with client.track("whatsapp", "messages.send"):
            pass
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"Provider/RequestCount", "Provider/Latency"}

    async def test_failure_is_recorded_and_reraised(self):
        client = MetricsClient(enabled=False)
        with pytest.raises(ValueError):
            async with client.track("google", "GET /gmail/v1/users/me/messages"):
                raise ValueError("boom")

        error_metric = next(
            m for m in client._buffer if m["MetricName"] == "Provider/ErrorCount"
        )
        dim_map = {d["Name"]: d["Value"] for d in error_metric["Dimensions"]}
        assert dim_map == {"Service": "google", "ErrorType": "ValueError"}


class TestMetricsFlush:
    """Verify flush behaviour with and without CloudWatch enabled."""

    def test_flush_when_disabled_does_not_call_boto3(self):
        client = MetricsClient(enabled=False)
        client.record_success("google", "GET /calendar/v3/events", latency_ms=100.0)
        assert client.flush() == 0

    def test_flush_clears_buffer(self):
        client = MetricsClient(enabled=False)
        client.record_success("google", "GET /calendar/v3/events", latency_ms=100.0)
        assert len(client._buffer) == 2
        client.flush()
        assert len(client._buffer) == 0

    def test_flush_when_enabled_calls_put_metric_data(self):
        client = MetricsClient(enabled=True)

        mock_cw = MagicMock()
        client._cw_client = mock_cw

        client.record_success("google", "GET /calendar/v3/events", latency_ms=100.0)
        sent = client.flush()

        assert sent == 2
        mock_cw.put_metric_data.assert_called_once()
        call_args = mock_cw.put_metric_data.call_args
        assert call_args[1]["Namespace"] == "Mnemo"
        assert len(call_args[1]["MetricData"]) == 2

    def test_flush_failure_is_logged_not_raised(self):
        client = MetricsClient(enabled=True)
        client._cw_client = MagicMock()
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")

        client.record_degraded("memory.add")
        assert client.flush() == 0

    def test_flush_empty_buffer_returns_zero(self):
        assert MetricsClient(enabled=True).flush() == 0

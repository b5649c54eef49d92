import logging

import pytest

from ledgerjobs.core.tracing import Trace


class TestTrace:
    def test_spans_recorded_in_order_with_base_attributes(self):
        trace = Trace("job", accountId="a1")
        with trace.span("outer", step=1):
            with trace.span("inner") as inner:
                inner.set_attribute("count", 3)

        assert [s.name for s in trace.spans] == ["outer", "inner"]
        assert trace.get("inner").attributes == {"accountId": "a1", "count": 3}
        assert trace.get("outer").attributes == {"accountId": "a1", "step": 1}
        assert all(s.duration_ms is not None for s in trace.spans)

    def test_failure_recorded_and_reraised(self, caplog):
        trace = Trace("job")
        with caplog.at_level(logging.ERROR), pytest.raises(ValueError):
            with trace.span("explode"):
                raise ValueError("bad input")

        span = trace.get("explode")
        assert span.error == "bad input"
        assert span.attributes["error"] == "bad input"
        assert "explode failed: bad input" in caplog.text

    def test_get_returns_latest(self):
        trace = Trace("job")
        for i in range(3):
            with trace.span("batch", index=i):
                pass
        assert trace.get("batch").attributes["index"] == 2
        assert trace.get("missing") is None

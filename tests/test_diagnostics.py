import logging

from algorithm.backend.diagnostics import (
    NUMERIC_DIVERGENCE, PRIMING, LoggingSink, MemorySink,
)


def test_logging_sink_forwards_severity(caplog):
    sink = LoggingSink(logging.getLogger("test.sink"))
    with caplog.at_level(logging.INFO, logger="test.sink"):
        sink.record(logging.ERROR, NUMERIC_DIVERGENCE, {"offending": ["pose"]})
        sink.record(logging.DEBUG, PRIMING, {"time": 0.0})
    assert len(caplog.records) == 1
    rec = caplog.records[0]
    assert rec.levelno == logging.ERROR
    assert NUMERIC_DIVERGENCE in rec.getMessage()
    assert "pose" in rec.getMessage()


def test_memory_sink_filters_and_copies():
    sink = MemorySink(min_severity=logging.WARNING)
    payload = {"time": 1.0}
    sink.record(logging.INFO, PRIMING, payload)
    sink.record(logging.ERROR, NUMERIC_DIVERGENCE, payload)
    payload["time"] = 2.0

    assert [e.event for e in sink.events] == [NUMERIC_DIVERGENCE]
    assert sink.of(NUMERIC_DIVERGENCE)[0].payload == {"time": 1.0}
    assert sink.of(PRIMING) == []
    sink.clear()
    assert sink.events == []

import logging

from csswaf.logs import TraceFilter, get_trace_logger, logger, setup_logging


def test_trace_filter_fills_missing_trace_id():
    record = logging.LogRecord("csswaf", logging.INFO, __file__, 1, "msg", None, None)
    assert TraceFilter().filter(record)
    assert record.trace_id == "-"


def test_trace_logger_stamps_session(caplog):
    with caplog.at_level(logging.INFO, logger="csswaf"):
        get_trace_logger("sid-123", "tracker").info("hello")
    record = caplog.records[-1]
    assert record.name == "csswaf.tracker"
    assert record.trace_id == "sid-123"


def test_trace_logger_without_id():
    adapter = get_trace_logger(None)
    assert adapter.extra == {"trace_id": "-"}


def test_setup_logging_follows_requested_dir(tmp_path):
    first = setup_logging(str(tmp_path / "first"), "csswaf.log")
    second = setup_logging(str(tmp_path / "second"), "csswaf.log")
    assert second == str(tmp_path / "second" / "csswaf.log")

    logger.info("after switch")
    with open(second, encoding="utf-8") as f:
        assert "after switch" in f.read()
    with open(first, encoding="utf-8") as f:
        assert "after switch" not in f.read()

    # same path again keeps the current handler
    assert setup_logging(str(tmp_path / "second"), "csswaf.log") == second

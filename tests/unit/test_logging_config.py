import logging

from config.logging_config import MetricsLogger, SensitiveDataFilter, log_external_api_call


def _record(msg, args=None, **extra):
    record = logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_masks_crux_key_in_message():
    record = _record("POST https://chromeuxreport.googleapis.com/v1/records:queryRecord?key=AIzaSyA1234567890abcdefghijklmnopqrstu")
    SensitiveDataFilter().filter(record)
    assert "AIzaSy" not in record.getMessage()
    assert "key=***MASKED***" in record.getMessage()


def test_masks_args_and_url_attribute():
    record = _record("calling %s", ("https://x.test/?key=abc123&url=y",), url="https://x.test/?key=abc123")
    SensitiveDataFilter().filter(record)
    assert "abc123" not in record.getMessage()
    assert "abc123" not in record.url


def test_leaves_plain_messages_alone():
    record = _record("Field data reconciled for https://example.com/ (page)")
    SensitiveDataFilter().filter(record)
    assert record.getMessage() == "Field data reconciled for https://example.com/ (page)"


def test_external_api_call_counters():
    MetricsLogger.reset_metrics()
    logger = logging.getLogger("test.external")

    log_external_api_call(logger, "crux", "url", 0.12, 200)
    log_external_api_call(logger, "crux", "origin", 0.5, 500, error="HTTP 500")

    metrics = MetricsLogger.get_metrics()
    assert metrics["api_calls_success"] == 1
    assert metrics["api_calls_failed"] == 1
